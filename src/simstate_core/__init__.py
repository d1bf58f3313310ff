# src/simstate_core/__init__.py
import logging
from .log_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)
logger.info("SimState Core package initialized.")

from .units import ureg, Quantity
from .variables import FEFamily, FEType, Variable
from .vectors import ManagedVector
from .parallel import Communicator, SerialCommunicator, run_on_ranks
from .discretization import IntervalMesh, DofMap, ReferenceFE
from .persistence import IOLayout, StreamFormat
from .solve import EquationContext, ParameterVector, QoISet, SensitivityData, SolveReport, SolveStrategy, provides
from .system import System
from .functions import compile_expression
from .config import SystemConfig, load_system_config, build_system
from .checkpoint import save_checkpoint, load_checkpoint
from .errors import SimStateError, SystemSetupError, SystemIOError

__all__ = [
    # Units
    "ureg", "Quantity",
    # Variables and vectors
    "FEFamily", "FEType", "Variable", "ManagedVector",
    # Parallel
    "Communicator", "SerialCommunicator", "run_on_ranks",
    # Reference discretization
    "IntervalMesh", "DofMap", "ReferenceFE",
    # Persistence
    "IOLayout", "StreamFormat",
    # Solve delegation
    "EquationContext", "ParameterVector", "QoISet", "SensitivityData", "SolveReport", "SolveStrategy", "provides",
    # System
    "System",
    # Configuration
    "compile_expression", "SystemConfig", "load_system_config", "build_system",
    # Checkpoints
    "save_checkpoint", "load_checkpoint",
    # Top-Level Errors (Actionable Diagnostics)
    "SimStateError", "SystemSetupError", "SystemIOError",
]
