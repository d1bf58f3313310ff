# src/simstate_core/projection/__init__.py
from .exceptions import ProjectionError, FunctionEvaluationError
from .send_list import build_send_list, remote_entries
from .engine import GhostBuffer, ProjectionEngine, exchange_ghost_values
from .function_projection import PointFunction, project_function

__all__ = [
    # Exceptions
    "ProjectionError",
    "FunctionEvaluationError",
    # Core Classes
    "build_send_list",
    "remote_entries",
    "GhostBuffer",
    "exchange_ghost_values",
    "ProjectionEngine",
    "PointFunction",
    "project_function",
]
