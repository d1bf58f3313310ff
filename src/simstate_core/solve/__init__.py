# src/simstate_core/solve/__init__.py
from .exceptions import SolveNotImplementedError, UserHookError
from .context import EquationContext, QoISet, ParameterVector, SensitivityData, SolveReport
from .capabilities import (
    SolveCapability,
    ISolver,
    ISensitivitySolver,
    IAdjointSolver,
    IWeightedSensitivitySolver,
    IWeightedSensitivityAdjointSolver,
    IAdjointQoISensitivityEvaluator,
    IForwardQoISensitivityEvaluator,
    IQoIHessianEvaluator,
    provides,
)
from .strategy import SolveStrategy

__all__ = [
    # Exceptions
    "SolveNotImplementedError",
    "UserHookError",
    # Context types
    "EquationContext",
    "QoISet",
    "ParameterVector",
    "SensitivityData",
    "SolveReport",
    # Capabilities
    "SolveCapability",
    "ISolver",
    "ISensitivitySolver",
    "IAdjointSolver",
    "IWeightedSensitivitySolver",
    "IWeightedSensitivityAdjointSolver",
    "IAdjointQoISensitivityEvaluator",
    "IForwardQoISensitivityEvaluator",
    "IQoIHessianEvaluator",
    "provides",
    "SolveStrategy",
]
