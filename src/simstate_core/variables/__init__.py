# src/simstate_core/variables/__init__.py
from .exceptions import VariableError, DuplicateVariableError, VariableNotFoundError, InvalidVariableUnitsError
from .registry import FEFamily, FEType, Variable, VariableRegistry

__all__ = [
    # Exceptions
    "VariableError",
    "DuplicateVariableError",
    "VariableNotFoundError",
    "InvalidVariableUnitsError",
    # Core Classes
    "FEFamily",
    "FEType",
    "Variable",
    "VariableRegistry",
]
