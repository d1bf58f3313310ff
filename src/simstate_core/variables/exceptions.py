# src/simstate_core/variables/exceptions.py
"""
Defines the custom, diagnosable exceptions for the variable registry.
"""
from dataclasses import dataclass
from typing import List

from ..errors import DiagnosableError, format_diagnostic_report


class VariableError(DiagnosableError):
    """A concrete base class for all variable-registry errors."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Generic Variable Error",
            details=str(self),
            suggestion="Review the variable declarations of the system.",
            context={}
        )


@dataclass()
class DuplicateVariableError(VariableError):
    """Raised when a variable name is registered twice in one System."""
    system_name: str
    variable_name: str

    def __str__(self):
        return f"Variable '{self.variable_name}' is already registered in system '{self.system_name}'."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Duplicate Variable",
            details=str(self),
            suggestion="Variable names must be unique within a system. Rename one of the declarations.",
            context={'system': self.system_name, 'variable': self.variable_name}
        )


@dataclass()
class VariableNotFoundError(VariableError):
    """Raised by the must-exist accessors when a variable name or ordinal is unknown."""
    system_name: str
    variable_name: str
    available: List[str]

    def __str__(self):
        return (f"Variable '{self.variable_name}' does not exist in system '{self.system_name}'. "
                f"Available variables: {self.available}.")

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Variable Not Found",
            details=str(self),
            suggestion="Check the spelling of the variable, or use has_variable() to probe before access.",
            context={'system': self.system_name, 'variable': self.variable_name}
        )


@dataclass()
class InvalidVariableUnitsError(VariableError):
    """Raised when the declared units of a variable are not understood by the unit registry."""
    system_name: str
    variable_name: str
    units: str
    details: str

    def __str__(self):
        return (f"Variable '{self.variable_name}' of system '{self.system_name}' declares "
                f"unknown units '{self.units}': {self.details}")

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Invalid Variable Units",
            details=str(self),
            suggestion="Use a unit expression pint understands (e.g. 'kelvin', 'm/s', 'V'), or omit the units for a dimensionless field.",
            context={'system': self.system_name, 'variable': self.variable_name}
        )
