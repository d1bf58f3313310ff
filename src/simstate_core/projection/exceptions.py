# src/simstate_core/projection/exceptions.py
"""
Defines the diagnosable exceptions raised while carrying vectors from one
discretization to the next.

Every failure here is a programming error in the calling sequence (for example
projecting before the DOF map was rebuilt); none is recoverable.
"""
from dataclasses import dataclass

from ..errors import DiagnosableError, format_diagnostic_report


@dataclass()
class ProjectionError(DiagnosableError):
    """Raised when the old and new discretizations cannot be related."""
    system_name: str
    details: str

    def __str__(self):
        return f"Projection failed for system '{self.system_name}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Projection Failed",
            details=self.details,
            suggestion="Rebuild the DOF map on the new mesh before projecting, with the same variables and communicator.",
            context={'system': self.system_name}
        )


@dataclass()
class FunctionEvaluationError(DiagnosableError):
    """Raised when a user function fails or returns a non-finite value during function projection."""
    system_name: str
    variable_name: str
    point: float
    details: str

    def __str__(self):
        return (f"Function for variable '{self.variable_name}' of system '{self.system_name}' "
                f"failed at x={self.point}: {self.details}")

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Function Evaluation Failed",
            details=f"At x = {self.point}:\n{self.details}",
            suggestion="Check the function (or initial-condition expression) for this variable; it must return a finite float.",
            context={'system': self.system_name, 'variable': self.variable_name}
        )
