# src/simstate_core/solve/exceptions.py
"""
Defines the diagnosable exceptions of the solve layer.

The System itself performs no solves. Every solve operation is delegated to an
attached strategy, and asking for one the strategy does not provide is a
programming error.
"""
from dataclasses import dataclass

from ..errors import DiagnosableError, format_diagnostic_report


@dataclass()
class SolveNotImplementedError(DiagnosableError):
    """Raised when a solve operation is requested that no attached strategy provides."""
    system_name: str
    operation: str
    capability: str

    def __str__(self):
        return (f"System '{self.system_name}' cannot perform '{self.operation}': "
                f"no attached solve strategy provides {self.capability}.")

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Solve Operation Not Implemented",
            details=str(self),
            suggestion=(f"Attach a SolveStrategy with a nested class decorated with @provides({self.capability}) "
                        f"using System.attach_solve_strategy()."),
            context={'system': self.system_name}
        )


@dataclass()
class UserHookError(DiagnosableError):
    """Raised when an attached user callable fails."""
    system_name: str
    hook: str
    details: str

    def __str__(self):
        return f"User {self.hook} function of system '{self.system_name}' failed: {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="User Function Failed",
            details=f"The attached {self.hook} function raised:\n{self.details}",
            suggestion="Fix the attached function; it is called with a single EquationContext argument.",
            context={'system': self.system_name}
        )
