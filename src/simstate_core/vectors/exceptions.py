# src/simstate_core/vectors/exceptions.py
"""
Defines the custom, diagnosable exceptions for the vector store.

Misuse of the must-exist accessors and registration after sealing are programming
errors; the query accessors (`request_vector`, `have_vector`) never raise.
"""
from dataclasses import dataclass, field
from typing import List

from ..errors import DiagnosableError, format_diagnostic_report


class VectorError(DiagnosableError):
    """A concrete base class for all vector-store errors."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Generic Vector Error",
            details=str(self),
            suggestion="Review how vectors are registered and accessed on the system.",
            context={}
        )


@dataclass()
class DuplicateVectorError(VectorError):
    """Raised when a vector name is registered twice."""
    system_name: str
    vector_name: str

    def __str__(self):
        return f"Vector '{self.vector_name}' already exists in system '{self.system_name}'."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Duplicate Vector",
            details=str(self),
            suggestion=(
                "Vector names must be unique and cannot be 'solution' or 'current_local_solution'. "
                "Use have_vector() before add_vector() if the vector may already exist."
            ),
            context={'system': self.system_name, 'vector': self.vector_name}
        )


@dataclass()
class VectorStoreSealedError(VectorError):
    """Raised by add_vector() once the System has been initialized."""
    system_name: str
    vector_name: str

    def __str__(self):
        return (f"Cannot add vector '{self.vector_name}' to system '{self.system_name}': "
                f"the vector set is sealed after initialization.")

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Vector Added After Initialization",
            details=str(self),
            suggestion="Register every vector (including adjoint and sensitivity family members) before calling init().",
            context={'system': self.system_name, 'vector': self.vector_name}
        )


@dataclass()
class VectorNotFoundError(VectorError):
    """Raised by the must-exist accessors when a vector is absent."""
    system_name: str
    vector_name: str
    available: List[str] = field(default_factory=list)

    def __str__(self):
        return (f"Vector '{self.vector_name}' does not exist in system '{self.system_name}'. "
                f"Available vectors: {self.available}.")

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Vector Not Found",
            details=str(self),
            suggestion="Create the vector first, or probe with request_vector()/have_vector().",
            context={'system': self.system_name, 'vector': self.vector_name}
        )


@dataclass()
class VectorLayoutError(VectorError):
    """Raised when a vector's distribution does not match the expected DOF layout."""
    vector_name: str
    details: str

    def __str__(self):
        return f"Vector '{self.vector_name}' has an unexpected layout: {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Vector Layout Mismatch",
            details=self.details,
            suggestion="Every managed vector must share the DOF map's global size and ownership ranges. "
                       "Rebuild the DOF map before projecting or reading data.",
            context={'vector': self.vector_name}
        )
