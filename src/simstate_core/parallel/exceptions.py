# src/simstate_core/parallel/exceptions.py
"""
Defines the diagnosable exception raised when a collective operation fails.

A collective that breaks on one rank cannot be resumed on the others, so the
failure is propagated to every participant of the group.
"""
from dataclasses import dataclass

from ..errors import DiagnosableError, format_diagnostic_report


@dataclass()
class CommunicationError(DiagnosableError):
    """Raised on every rank of a group when a collective operation is aborted."""
    rank: int
    details: str

    def __str__(self):
        return f"Collective aborted on rank {self.rank}: {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Collective Operation Aborted",
            details=self.details,
            suggestion="Another rank failed or never entered the collective. Inspect the first error reported by the group.",
            context={'rank': self.rank}
        )
