# src/simstate_core/persistence/exceptions.py
"""
Defines the diagnosable exceptions raised while writing or reading System files.

I/O is collective: when the file operation fails on the rank doing it, every other
rank of the group raises `CollectiveIOError` so that no rank is left waiting.
"""
from dataclasses import dataclass

from ..errors import DiagnosableError, format_diagnostic_report


@dataclass()
class StreamFormatError(DiagnosableError):
    """Raised when a file's contents do not match the expected stream encoding."""
    source_file: str
    details: str

    def __str__(self):
        return f"Malformed stream '{self.source_file}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Malformed System File",
            details=self.details,
            suggestion="Check that the file is complete and is read with the layout and format (binary/ascii) it was written with.",
            context={'source_file': self.source_file}
        )


@dataclass()
class RankFileError(DiagnosableError):
    """Raised when a per-rank file does not belong to the reading rank's partition."""
    source_file: str
    rank: int
    details: str

    def __str__(self):
        return f"Per-rank file '{self.source_file}' cannot be read on rank {self.rank}: {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Per-Rank File Mismatch",
            details=self.details,
            suggestion="Parallel-layout files can only be read with the processor count and partitioning that wrote them. Use the serialized layout to change processor counts.",
            context={'source_file': self.source_file, 'rank': self.rank}
        )


@dataclass()
class CollectiveIOError(DiagnosableError):
    """Raised on every rank that did not perform a file operation that failed elsewhere."""
    source_file: str
    rank: int
    details: str

    def __str__(self):
        return f"File operation on '{self.source_file}' failed on another rank (seen from rank {self.rank}): {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Collective File Operation Failed",
            details=self.details,
            suggestion="Inspect the error reported by the rank that performed the file operation (usually rank 0).",
            context={'source_file': self.source_file, 'rank': self.rank}
        )
