# src/simstate_core/validation/exceptions.py
"""
The error raised when a data-bearing read meets a header that describes
different variables than the System reading it.
"""
from typing import List

from .issues import ValidationIssue
from ..errors import DiagnosableError, format_diagnostic_report


class HeaderValidationError(DiagnosableError):
    """Carries the ERROR-level issues of a header check. Lower levels are dropped."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues: List[ValidationIssue] = [issue for issue in issues if issue.is_error]
        super().__init__(
            f"{len(self.issues)} header error(s): " + "; ".join(issue.code for issue in self.issues)
        )

    def _listing(self) -> str:
        return "\n".join(f"  - {issue}" for issue in self.issues)

    def get_diagnostic_report(self) -> str:
        first = self.issues[0] if self.issues else None
        return format_diagnostic_report(
            error_type="System File Header Mismatch",
            details=(
                "The file does not describe the same variables as the system reading it.\n"
                f"{len(self.issues)} error(s):\n{self._listing()}"
            ),
            suggestion="Declare the same variables, in the same order and with the same types, as the system that wrote the file.",
            context={
                'system': first.system_name if first else None,
                'source_file': first.source_file if first else None,
            }
        )
