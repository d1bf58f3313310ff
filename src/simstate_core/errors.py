# src/simstate_core/errors.py
import logging
from abc import abstractmethod
from typing import Any, Dict, Iterable, List, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# --- Exceptions raised to users of the package ---

class SimStateError(Exception):
    """Root of the errors a caller of SimState Core is expected to catch."""


class SystemSetupError(SimStateError):
    """
    A System could not be declared: its YAML description, an expression or a
    variable/vector registration was rejected. str(err) is the full report.
    """


class SystemIOError(SimStateError):
    """
    Saving or restoring a System's state failed on this rank. str(err) is the
    full report; the underlying error is chained as __cause__.
    """


# --- Errors that describe themselves ---

@runtime_checkable
class Diagnosable(Protocol):
    """Anything able to render a multi-line report of what went wrong and how to fix it."""
    def get_diagnostic_report(self) -> str:
        ...


class DiagnosableError(Exception, Diagnosable):
    """
    Base for the package's internal exceptions. Subclasses are usually
    dataclasses carrying the offending names, and must render a report.
    """
    @abstractmethod
    def get_diagnostic_report(self) -> str:
        raise NotImplementedError


class FrameworkLogicError(DiagnosableError):
    """A calling-sequence or internal invariant was broken. Never caused by bad data."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Internal Framework Invariant Violated",
            details=str(self),
            suggestion="This is a bug or an invalid call order (e.g. projecting before the DOF map was rebuilt).",
            context={}
        )


# Context keys shown in the report header, in display order.
_CONTEXT_LABELS = (
    ('system', "System"),
    ('vector', "Vector"),
    ('variable', "Variable"),
    ('source_file', "Source File"),
    ('rank', "Rank"),
)
_RULE_WIDTH = 73


def _indented(text: str) -> Iterable[str]:
    return (f"  {line}" for line in text.splitlines())


def format_diagnostic_report(
    error_type: str,
    details: str,
    suggestion: str,
    context: Dict[str, Any]
) -> str:
    """
    Renders the report shared by every Diagnosable error.

    Args:
        error_type: Short category shown first, e.g. "Duplicate Vector".
        details: What happened; may span several lines.
        suggestion: How to fix it. Omitted from the report when empty.
        context: Optional 'system', 'vector', 'variable', 'source_file' and
                 'rank' entries. Missing or None entries are not shown.
    """
    title = " SimState Core: Actionable Diagnostic Report "
    lines: List[str] = ["\n", title.center(_RULE_WIDTH, "="), f"Error Type:     {error_type}"]
    for key, label in _CONTEXT_LABELS:
        value = context.get(key)
        if value is None or value == "":
            continue
        lines.append(f"{label + ':':<16}{value}")

    lines.append("\nDetails:")
    lines.extend(_indented(details))
    if suggestion:
        lines.append("\nSuggestion:")
        lines.extend(_indented(suggestion))
    lines.append("=" * _RULE_WIDTH)
    return "\n".join(lines)
