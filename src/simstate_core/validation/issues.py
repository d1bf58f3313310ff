# src/simstate_core/validation/issues.py
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ValidationIssueLevel(Enum):
    """ERROR blocks a data-bearing read; WARNING and INFO are only reported."""
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"

    def __str__(self):
        return self.value


@dataclass
class ValidationIssue:
    """One finding from comparing a file header with the live System."""
    level: ValidationIssueLevel
    code: str
    message: str
    system_name: Optional[str] = None
    source_file: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.level is ValidationIssueLevel.ERROR

    def __str__(self) -> str:
        where = f" in '{self.system_name}'" if self.system_name else ""
        text = f"{self.code} ({self.level}){where}: {self.message}"
        if self.details:
            text += " [" + ", ".join(f"{k}={v!r}" for k, v in sorted(self.details.items())) + "]"
        return text
