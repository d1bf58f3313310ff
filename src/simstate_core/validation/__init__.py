# src/simstate_core/validation/__init__.py
import logging
logger = logging.getLogger(__name__)

from .issues import ValidationIssue, ValidationIssueLevel
from .issue_codes import HeaderIssueCode
from .header_validator import HeaderValidator
from .exceptions import HeaderValidationError

__all__ = [
    "ValidationIssue",
    "ValidationIssueLevel",
    "HeaderIssueCode",
    "HeaderValidator",
    "HeaderValidationError",
]
