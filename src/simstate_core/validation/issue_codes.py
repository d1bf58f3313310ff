# src/simstate_core/validation/issue_codes.py
import logging
from enum import Enum

logger = logging.getLogger(__name__)


class HeaderIssueCode(Enum):
    """
    Registry of header validation issue codes and their message templates.
    Each enum member's value is a tuple: (code_str, message_template_str).
    """

    # --- File Version Issues (HDR_VERSION_...) ---
    HDR_VERSION_UNKNOWN = ("HDR_VERSION_UNKNOWN", "File version '{version}' is not a SimState file version (expected prefix '{prefix}').")
    HDR_VERSION_DIFFERS = ("HDR_VERSION_DIFFERS", "File version '{version}' differs from the current version '{current}'.")

    # --- Variable Issues (HDR_VAR_...) ---
    HDR_VAR_COUNT = ("HDR_VAR_COUNT", "File declares {file_count} variable(s), the system has {live_count}.")
    HDR_VAR_NAME = ("HDR_VAR_NAME", "Variable #{number} is named '{file_name}' in the file and '{live_name}' in the system.")
    HDR_VAR_TYPE = ("HDR_VAR_TYPE", "Variable '{name}' has type {file_type} in the file and {live_type} in the system.")

    # --- DOF Count Issues (HDR_DOFS_...) ---
    HDR_DOFS_MISMATCH = ("HDR_DOFS_MISMATCH", "File was written with {file_dofs} DOF(s), the system currently has {live_dofs}.")

    # --- Vector Issues (HDR_VEC_...) ---
    HDR_VEC_UNREGISTERED = ("HDR_VEC_UNREGISTERED", "File vector '{vector_name}' is not registered in the sealed system and will be skipped.")
    HDR_VEC_NOT_IN_FILE = ("HDR_VEC_NOT_IN_FILE", "System vector '{vector_name}' is not in the file and keeps its current values.")

    @property
    def code(self) -> str:
        return self.value[0]

    @property
    def template(self) -> str:
        return self.value[1]

    def format_message(self, **kwargs) -> str:
        """Formats the message template with provided keyword arguments."""
        try:
            return self.template.format(**kwargs)
        except KeyError as e:
            logger.error(f"Missing key {e} for formatting message template of {self.name} (code: {self.code}): '{self.template}'. Provided args: {kwargs}")
            return f"Error formatting message for {self.code}: Missing key {e}. Template: '{self.template}' Args: {kwargs}"
