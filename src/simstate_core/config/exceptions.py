# src/simstate_core/config/exceptions.py
"""
Diagnosable exceptions for loading a YAML system description.

`ConfigFileError` covers file-level problems (missing file, unreadable file, invalid
YAML syntax); `ConfigSchemaError` covers a document that loads but does not match
the Cerberus schema. Both are caught by the `build_system` and
`load_system_config` facades and re-raised as `SystemSetupError`.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from ..errors import DiagnosableError, format_diagnostic_report


@dataclass(frozen=True)
class ConfigFileError(DiagnosableError):
    details: str
    file_path: Path

    def __str__(self):
        return f"Configuration error in file '{self.file_path}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="YAML Configuration or File Error",
            details=self.details,
            suggestion="Ensure the file exists, has the correct read permissions, and contains valid YAML syntax.",
            context={'source_file': self.file_path}
        )


def _flatten_errors(errors: Any, prefix: str = "") -> list:
    """Cerberus nests errors of sub-documents and list items; flattens them to (field path, message)."""
    flat = []
    if isinstance(errors, dict):
        for key, value in sorted(errors.items(), key=lambda kv: str(kv[0])):
            path = f"{prefix}.{key}" if prefix else str(key)
            flat.extend(_flatten_errors(value, path))
    elif isinstance(errors, list):
        for item in errors:
            flat.extend(_flatten_errors(item, prefix))
    else:
        flat.append((prefix, str(errors)))
    return flat


@dataclass(frozen=True)
class ConfigSchemaError(DiagnosableError):
    """
    Raised when the YAML loads but does not conform to the system-description schema
    (missing keys, invalid identifiers, duplicate variable or vector names, unknown
    families or layouts).
    """
    errors: Dict[str, Any]
    file_path: Path

    def __str__(self):
        error_lines = [f"  - In field '{field}': {message}" for field, message in _flatten_errors(self.errors)]
        return f"YAML schema validation failed for file '{self.file_path}':\n" + "\n".join(error_lines)

    def get_diagnostic_report(self) -> str:
        flat = _flatten_errors(self.errors)
        error_list_str = "\n".join(f"  - Field '{field}': {message}" for field, message in flat)
        details = (
            "The structure of the YAML file does not conform to the system-description schema.\n"
            f"See details for {len(flat)} issue(s) below:\n\n{error_list_str}"
        )
        return format_diagnostic_report(
            error_type="YAML Schema Validation Error",
            details=details,
            suggestion=(
                "Correct the specified fields. Check for invalid identifiers (e.g. using '-' or '.'), "
                "duplicate variable or vector names, or a missing 'system' or 'variables' section."
            ),
            context={'source_file': self.file_path}
        )
