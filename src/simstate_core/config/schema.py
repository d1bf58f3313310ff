# src/simstate_core/config/schema.py
"""
Loads and validates the YAML description of a System.

Example:

    system: heat
    variables:
      - {name: T, family: LAGRANGE, order: 2, units: kelvin}
      - {name: q, family: MONOMIAL, order: 0, subdomains: [1]}
    vectors:
      - {name: old_solution, project: true}
      - {name: residual, project: false}
    families:
      adjoint_solution: 2
    io: {layout: serialized, format: binary}
    parameters: {amplitude: 2.0}
    initial_conditions:
      T: "amplitude * sin(pi * x)"
"""
import logging
import re
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import cerberus
import yaml

from ..constants import (
    ADJOINT_RHS_FAMILY,
    ADJOINT_SOLUTION_FAMILY,
    DEFAULT_IO_BLOCK_SIZE,
    RESERVED_VECTOR_NAMES,
    SENSITIVITY_RHS_FAMILY,
    SENSITIVITY_SOLUTION_FAMILY,
    WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY,
)
from ..persistence import IOLayout, StreamFormat
from ..variables import FEFamily
from .exceptions import ConfigFileError, ConfigSchemaError

logger = logging.getLogger(__name__)

ID_REGEX = r"^[a-zA-Z_][a-zA-Z0-9_]*$"
ALLOWED_ID_CHARS = set(string.ascii_letters + string.digits + "_")

INDEXED_FAMILIES = (
    ADJOINT_SOLUTION_FAMILY,
    ADJOINT_RHS_FAMILY,
    SENSITIVITY_SOLUTION_FAMILY,
    SENSITIVITY_RHS_FAMILY,
    WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY,
)


def _upper(value):
    return value.upper() if isinstance(value, str) else value


def _lower(value):
    return value.lower() if isinstance(value, str) else value


class EnhancedValidator(cerberus.Validator):
    """Cerberus validator with the identifier and uniqueness rules of system descriptions."""

    def _validate_id_regex(self, constraint, field, value):
        """
        The rule's arguments are validated against this schema:
        {'type': 'boolean'}
        """
        if not constraint:
            return
        if not isinstance(value, str):
            self._error(field, "must be a string to be validated by id_regex.")
            return
        if not re.match(ID_REGEX, value):
            invalid_chars = sorted(set(value) - ALLOWED_ID_CHARS)
            self._error(
                field,
                f"Identifier '{value}' is invalid. Identifiers must start with a letter or underscore "
                f"and contain only letters, numbers and underscores. Forbidden character(s): {invalid_chars}"
            )

    def _validate_unique_elements_by_key(self, key_for_uniqueness, field, value):
        """
        Validates that all dictionaries in a list have a unique value for a given key.
        The rule's arguments are validated against this schema:
        {'type': 'string'}
        """
        if not isinstance(value, list):
            return
        seen, duplicates = set(), set()
        for item in value:
            if not isinstance(item, dict):
                continue
            item_key = item.get(key_for_uniqueness)
            if item_key is None:
                continue
            if item_key in seen:
                duplicates.add(item_key)
            seen.add(item_key)
        if duplicates:
            self._error(field, f"Duplicate values found for key '{key_for_uniqueness}': {sorted(duplicates)}")


_id_rule = {"type": "string", "required": True, "empty": False, "id_regex": True}

_variable_schema = {
    "name": _id_rule,
    "family": {"type": "string", "coerce": _upper, "default": "LAGRANGE", "allowed": [f.name for f in FEFamily]},
    "order": {"type": "integer", "min": 0, "default": 1},
    "subdomains": {"type": "list", "schema": {"type": "integer", "min": 0}},
    "units": {"type": "string", "nullable": True},
}

_vector_schema = {
    "name": {**_id_rule, "forbidden": list(RESERVED_VECTOR_NAMES)},
    "project": {"type": "boolean", "default": True},
}

SYSTEM_SCHEMA = {
    "system": {"type": "string", "required": True, "id_regex": True},
    "number": {"type": "integer", "min": 0, "default": 0},
    "variables": {
        "type": "list", "required": True, "minlength": 1, "unique_elements_by_key": "name",
        "schema": {"type": "dict", "schema": _variable_schema},
    },
    "vectors": {
        "type": "list", "default": [], "unique_elements_by_key": "name",
        "schema": {"type": "dict", "schema": _vector_schema},
    },
    "families": {
        "type": "dict", "default": {},
        "keysrules": {"type": "string", "allowed": list(INDEXED_FAMILIES)},
        "valuesrules": {"type": "integer", "min": 0},
    },
    "project_solution_on_reinit": {"type": "boolean", "default": True},
    "parallel": {
        "type": "dict", "default": {},
        "schema": {"n_threads": {"type": "integer", "min": 1, "default": 1}},
    },
    "io": {
        "type": "dict", "default": {},
        "schema": {
            "layout": {"type": "string", "coerce": _lower, "default": IOLayout.SERIALIZED.value,
                       "allowed": [m.value for m in IOLayout]},
            "format": {"type": "string", "coerce": _lower, "default": StreamFormat.BINARY.value,
                       "allowed": [m.value for m in StreamFormat]},
            "block_size": {"type": "integer", "min": 1, "default": DEFAULT_IO_BLOCK_SIZE},
        },
    },
    "parameters": {
        "type": "dict", "default": {},
        "keysrules": {"type": "string", "id_regex": True, "forbidden": ["x"]},
        "valuesrules": {"type": "number"},
    },
    "initial_conditions": {
        "type": "dict", "default": {},
        "keysrules": {"type": "string", "id_regex": True},
        "valuesrules": {"type": ["string", "number"]},
    },
}


@dataclass(frozen=True)
class VariableConfig:
    name: str
    family: str = "LAGRANGE"
    order: int = 1
    subdomains: Tuple[int, ...] = ()
    units: Optional[str] = None


@dataclass(frozen=True)
class VectorConfig:
    name: str
    project: bool = True


@dataclass
class SystemConfig:
    """The validated description of one System, ready for `build_system`."""
    name: str
    variables: List[VariableConfig]
    number: int = 0
    vectors: List[VectorConfig] = field(default_factory=list)
    families: Dict[str, int] = field(default_factory=dict)
    project_solution_on_reinit: bool = True
    n_threads: int = 1
    io_layout: str = IOLayout.SERIALIZED.value
    io_format: str = StreamFormat.BINARY.value
    io_block_size: int = DEFAULT_IO_BLOCK_SIZE
    parameters: Dict[str, float] = field(default_factory=dict)
    initial_conditions: Dict[str, str] = field(default_factory=dict)
    source_path: Optional[Path] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any], source_path: Optional[Path] = None) -> "SystemConfig":
        """Builds the config from a document already normalized by the schema validator."""
        return cls(
            name=doc["system"],
            number=doc["number"],
            variables=[
                VariableConfig(
                    name=v["name"], family=v["family"], order=v["order"],
                    subdomains=tuple(v.get("subdomains", ())), units=v.get("units"),
                )
                for v in doc["variables"]
            ],
            vectors=[VectorConfig(name=v["name"], project=v["project"]) for v in doc["vectors"]],
            families=dict(doc["families"]),
            project_solution_on_reinit=doc["project_solution_on_reinit"],
            n_threads=doc["parallel"]["n_threads"],
            io_layout=doc["io"]["layout"],
            io_format=doc["io"]["format"],
            io_block_size=doc["io"]["block_size"],
            parameters={k: float(v) for k, v in doc["parameters"].items()},
            initial_conditions={k: str(v) for k, v in doc["initial_conditions"].items()},
            source_path=source_path,
        )


class SystemConfigParser:
    """Validates system-description documents against `SYSTEM_SCHEMA`."""

    def __init__(self):
        self._validator = EnhancedValidator(SYSTEM_SCHEMA)
        self._validator.allow_unknown = False

    def parse_document(self, content: Dict[str, Any], source_path: Path) -> SystemConfig:
        if not self._validator.validate(content):
            raise ConfigSchemaError(errors=self._validator.errors, file_path=source_path)
        doc = self._validator.document

        # Cross-field rules the schema cannot express.
        errors: Dict[str, List[str]] = {}
        variable_names = {v["name"] for v in doc["variables"]}
        for name in doc["initial_conditions"]:
            if name not in variable_names:
                errors.setdefault("initial_conditions", []).append(
                    f"Initial condition for undeclared variable '{name}'."
                )
        for v in doc["variables"]:
            if v["family"] == FEFamily.LAGRANGE.name and v["order"] < 1:
                errors.setdefault("variables", []).append(
                    f"Variable '{v['name']}': LAGRANGE requires order >= 1, got {v['order']}."
                )
        if errors:
            raise ConfigSchemaError(errors=errors, file_path=source_path)
        return SystemConfig.from_document(doc, source_path)

    def parse_file(self, path: Union[str, Path]) -> SystemConfig:
        source = Path(path).resolve()
        logger.info(f"Loading system description from {source}")
        return self.parse_document(self._load_yaml(source), source)

    @staticmethod
    def _load_yaml(source: Path) -> Dict[str, Any]:
        if not source.is_file():
            raise ConfigFileError(details=f"System description not found at path: {source}", file_path=source)
        try:
            with source.open("r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except PermissionError as e:
            raise ConfigFileError(details=f"Permission denied when trying to read file: {e}", file_path=source) from e
        except yaml.YAMLError as e:
            raise ConfigFileError(details=f"Invalid YAML syntax: {e}", file_path=source) from e
        if content is None:
            raise ConfigFileError(details="The YAML file is empty or contains no valid content.", file_path=source)
        if not isinstance(content, dict):
            raise ConfigFileError(details="The root of the YAML file must be a dictionary (mapping).", file_path=source)
        return content
