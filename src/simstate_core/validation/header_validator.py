# src/simstate_core/validation/header_validator.py
import logging
from typing import TYPE_CHECKING, List, Optional

from ..constants import FILE_VERSION, FILE_VERSION_PREFIX, LEGACY_FILE_VERSION
from ..variables import VariableRegistry
from ..vectors import VectorStore
from .issues import ValidationIssue, ValidationIssueLevel
from .issue_codes import HeaderIssueCode

if TYPE_CHECKING:
    from ..persistence.header import SystemHeader

logger = logging.getLogger(__name__)


class HeaderValidator:
    """
    Compares a persisted header with the live state of a System.

    Variable mismatches are errors: the data that follows a header is laid out per
    variable, so it cannot be read into a system with a different variable set.
    Differences in DOF count or vector set are reported but do not block a read.
    """

    def __init__(
        self,
        system_name: str,
        registry: VariableRegistry,
        store: VectorStore,
        n_dofs: Optional[int] = None,
        source_file: Optional[str] = None,
    ):
        self.system_name = system_name
        self.registry = registry
        self.store = store
        self.n_dofs = n_dofs
        self.source_file = source_file
        self.issues: List[ValidationIssue] = []

    def validate(self, header: "SystemHeader") -> List[ValidationIssue]:
        self.issues = []
        self._check_version(header)
        self._check_variables(header)
        if self.n_dofs is not None and header.n_dofs != self.n_dofs:
            self._add_issue(ValidationIssueLevel.WARNING, HeaderIssueCode.HDR_DOFS_MISMATCH,
                            file_dofs=header.n_dofs, live_dofs=self.n_dofs)
        if header.has_additional_data:
            self._check_vectors(header)

        if self.issues:
            errors = sum(1 for i in self.issues if i.is_error)
            logger.info(f"[{self.system_name}] Header validation found {errors} error(s) in {len(self.issues)} issue(s).")
        return self.issues

    def _check_version(self, header: "SystemHeader"):
        if not header.version.startswith(FILE_VERSION_PREFIX):
            self._add_issue(ValidationIssueLevel.ERROR, HeaderIssueCode.HDR_VERSION_UNKNOWN,
                            version=header.version, prefix=FILE_VERSION_PREFIX)
        elif header.version not in (FILE_VERSION, LEGACY_FILE_VERSION):
            self._add_issue(ValidationIssueLevel.WARNING, HeaderIssueCode.HDR_VERSION_DIFFERS,
                            version=header.version, current=FILE_VERSION)

    def _check_variables(self, header: "SystemHeader"):
        if len(header.variables) != len(self.registry):
            self._add_issue(ValidationIssueLevel.ERROR, HeaderIssueCode.HDR_VAR_COUNT,
                            file_count=len(header.variables), live_count=len(self.registry))
            return
        for number, (file_var, live_var) in enumerate(zip(header.variables, self.registry)):
            if file_var.name != live_var.name:
                self._add_issue(ValidationIssueLevel.ERROR, HeaderIssueCode.HDR_VAR_NAME,
                                number=number, file_name=file_var.name, live_name=live_var.name)
            elif file_var.fe_type != live_var.fe_type:
                self._add_issue(ValidationIssueLevel.ERROR, HeaderIssueCode.HDR_VAR_TYPE,
                                name=live_var.name, file_type=file_var.fe_type, live_type=live_var.fe_type)

    def _check_vectors(self, header: "SystemHeader"):
        if self.store.sealed:
            for name in header.vector_names:
                if not self.store.have_vector(name):
                    self._add_issue(ValidationIssueLevel.WARNING, HeaderIssueCode.HDR_VEC_UNREGISTERED, vector_name=name)
        for name in self.store.names():
            if name not in header.vector_names:
                self._add_issue(ValidationIssueLevel.INFO, HeaderIssueCode.HDR_VEC_NOT_IN_FILE, vector_name=name)

    def _add_issue(self, level: ValidationIssueLevel, code_enum: HeaderIssueCode, **kwargs):
        self.issues.append(ValidationIssue(
            level=level,
            code=code_enum.code,
            message=code_enum.format_message(**kwargs),
            system_name=self.system_name,
            source_file=self.source_file,
            details=kwargs,
        ))
