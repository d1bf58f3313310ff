# src/simstate_core/persistence/header.py
"""
The System file header, shared by every layout.

    version             string
    n_vars              uint32
    per variable:       name (string), family (uint32), order (uint32)
    n_dofs              uint64
    has_additional_data bool
    n_vectors           uint32    \\ omitted by the legacy layout, which names
    per vector:         name      / each vector inline with its data
"""
import logging
from dataclasses import dataclass, field
from typing import List

from ..constants import FILE_VERSION, LEGACY_FILE_VERSION
from ..variables import FEFamily, FEType, VariableRegistry
from ..vectors import VectorStore
from .exceptions import StreamFormatError
from .xdr import XdrStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeaderVariable:
    name: str
    fe_type: FEType


@dataclass
class SystemHeader:
    version: str
    variables: List[HeaderVariable]
    n_dofs: int
    has_additional_data: bool
    vector_names: List[str] = field(default_factory=list)

    @property
    def is_legacy(self) -> bool:
        return self.version == LEGACY_FILE_VERSION

    @classmethod
    def from_system(
        cls,
        registry: VariableRegistry,
        store: VectorStore,
        n_dofs: int,
        write_additional_data: bool = True,
        version: str = FILE_VERSION,
    ) -> "SystemHeader":
        return cls(
            version=version,
            variables=[HeaderVariable(v.name, v.fe_type) for v in registry],
            n_dofs=n_dofs,
            has_additional_data=write_additional_data,
            vector_names=store.names() if write_additional_data else [],
        )


def write_header(stream: XdrStream, header: SystemHeader):
    stream.write_string(header.version)
    stream.write_uint32(len(header.variables))
    for var in header.variables:
        stream.write_string(var.name)
        stream.write_uint32(int(var.fe_type.family))
        stream.write_uint32(var.fe_type.order)
    stream.write_uint64(header.n_dofs)
    stream.write_bool(header.has_additional_data)
    if header.has_additional_data and not header.is_legacy:
        stream.write_uint32(len(header.vector_names))
        for name in header.vector_names:
            stream.write_string(name)


def read_header(stream: XdrStream, read_legacy_format: bool = False) -> SystemHeader:
    """
    Reads a header. A legacy header is only accepted with `read_legacy_format`; its
    vector names are left empty because they appear inline with the data.
    """
    version = stream.read_string()
    legacy = version == LEGACY_FILE_VERSION
    if legacy and not read_legacy_format:
        raise StreamFormatError(stream.path, f"'{version}' is the legacy layout; read it with read_legacy_format=True.")

    variables = []
    for _ in range(stream.read_uint32()):
        name = stream.read_string()
        family_code = stream.read_uint32()
        order = stream.read_uint32()
        try:
            fe_type = FEType(FEFamily(family_code), order)
        except ValueError as e:
            raise StreamFormatError(stream.path, f"variable '{name}' has an invalid type: {e}") from e
        variables.append(HeaderVariable(name, fe_type))

    n_dofs = stream.read_uint64()
    has_additional_data = stream.read_bool()
    vector_names = []
    if has_additional_data and not legacy:
        vector_names = [stream.read_string() for _ in range(stream.read_uint32())]

    logger.debug(
        f"Read header '{version}' from '{stream.path}': {len(variables)} variable(s), "
        f"{n_dofs} DOF(s), {len(vector_names)} named vector(s)."
    )
    return SystemHeader(version, variables, n_dofs, has_additional_data, vector_names)
