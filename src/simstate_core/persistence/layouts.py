# src/simstate_core/persistence/layouts.py
"""
The three on-disk layouts of a System's state, behind one strategy interface.

- `SerializedLayout`: one file written by rank 0. Values are ordered by variable,
  then by DOF-bearing entity (nodes, then elements, each by id), then by component,
  which does not depend on the partitioning: a file written on P ranks can be read
  on Q ranks. Entities move to and from rank 0 in blocks of at most `block_size`
  ids per collective.
- `ParallelLayout`: a header file plus one file per rank holding that rank's owned
  entries. Fast, but only readable with the partitioning that wrote it.
- `LegacyLayout`: one file with each vector stored whole in global DOF order and
  named inline. Kept for files written by older versions.

All layouts share the header code. The header is written and read by rank 0 and
broadcast; a failed file operation is observed by every rank of the group.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..constants import DEFAULT_IO_BLOCK_SIZE, FILE_VERSION, LEGACY_FILE_VERSION, SOLUTION_NAME
from ..discretization import DOF_OBJECT_KINDS, IDofMap
from ..parallel import Communicator
from ..validation import HeaderValidationError, HeaderValidator, ValidationIssue, ValidationIssueLevel
from ..variables import VariableRegistry
from ..vectors import ManagedVector, VectorStore
from .exceptions import CollectiveIOError, RankFileError, StreamFormatError
from .header import SystemHeader, read_header, write_header
from .xdr import StreamFormat, StreamMode, XdrStream

logger = logging.getLogger(__name__)

ROOT = 0

EntityDofs = Tuple[int, List[int]]


class IOLayout(Enum):
    LEGACY = "legacy"
    SERIALIZED = "serialized"
    PARALLEL = "parallel"

    @classmethod
    def from_string(cls, name: str) -> "IOLayout":
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(f"Unknown I/O layout '{name}'. Expected one of {[m.value for m in cls]}.") from None


@dataclass
class IOContext:
    """What a layout reads from and writes to: the live state of one System."""
    system_name: str
    registry: VariableRegistry
    store: VectorStore
    dof_map: IDofMap
    comm: Communicator


class _RootFile:
    """
    The file end of a collective operation. Only the root rank touches the file.

    A failure on root is recorded instead of raised, so the root keeps taking part in
    the collectives that follow. `finish()` (or `checkpoint()`) then raises the
    original error on root and `CollectiveIOError` on every other rank.
    """

    def __init__(self, comm: Communicator, path: str, mode: StreamMode, stream_format: StreamFormat):
        self.comm = comm
        self.path = str(path)
        self.failure: Optional[Exception] = None
        self.stream: Optional[XdrStream] = None
        self.attempt(lambda _: setattr(self, 'stream', XdrStream(self.path, mode, stream_format)))

    @property
    def is_root(self) -> bool:
        return self.comm.rank == ROOT

    @property
    def ok(self) -> bool:
        return self.is_root and self.failure is None

    def attempt(self, fn: Callable[[Optional[XdrStream]], Any], default: Any = None) -> Any:
        if not self.ok:
            return default
        try:
            return fn(self.stream)
        except Exception as e:
            logger.error(f"File operation on '{self.path}' failed: {e}")
            self.failure = e
            return default

    def checkpoint(self):
        """Collective: raises everywhere if the root has failed so far."""
        message = self.comm.bcast(
            None if self.failure is None else f"{type(self.failure).__name__}: {self.failure}", root=ROOT
        )
        if message is None:
            return
        self.close()
        if self.failure is not None:
            raise self.failure
        raise CollectiveIOError(self.path, self.comm.rank, message)

    def close(self):
        if self.stream is not None:
            self.stream.close()

    def finish(self):
        """Collective: closes the file and raises everywhere if the root has failed."""
        self.close()
        self.checkpoint()


def _entity_blocks(objects: Sequence[EntityDofs], max_id: int, block_size: int) -> Iterator[List[EntityDofs]]:
    """Splits id-sorted (id, dofs) pairs into consecutive id ranges of `block_size` ids."""
    pos = 0
    for start in range(0, max_id, block_size):
        end = start + block_size
        block = []
        while pos < len(objects) and objects[pos][0] < end:
            block.append(objects[pos])
            pos += 1
        yield block


def _check_local_outcome(comm: Communicator, path: str, failure: Optional[Exception]):
    """Collective: every rank learns whether any rank's own file operation failed."""
    messages = comm.allgather(None if failure is None else f"{type(failure).__name__}: {failure}")
    if failure is not None:
        raise failure
    failed = [(rank, m) for rank, m in enumerate(messages) if m is not None]
    if failed:
        rank, message = failed[0]
        raise CollectiveIOError(path, comm.rank, f"rank {rank}: {message}")


class LayoutStrategy(ABC):
    """
    Args:
        stream_format: Binary (XDR) or ASCII encoding.
        block_size: Entities per collective in the serialized layout.
    """
    layout: IOLayout
    version: str = FILE_VERSION

    def __init__(self, stream_format: StreamFormat = StreamFormat.BINARY, block_size: int = DEFAULT_IO_BLOCK_SIZE):
        if block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {block_size}.")
        self.stream_format = stream_format
        self.block_size = block_size

    # --- Shared header code ---

    def make_header(self, ctx: IOContext, write_additional_data: bool) -> SystemHeader:
        return SystemHeader.from_system(
            ctx.registry, ctx.store, ctx.dof_map.n_dofs(), write_additional_data, version=self.version
        )

    def _write_shared_header(self, ctx: IOContext, path: str, header: SystemHeader) -> _RootFile:
        root_file = _RootFile(ctx.comm, path, StreamMode.WRITE, self.stream_format)
        root_file.attempt(lambda s: write_header(s, header))
        return root_file

    def _read_shared_header(self, ctx: IOContext, path: str, read_legacy_format: bool) -> Tuple[_RootFile, SystemHeader]:
        root_file = _RootFile(ctx.comm, path, StreamMode.READ, self.stream_format)
        header = root_file.attempt(lambda s: read_header(s, read_legacy_format))
        root_file.checkpoint()
        return root_file, ctx.comm.bcast(header, root=ROOT)

    def read_header(self, ctx: IOContext, path: str, read_legacy_format: bool = False) -> SystemHeader:
        """Collective: reads only the header. Every rank returns the same header."""
        root_file, header = self._read_shared_header(ctx, path, read_legacy_format)
        root_file.close()
        return header

    @staticmethod
    def validate_header(ctx: IOContext, header: SystemHeader, path: str) -> List[ValidationIssue]:
        """
        Checks a header against the live system before its data is read.

        Raises:
            HeaderValidationError: On any error-level issue (e.g. a different variable count).
        """
        issues = HeaderValidator(
            ctx.system_name, ctx.registry, ctx.store, n_dofs=ctx.dof_map.n_dofs(), source_file=str(path)
        ).validate(header)
        for issue in issues:
            if issue.level == ValidationIssueLevel.WARNING:
                logger.warning(f"[{ctx.system_name}] {issue}")
        if any(issue.is_error for issue in issues):
            raise HeaderValidationError(issues)
        return issues

    @staticmethod
    def _targets(ctx: IOContext, header: SystemHeader) -> List[Tuple[str, Optional[ManagedVector]]]:
        """The vectors of a file in stored order, with None for those the system lacks."""
        return [(SOLUTION_NAME, ctx.store.solution)] + [
            (name, ctx.store.request_vector(name)) for name in header.vector_names
        ]

    # --- Layout-specific data ---

    @abstractmethod
    def write(self, ctx: IOContext, path: str, write_additional_data: bool = True):
        """Collective: writes the header and the solution (plus the additional vectors)."""

    @abstractmethod
    def read(self, ctx: IOContext, path: str, read_additional_data: bool = True) -> SystemHeader:
        """Collective: reads a file into the live vectors and returns its header."""


class SerializedLayout(LayoutStrategy):
    layout = IOLayout.SERIALIZED

    def write(self, ctx: IOContext, path: str, write_additional_data: bool = True):
        header = self.make_header(ctx, write_additional_data)
        root_file = self._write_shared_header(ctx, path, header)
        for _, vector in self._targets(ctx, header):
            self._write_vector(ctx, root_file, vector)
        root_file.finish()
        if ctx.comm.rank == ROOT:
            logger.info(f"[{ctx.system_name}] Wrote serialized state ({1 + len(header.vector_names)} vector(s)) to '{path}'.")

    def _write_vector(self, ctx: IOContext, root_file: _RootFile, vector: ManagedVector):
        comm, dof_map = ctx.comm, ctx.dof_map
        vector.require_layout(dof_map.ownership_ranges(), dof_map.rank)
        first = vector.first_local_index
        for var in ctx.registry:
            for kind in DOF_OBJECT_KINDS:
                total = sum(len(dofs) for _, dofs in dof_map.dof_objects(kind, var.number))
                root_file.attempt(lambda s: s.write_uint64(total))
                owned = dof_map.dof_objects(kind, var.number, rank=comm.rank)
                for block in _entity_blocks(owned, dof_map.max_entity_id(kind), self.block_size):
                    local = [(eid, vector.local_values[np.asarray(dofs) - first]) for eid, dofs in block]
                    gathered = comm.gather(local, root=ROOT)
                    if root_file.ok:
                        merged = sorted((pair for part in gathered for pair in part), key=lambda p: p[0])
                        values = np.concatenate([v for _, v in merged]) if merged else np.zeros(0)
                        root_file.attempt(lambda s: s.write_float_values(values))

    def read(self, ctx: IOContext, path: str, read_additional_data: bool = True) -> SystemHeader:
        root_file, header = self._read_shared_header(ctx, path, read_legacy_format=False)
        try:
            self.validate_header(ctx, header, path)
        except HeaderValidationError:
            root_file.close()
            raise
        targets = self._targets(ctx, header)
        if not (read_additional_data and header.has_additional_data):
            targets = targets[:1]
        for name, vector in targets:
            if vector is None:
                logger.warning(f"[{ctx.system_name}] Skipping file vector '{name}', which the system does not have.")
            self._read_vector(ctx, root_file, vector)
        root_file.finish()
        logger.debug(f"[{ctx.system_name}] Read serialized state from '{path}' on rank {ctx.comm.rank}.")
        return header

    def _read_vector(self, ctx: IOContext, root_file: _RootFile, vector: Optional[ManagedVector]):
        comm, dof_map = ctx.comm, ctx.dof_map
        if vector is not None:
            vector.require_layout(dof_map.ownership_ranges(), dof_map.rank)
        for var in ctx.registry:
            for kind in DOF_OBJECT_KINDS:
                objects = dof_map.dof_objects(kind, var.number)
                total = sum(len(dofs) for _, dofs in objects)

                def _check_count(s: XdrStream):
                    found = s.read_uint64()
                    if found != total:
                        raise StreamFormatError(
                            s.path, f"variable '{var.name}' has {found} {kind} value(s) in the file, the system has {total}."
                        )
                root_file.attempt(_check_count)

                for block in _entity_blocks(objects, dof_map.max_entity_id(kind), self.block_size):
                    n_values = sum(len(dofs) for _, dofs in block)
                    values = root_file.attempt(lambda s: s.read_float_values(n_values))
                    payloads = None
                    if comm.rank == ROOT:
                        payloads = [None] * comm.size
                        if values is not None:
                            payloads = self._split_by_owner(dof_map, block, values, comm.size)
                    part = comm.scatter(payloads, root=ROOT)
                    if part is not None and vector is not None and part[0].size:
                        vector.set_local_values(part[0], part[1])

    @staticmethod
    def _split_by_owner(dof_map: IDofMap, block: Sequence[EntityDofs], values: np.ndarray, size: int):
        per_rank: List[Tuple[List[int], List[float]]] = [([], []) for _ in range(size)]
        pos = 0
        for _, dofs in block:
            owner = dof_map.dof_owner(dofs[0])
            per_rank[owner][0].extend(dofs)
            per_rank[owner][1].extend(values[pos:pos + len(dofs)])
            pos += len(dofs)
        return [(np.asarray(d, dtype=np.int64), np.asarray(v, dtype=float)) for d, v in per_rank]


def rank_file_name(path: str, rank: int) -> str:
    """The per-rank data file of a parallel-layout file."""
    return f"{path}.{rank:04d}"


class ParallelLayout(LayoutStrategy):
    layout = IOLayout.PARALLEL

    def write(self, ctx: IOContext, path: str, write_additional_data: bool = True):
        comm, dof_map = ctx.comm, ctx.dof_map
        header = self.make_header(ctx, write_additional_data)
        root_file = self._write_shared_header(ctx, path, header)
        root_file.attempt(lambda s: s.write_uint32(comm.size))
        root_file.finish()

        own_path = rank_file_name(path, comm.rank)
        failure = None
        try:
            with XdrStream(own_path, StreamMode.WRITE, self.stream_format) as stream:
                stream.write_uint32(comm.size)
                stream.write_uint32(comm.rank)
                stream.write_uint64(dof_map.first_dof())
                for _, vector in self._targets(ctx, header):
                    vector.require_layout(dof_map.ownership_ranges(), dof_map.rank)
                    stream.write_floats(vector.local_values)
        except Exception as e:
            logger.error(f"[{ctx.system_name}] Writing '{own_path}' failed: {e}")
            failure = e
        _check_local_outcome(comm, own_path, failure)
        if comm.rank == ROOT:
            logger.info(f"[{ctx.system_name}] Wrote parallel state to '{path}' and {comm.size} rank file(s).")

    def read(self, ctx: IOContext, path: str, read_additional_data: bool = True) -> SystemHeader:
        comm, dof_map = ctx.comm, ctx.dof_map
        root_file, header = self._read_shared_header(ctx, path, read_legacy_format=False)
        n_writers = root_file.attempt(lambda s: s.read_uint32())
        root_file.finish()
        n_writers = comm.bcast(n_writers, root=ROOT)
        self.validate_header(ctx, header, path)

        own_path = rank_file_name(path, comm.rank)
        failure = None
        try:
            if n_writers != comm.size:
                raise RankFileError(own_path, comm.rank, f"written by {n_writers} rank(s), read by {comm.size}.")
            targets = self._targets(ctx, header)
            if not (read_additional_data and header.has_additional_data):
                targets = targets[:1]
            with XdrStream(own_path, StreamMode.READ, self.stream_format) as stream:
                self._check_rank_preamble(stream, ctx)
                for _, vector in targets:
                    values = stream.read_floats(expected=dof_map.n_local_dofs())
                    if vector is not None:
                        vector.require_layout(dof_map.ownership_ranges(), dof_map.rank)
                        vector.local_values[:] = values
        except Exception as e:
            logger.error(f"[{ctx.system_name}] Reading '{own_path}' failed: {e}")
            failure = e
        _check_local_outcome(comm, own_path, failure)
        return header

    @staticmethod
    def _check_rank_preamble(stream: XdrStream, ctx: IOContext):
        size, rank, first = stream.read_uint32(), stream.read_uint32(), stream.read_uint64()
        if (size, rank) != (ctx.comm.size, ctx.comm.rank):
            raise RankFileError(stream.path, ctx.comm.rank, f"file belongs to rank {rank} of {size}.")
        if first != ctx.dof_map.first_dof():
            raise RankFileError(
                stream.path, ctx.comm.rank,
                f"file starts at DOF {first}, this rank owns DOFs from {ctx.dof_map.first_dof()}."
            )


class LegacyLayout(LayoutStrategy):
    layout = IOLayout.LEGACY
    version = LEGACY_FILE_VERSION

    def write(self, ctx: IOContext, path: str, write_additional_data: bool = True):
        header = self.make_header(ctx, write_additional_data)
        root_file = self._write_shared_header(ctx, path, header)
        for name, vector in self._targets(ctx, header):
            values = vector.localize_to_one(ctx.comm, root=ROOT)
            if vector is not ctx.store.solution:
                root_file.attempt(lambda s: s.write_string(name))
            root_file.attempt(lambda s: s.write_floats(values))
        root_file.finish()
        if ctx.comm.rank == ROOT:
            logger.info(f"[{ctx.system_name}] Wrote legacy state to '{path}'.")

    def read(self, ctx: IOContext, path: str, read_additional_data: bool = True) -> SystemHeader:
        root_file, header = self._read_shared_header(ctx, path, read_legacy_format=True)
        try:
            self.validate_header(ctx, header, path)
        except HeaderValidationError:
            root_file.close()
            raise
        self._scatter_global(ctx, root_file, ctx.store.solution)
        if read_additional_data and header.has_additional_data:
            header.vector_names = self.read_legacy_data(ctx, root_file)
        root_file.finish()
        return header

    def read_legacy_data(self, ctx: IOContext, root_file: _RootFile) -> List[str]:
        """
        Collective: reads the inline-named vectors that follow the solution on root
        and scatters each to its owners. Returns the names found in the file.
        """
        def _read_all(s: XdrStream) -> List[Tuple[str, np.ndarray]]:
            found = []
            while not s.at_end():
                found.append((s.read_string(), s.read_floats(expected=ctx.dof_map.n_dofs())))
            return found

        records = root_file.attempt(_read_all, default=[])
        names = ctx.comm.bcast([name for name, _ in records], root=ROOT)
        for i, name in enumerate(names):
            vector = ctx.store.request_vector(name)
            if vector is None:
                logger.warning(f"[{ctx.system_name}] Skipping legacy vector '{name}', which the system does not have.")
            values = records[i][1] if ctx.comm.rank == ROOT else None
            self._scatter_values(ctx, values, vector)
        return names

    def _scatter_global(self, ctx: IOContext, root_file: _RootFile, vector: ManagedVector):
        values = root_file.attempt(lambda s: s.read_floats(expected=ctx.dof_map.n_dofs()))
        self._scatter_values(ctx, values, vector)

    @staticmethod
    def _scatter_values(ctx: IOContext, values: Optional[np.ndarray], vector: Optional[ManagedVector]):
        comm, dof_map = ctx.comm, ctx.dof_map
        payloads = None
        if comm.rank == ROOT:
            payloads = [None] * comm.size
            if values is not None:
                payloads = [values[first:end] for first, end in dof_map.ownership_ranges()]
        part = comm.scatter(payloads, root=ROOT)
        if part is not None and vector is not None:
            vector.require_layout(dof_map.ownership_ranges(), dof_map.rank)
            vector.local_values[:] = part


_LAYOUTS = {
    IOLayout.LEGACY: LegacyLayout,
    IOLayout.SERIALIZED: SerializedLayout,
    IOLayout.PARALLEL: ParallelLayout,
}


def layout_for(
    layout: Union[IOLayout, str],
    stream_format: Union[StreamFormat, str] = StreamFormat.BINARY,
    block_size: int = DEFAULT_IO_BLOCK_SIZE,
) -> LayoutStrategy:
    """Returns the strategy implementing `layout`."""
    if isinstance(layout, str):
        layout = IOLayout.from_string(layout)
    if isinstance(stream_format, str):
        stream_format = StreamFormat.from_string(stream_format)
    return _LAYOUTS[layout](stream_format=stream_format, block_size=block_size)
