# src/simstate_core/vectors/managed.py
"""
A DOF-indexed vector partitioned across processors.

Each rank stores the values of its own contiguous ownership range, plus, for a
ghosted vector, read-only copies of a sorted set of off-processor entries. Reading
an entry that is neither owned nor ghosted is an error: remote values are only ever
obtained through an explicit collective (`gather_indexed_values`, `localize`).
"""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..parallel import Communicator
from ..errors import FrameworkLogicError
from .exceptions import VectorLayoutError

logger = logging.getLogger(__name__)

OwnershipRanges = List[Tuple[int, int]]


class ManagedVector:
    """One named, distributed vector of the System."""

    def __init__(self, name: str):
        self.name = name
        self._ranges: OwnershipRanges = [(0, 0)]
        self._rank: int = 0
        self._values = np.zeros(0)
        self._ghost_indices = np.zeros(0, dtype=np.int64)
        self._ghost_values = np.zeros(0)

    # --- Layout ---

    def init(self, ranges: Sequence[Tuple[int, int]], rank: int, ghost_indices: Optional[np.ndarray] = None):
        """(Re)allocates the vector for a new layout. All entries are zeroed."""
        self._ranges = [tuple(r) for r in ranges]
        self._rank = rank
        first, end = self._ranges[rank]
        self._values = np.zeros(end - first)
        ghosts = np.zeros(0, dtype=np.int64) if ghost_indices is None else np.asarray(ghost_indices, dtype=np.int64)
        if ghosts.size and np.any((ghosts >= first) & (ghosts < end)):
            raise VectorLayoutError(vector_name=self.name, details="ghost indices must be off-processor entries.")
        self._ghost_indices = ghosts
        self._ghost_values = np.zeros(ghosts.size)

    @property
    def ownership_ranges(self) -> OwnershipRanges:
        return list(self._ranges)

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._ranges[-1][1]

    @property
    def local_size(self) -> int:
        return self._values.size

    @property
    def first_local_index(self) -> int:
        return self._ranges[self._rank][0]

    @property
    def last_local_index(self) -> int:
        """One past the last locally owned index."""
        return self._ranges[self._rank][1]

    @property
    def is_ghosted(self) -> bool:
        return self._ghost_indices.size > 0

    @property
    def ghost_indices(self) -> np.ndarray:
        return self._ghost_indices

    @property
    def local_values(self) -> np.ndarray:
        """The locally owned entries. Writable view."""
        return self._values

    def has_layout(self, ranges: Sequence[Tuple[int, int]], rank: int) -> bool:
        return self._rank == rank and self._ranges == [tuple(r) for r in ranges]

    def require_layout(self, ranges: Sequence[Tuple[int, int]], rank: int):
        if not self.has_layout(ranges, rank):
            raise VectorLayoutError(
                vector_name=self.name,
                details=(f"vector has ranges {self._ranges} on rank {self._rank}, "
                         f"expected {list(ranges)} on rank {rank}.")
            )

    # --- Element access ---

    def owns(self, index: int) -> bool:
        first, end = self._ranges[self._rank]
        return first <= index < end

    def __getitem__(self, index: int) -> float:
        if self.owns(index):
            return float(self._values[index - self.first_local_index])
        pos = np.searchsorted(self._ghost_indices, index)
        if pos < self._ghost_indices.size and self._ghost_indices[pos] == index:
            return float(self._ghost_values[pos])
        raise IndexError(
            f"Entry {index} of vector '{self.name}' is neither owned nor ghosted on rank {self._rank}."
        )

    def __setitem__(self, index: int, value: float):
        if not self.owns(index):
            raise IndexError(f"Entry {index} of vector '{self.name}' is not owned by rank {self._rank}.")
        self._values[index - self.first_local_index] = value

    def get_values(self, indices: np.ndarray) -> np.ndarray:
        return np.array([self[int(i)] for i in indices], dtype=float)

    def set_local_values(self, indices: np.ndarray, values: np.ndarray):
        """Writes owned entries by global index."""
        indices = np.asarray(indices, dtype=np.int64)
        first, end = self._ranges[self._rank]
        if indices.size and (indices.min() < first or indices.max() >= end):
            raise IndexError(f"set_local_values on '{self.name}' touches entries outside [{first}, {end}).")
        self._values[indices - first] = values

    def set_ghost_values(self, values: np.ndarray):
        if values.shape != self._ghost_values.shape:
            raise VectorLayoutError(vector_name=self.name, details="ghost value count does not match ghost indices.")
        self._ghost_values[:] = values

    def zero(self):
        self._values[:] = 0.0
        self._ghost_values[:] = 0.0

    def copy_values_from(self, other: "ManagedVector"):
        """Copies the owned entries of a vector with the same layout."""
        other.require_layout(self._ranges, self._rank)
        self._values[:] = other.local_values

    # --- Collectives ---

    def localize(self, comm: Communicator) -> np.ndarray:
        """Collective: the full global vector on every rank."""
        self._require_group(comm)
        pieces = comm.allgather(self._values)
        return np.concatenate(pieces) if pieces else np.zeros(0)

    def localize_to_one(self, comm: Communicator, root: int = 0) -> Optional[np.ndarray]:
        """Collective: the full global vector on `root`, None elsewhere."""
        self._require_group(comm)
        pieces = comm.gather(self._values, root=root)
        return np.concatenate(pieces) if pieces is not None else None

    def update_ghosts(self, comm: Communicator, source: Optional["ManagedVector"] = None):
        """Collective: refreshes the ghost entries from the owners' values in `source` (default: self)."""
        source = source or self
        source.require_layout(self._ranges, self._rank)
        self._ghost_values[:] = gather_indexed_values(comm, source, self._ghost_indices)

    def _require_group(self, comm: Communicator):
        if comm.size != len(self._ranges) or comm.rank != self._rank:
            raise FrameworkLogicError(
                f"Vector '{self.name}' is laid out for rank {self._rank} of {len(self._ranges)}, "
                f"but the communicator is rank {comm.rank} of {comm.size}."
            )

    def __repr__(self):
        return (f"ManagedVector(name={self.name!r}, size={self.size}, "
                f"local=[{self.first_local_index}, {self.last_local_index}), ghosts={self._ghost_indices.size})")


def gather_indexed_values(comm: Communicator, source: ManagedVector, indices: np.ndarray) -> np.ndarray:
    """
    Collective: returns `source[indices]` on every rank, fetching each entry from
    the rank that owns it. `indices` may differ per rank and may include owned
    entries. Two all-to-all exchanges: requests out, values back.
    """
    source._require_group(comm)
    indices = np.asarray(indices, dtype=np.int64)
    ranges = source.ownership_ranges
    starts = np.array([first for first, _ in ranges], dtype=np.int64)
    if indices.size and (indices.min() < 0 or indices.max() >= source.size):
        raise FrameworkLogicError(
            f"Requested entries of '{source.name}' outside [0, {source.size})."
        )
    # side='right' picks the last rank whose range starts at or before the index,
    # which skips ranks owning nothing (first == end).
    owners = np.searchsorted(starts, indices, side='right') - 1

    requests = [indices[owners == r] for r in range(comm.size)]
    incoming = comm.alltoall(requests)

    first = source.first_local_index
    replies = [source.local_values[np.asarray(req, dtype=np.int64) - first] for req in incoming]
    answers = comm.alltoall(replies)

    result = np.empty(indices.size)
    for r in range(comm.size):
        result[owners == r] = answers[r]
    return result
