# src/simstate_core/vectors/store.py
"""
The VectorStore owns every DOF-indexed vector of one System: the primary solution,
its ghosted local copy, and the named auxiliary vectors with their
project-or-zero flags.

All vectors in a store share one layout (global size and ownership ranges) at all
times. The set of auxiliary vector names may grow until the store is sealed at the
first initialization of its System, and is immutable afterwards.
"""
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..constants import CURRENT_LOCAL_SOLUTION_NAME, RESERVED_VECTOR_NAMES, SOLUTION_NAME
from .exceptions import DuplicateVectorError, VectorNotFoundError, VectorStoreSealedError
from .managed import ManagedVector

logger = logging.getLogger(__name__)

VectorKey = Union[str, int]


class VectorStore:
    def __init__(self, system_name: str):
        self._system_name = system_name
        self.solution = ManagedVector(SOLUTION_NAME)
        self.current_local_solution = ManagedVector(CURRENT_LOCAL_SOLUTION_NAME)
        # dicts preserve insertion order, which is the registration order.
        self._vectors: Dict[str, ManagedVector] = {}
        self._projections: Dict[str, bool] = {}
        self._sealed = False
        self._layout: Optional[Tuple[List[Tuple[int, int]], int]] = None
        self._ghosts = np.zeros(0, dtype=np.int64)

    @property
    def system_name(self) -> str:
        return self._system_name

    # --- Registration ---

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self):
        """Closes the vector-name set. Happens exactly once, at first initialization."""
        if not self._sealed:
            self._sealed = True
            logger.debug(f"[{self._system_name}] Vector store sealed with {len(self._vectors)} vector(s).")

    def unseal(self):
        """Re-opens registration after the owning System was cleared."""
        self._sealed = False

    def add_vector(self, name: str, project: bool = True) -> ManagedVector:
        """
        Registers a new zero-filled vector laid out like the solution.

        Raises:
            VectorStoreSealedError: If the store has been sealed.
            DuplicateVectorError: If a vector with this name already exists, or the name
                is one of the store's own (RESERVED_VECTOR_NAMES).
        """
        if self._sealed:
            raise VectorStoreSealedError(system_name=self._system_name, vector_name=name)
        if name in self._vectors or name in RESERVED_VECTOR_NAMES:
            raise DuplicateVectorError(system_name=self._system_name, vector_name=name)

        vector = ManagedVector(name)
        if self._layout is not None:
            vector.init(*self._layout)
        self._vectors[name] = vector
        self._projections[name] = project
        logger.debug(f"[{self._system_name}] Added vector '{name}' (project={project}).")
        return vector

    def clear(self):
        """Drops every auxiliary vector and forgets the layout."""
        self._vectors.clear()
        self._projections.clear()
        self._layout = None
        self.solution = ManagedVector(SOLUTION_NAME)
        self.current_local_solution = ManagedVector(CURRENT_LOCAL_SOLUTION_NAME)

    # --- Layout ---

    def allocate(self, ranges: Sequence[Tuple[int, int]], rank: int, ghost_indices: np.ndarray):
        """Lays out and zeroes every vector for the given ownership ranges."""
        self._layout = ([tuple(r) for r in ranges], rank)
        self._ghosts = np.asarray(ghost_indices, dtype=np.int64)
        self.solution.init(*self._layout)
        self.current_local_solution.init(*self._layout, ghost_indices=self._ghosts)
        for vector in self._vectors.values():
            vector.init(*self._layout)

    @property
    def layout(self) -> Optional[Tuple[List[Tuple[int, int]], int]]:
        return self._layout

    @property
    def ghost_indices(self) -> np.ndarray:
        return self._ghosts

    # --- Access ---

    def _name_of(self, key: VectorKey) -> Optional[str]:
        if isinstance(key, str):
            return key if key in self._vectors else None
        names = list(self._vectors)
        return names[key] if 0 <= key < len(names) else None

    def have_vector(self, name: str) -> bool:
        return name in self._vectors

    def request_vector(self, key: VectorKey) -> Optional[ManagedVector]:
        """Query primitive: the vector, or None if it does not exist."""
        name = self._name_of(key)
        return self._vectors[name] if name is not None else None

    def get_vector(self, key: VectorKey) -> ManagedVector:
        """Access primitive: the vector, which must exist."""
        name = self._name_of(key)
        if name is None:
            raise VectorNotFoundError(
                system_name=self._system_name,
                vector_name=key if isinstance(key, str) else f"#{key}",
                available=list(self._vectors),
            )
        return self._vectors[name]

    def vector_name(self, number: int) -> str:
        return self.get_vector(number).name

    def is_projected(self, name: str) -> bool:
        self.get_vector(name)
        return self._projections[name]

    def names(self) -> List[str]:
        return list(self._vectors)

    def items(self) -> Iterator[Tuple[str, ManagedVector]]:
        """(name, vector) pairs in registration order."""
        return iter(list(self._vectors.items()))

    def __len__(self) -> int:
        return len(self._vectors)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._vectors))

    def __contains__(self, name: str) -> bool:
        return name in self._vectors
