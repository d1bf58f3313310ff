# src/simstate_core/vectors/families.py
"""
Indexed vector families: naming conventions layered on the VectorStore.

A family member is an ordinary managed vector named "<family>_<index>". Adjoint
families are indexed by quantity-of-interest ordinal, sensitivity families by
parameter ordinal. Families know nothing about the solve algorithms that use
them, and members of different families (or different indices) are independent.
"""
import logging
import re
from typing import List

from ..constants import (
    ADJOINT_SOLUTION_FAMILY,
    ADJOINT_RHS_FAMILY,
    SENSITIVITY_SOLUTION_FAMILY,
    SENSITIVITY_RHS_FAMILY,
    WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY,
    WEIGHTED_SENSITIVITY_SOLUTION_NAME,
)
from .exceptions import VectorNotFoundError
from .managed import ManagedVector
from .store import VectorStore

logger = logging.getLogger(__name__)


class IndexedVectorFamily:
    """
    Args:
        store: The store holding the member vectors.
        family: The family name, used as the name prefix.
        project: Projection flag given to members on creation.
        indexed: False for single-member families whose vector is named `family`.
    """
    def __init__(self, store: VectorStore, family: str, project: bool = True, indexed: bool = True):
        self._store = store
        self.family = family
        self.project = project
        self.indexed = indexed
        self._pattern = re.compile(rf"^{re.escape(family)}_(\d+)$")

    def vector_name(self, index: int = 0) -> str:
        if not self.indexed:
            return self.family
        if index < 0:
            raise ValueError(f"Family index must be non-negative, got {index}.")
        return f"{self.family}_{index}"

    def add(self, index: int = 0) -> ManagedVector:
        """Creates the member on first access and returns it afterwards."""
        name = self.vector_name(index)
        existing = self._store.request_vector(name)
        if existing is not None:
            return existing
        return self._store.add_vector(name, project=self.project)

    def get(self, index: int = 0) -> ManagedVector:
        """Returns a member that must have been created with add()."""
        name = self.vector_name(index)
        vector = self._store.request_vector(name)
        if vector is None:
            raise VectorNotFoundError(
                system_name=self._store.system_name,
                vector_name=name,
                available=[n for n in self._store.names() if n == self.family or self._pattern.match(n)],
            )
        return vector

    def has(self, index: int = 0) -> bool:
        return self._store.have_vector(self.vector_name(index))

    def indices(self) -> List[int]:
        """Indices of the existing members, sorted."""
        if not self.indexed:
            return [0] if self._store.have_vector(self.family) else []
        found = (self._pattern.match(name) for name in self._store.names())
        return sorted(int(m.group(1)) for m in found if m)


def standard_families(store: VectorStore) -> dict:
    """The families every System exposes, keyed by family name."""
    families = [
        IndexedVectorFamily(store, ADJOINT_SOLUTION_FAMILY),
        IndexedVectorFamily(store, ADJOINT_RHS_FAMILY, project=False),
        IndexedVectorFamily(store, SENSITIVITY_SOLUTION_FAMILY),
        IndexedVectorFamily(store, SENSITIVITY_RHS_FAMILY, project=False),
        IndexedVectorFamily(store, WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY),
        IndexedVectorFamily(store, WEIGHTED_SENSITIVITY_SOLUTION_NAME, indexed=False),
    ]
    return {f.family: f for f in families}
