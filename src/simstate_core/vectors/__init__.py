# src/simstate_core/vectors/__init__.py
from .exceptions import (
    VectorError,
    DuplicateVectorError,
    VectorStoreSealedError,
    VectorNotFoundError,
    VectorLayoutError,
)
from .managed import ManagedVector, gather_indexed_values
from .store import VectorStore
from .families import IndexedVectorFamily, standard_families

__all__ = [
    # Exceptions
    "VectorError",
    "DuplicateVectorError",
    "VectorStoreSealedError",
    "VectorNotFoundError",
    "VectorLayoutError",
    # Core Classes
    "ManagedVector",
    "gather_indexed_values",
    "VectorStore",
    "IndexedVectorFamily",
    "standard_families",
]
