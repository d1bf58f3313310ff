# src/simstate_core/discretization/capabilities.py
"""
The contracts this package consumes from its discretization collaborators.

The System, the projection engine and the persistence layouts only ever talk to
a mesh, a DOF map and an FE evaluator through these protocols. `IntervalMesh`,
`DofMap` and `ReferenceFE` are the implementations shipped with the package;
any other mesh library can be adapted by satisfying the same contracts.
"""
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from ..variables import FEType, Variable


@runtime_checkable
class IElement(Protocol):
    id: int
    x0: float
    x1: float
    subdomain_id: int
    p_level: int
    processor_id: int

    def map(self, xi) -> np.ndarray:
        ...

    def inverse_map(self, x) -> np.ndarray:
        ...


@runtime_checkable
class IMesh(Protocol):
    """Element iteration, geometric overlap and point location."""
    n_partitions: int

    def elements(self) -> Sequence[IElement]:
        ...

    def active_local_elements(self, rank: int) -> Sequence[IElement]:
        ...

    def elements_overlapping(self, element: IElement) -> Sequence[IElement]:
        """Active elements of this mesh overlapping an element of another snapshot."""
        ...

    def locate_point(self, x: float, candidates: Optional[Sequence[IElement]] = None) -> IElement:
        ...


@runtime_checkable
class IDofMap(Protocol):
    """DOF counts, ownership ranges and per-element / per-entity DOF indices."""
    mesh: IMesh
    variables: Tuple[Variable, ...]
    rank: int
    n_processors: int

    def n_dofs(self) -> int:
        ...

    def first_dof(self, rank: Optional[int] = None) -> int:
        ...

    def end_dof(self, rank: Optional[int] = None) -> int:
        ...

    def n_dofs_on_processor(self, rank: int) -> int:
        ...

    def n_local_dofs(self) -> int:
        ...

    def ownership_ranges(self) -> List[Tuple[int, int]]:
        ...

    def dof_owner(self, dof: int) -> int:
        ...

    def dof_indices(self, elem: IElement, var_number: int) -> List[int]:
        ...

    def dof_objects(self, kind: str, var_number: int, rank: Optional[int] = None) -> List[Tuple[int, List[int]]]:
        ...

    def max_entity_id(self, kind: str) -> int:
        ...

    def local_dof_indices(self, var_number: int) -> np.ndarray:
        ...

    def send_list(self) -> np.ndarray:
        ...


@runtime_checkable
class IFEEvaluator(Protocol):
    """Shape-function values at reference points for a given family and order."""

    def n_dofs(self, fe_type: FEType, p_level: int = 0) -> int:
        ...

    def n_dofs_per_vertex(self, fe_type: FEType) -> int:
        ...

    def nodal_points(self, fe_type: FEType, p_level: int = 0) -> np.ndarray:
        ...

    def shape(self, fe_type: FEType, p_level: int, xi) -> np.ndarray:
        ...

    def shape_deriv(self, fe_type: FEType, p_level: int, xi) -> np.ndarray:
        ...
