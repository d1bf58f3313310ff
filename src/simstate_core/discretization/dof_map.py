# src/simstate_core/discretization/dof_map.py
"""
Global degree-of-freedom numbering over an `IntervalMesh`.

Numbering is processor-major, then variable-major: all DOFs owned by rank 0 come
first, and within one rank every variable's DOFs are contiguous. Inside one
variable, DOF-bearing entities are visited nodes first (by id) and then elements
(by id). This makes every rank's ownership range a single contiguous interval.

The mesh is replicated, so every rank computes the same global numbering
independently; the map is consistent 1:1 across ranks by construction.
"""
import bisect
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..variables import Variable
from .fe import ReferenceFE
from .interval_mesh import Element, IntervalMesh

logger = logging.getLogger(__name__)

# Kinds of DOF-bearing entities, in the order they are serialized for each variable.
NODE = "node"
ELEM = "elem"
DOF_OBJECT_KINDS = (NODE, ELEM)


class DofMap:
    """Maps (entity, variable, component) to global DOF indices for one rank."""

    def __init__(
        self,
        mesh: IntervalMesh,
        variables: Sequence[Variable],
        rank: int = 0,
        fe: Optional[ReferenceFE] = None,
    ):
        if not 0 <= rank < mesh.n_partitions:
            raise ValueError(f"Rank {rank} is outside the mesh partitioning (n_partitions={mesh.n_partitions}).")
        self.mesh = mesh
        self.variables: Tuple[Variable, ...] = tuple(variables)
        self.rank = rank
        self.fe = fe or ReferenceFE()

        # _dofs[kind][var_number][entity_id] -> list of global indices
        self._dofs: Dict[str, List[Dict[int, List[int]]]] = {
            kind: [dict() for _ in self.variables] for kind in DOF_OBJECT_KINDS
        }
        self._owner: Dict[str, Dict[int, int]] = {NODE: {}, ELEM: {}}
        self._offsets: List[int] = [0]
        self._distribute_dofs()
        logger.debug(
            f"DofMap on rank {rank}: {self.n_dofs()} global DOF(s), "
            f"local range [{self.first_dof()}, {self.end_dof()})."
        )

    @property
    def n_processors(self) -> int:
        return self.mesh.n_partitions

    def _var_on_node(self, var: Variable) -> Dict[int, bool]:
        active = {}
        for elem in self.mesh.elements():
            if var.active_on_subdomain(elem.subdomain_id):
                for nid in elem.node_ids:
                    active[nid] = True
        return active

    def _distribute_dofs(self):
        nodes = self.mesh.nodes()
        elements = sorted(self.mesh.elements(), key=lambda e: e.id)
        for node in nodes:
            self._owner[NODE][node.id] = node.processor_id
        for elem in elements:
            self._owner[ELEM][elem.id] = elem.processor_id

        node_support = [self._var_on_node(var) for var in self.variables]
        next_dof = 0
        for proc in range(self.n_processors):
            for var in self.variables:
                per_vertex = self.fe.n_dofs_per_vertex(var.fe_type)
                if per_vertex:
                    for node in nodes:
                        if node.processor_id == proc and node_support[var.number].get(node.id):
                            self._dofs[NODE][var.number][node.id] = list(range(next_dof, next_dof + per_vertex))
                            next_dof += per_vertex
                for elem in elements:
                    if elem.processor_id != proc or not var.active_on_subdomain(elem.subdomain_id):
                        continue
                    n_interior = self.fe.n_interior_dofs(var.fe_type, elem.p_level)
                    if n_interior:
                        self._dofs[ELEM][var.number][elem.id] = list(range(next_dof, next_dof + n_interior))
                        next_dof += n_interior
            self._offsets.append(next_dof)

    # --- Global sizes and ownership ---

    def n_dofs(self) -> int:
        return self._offsets[-1]

    def first_dof(self, rank: Optional[int] = None) -> int:
        return self._offsets[self.rank if rank is None else rank]

    def end_dof(self, rank: Optional[int] = None) -> int:
        return self._offsets[(self.rank if rank is None else rank) + 1]

    def n_dofs_on_processor(self, rank: int) -> int:
        return self.end_dof(rank) - self.first_dof(rank)

    def n_local_dofs(self) -> int:
        return self.n_dofs_on_processor(self.rank)

    def ownership_ranges(self) -> List[Tuple[int, int]]:
        return [(self._offsets[r], self._offsets[r + 1]) for r in range(self.n_processors)]

    def dof_owner(self, dof: int) -> int:
        if not 0 <= dof < self.n_dofs():
            raise IndexError(f"DOF {dof} is outside [0, {self.n_dofs()}).")
        return bisect.bisect_right(self._offsets, dof) - 1

    # --- Per-element and per-entity indices ---

    def dof_indices(self, elem: Element, var_number: int) -> List[int]:
        """
        All global DOFs of one variable on an element, in the element's local shape
        function order: left vertex, right vertex, interior. Empty if the variable
        is not active on the element's subdomain.
        """
        var = self.variables[var_number]
        if not var.active_on_subdomain(elem.subdomain_id):
            return []
        node_dofs = self._dofs[NODE][var_number]
        indices = list(node_dofs.get(elem.left_node, ())) + list(node_dofs.get(elem.right_node, ()))
        indices += self._dofs[ELEM][var_number].get(elem.id, [])
        return indices

    def entity_dofs(self, kind: str, entity_id: int, var_number: int) -> List[int]:
        return self._dofs[kind][var_number].get(entity_id, [])

    def dof_objects(self, kind: str, var_number: int, rank: Optional[int] = None) -> List[Tuple[int, List[int]]]:
        """
        The (entity id, DOF indices) pairs carrying DOFs of one variable, ordered by
        entity id. Restricted to the entities owned by `rank` when it is given.
        """
        owners = self._owner[kind]
        return [
            (eid, dofs) for eid, dofs in sorted(self._dofs[kind][var_number].items())
            if rank is None or owners[eid] == rank
        ]

    def max_entity_id(self, kind: str) -> int:
        """One past the largest id of any entity of this kind in the mesh."""
        ids = self._owner[kind]
        return max(ids) + 1 if ids else 0

    def local_dof_indices(self, var_number: int) -> np.ndarray:
        """The locally owned DOFs of one variable, sorted."""
        first, end = self.first_dof(), self.end_dof()
        found = [
            dof for kind in DOF_OBJECT_KINDS for dofs in self._dofs[kind][var_number].values()
            for dof in dofs if first <= dof < end
        ]
        return np.array(sorted(found), dtype=np.int64)

    def send_list(self) -> np.ndarray:
        """
        Sorted, unique off-processor DOFs coupled to the active local elements:
        the ghost entries of a ghosted vector on this rank.
        """
        first, end = self.first_dof(), self.end_dof()
        ghosts = set()
        for elem in self.mesh.active_local_elements(self.rank):
            for var in self.variables:
                ghosts.update(d for d in self.dof_indices(elem, var.number) if not first <= d < end)
        return np.array(sorted(ghosts), dtype=np.int64)

    def __repr__(self):
        return f"DofMap(rank={self.rank}, n_dofs={self.n_dofs()}, n_variables={len(self.variables)})"
