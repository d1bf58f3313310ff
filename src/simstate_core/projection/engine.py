# src/simstate_core/projection/engine.py
"""
Carries DOF-indexed vectors from an old discretization to a new one.

The projection of one vector runs in three phases:

1.  Send-list construction (see `send_list.py`): the old DOFs read on this rank.
2.  Ghost value exchange: a collective fetch of the send-list entries of the old
    vector from their old owners into a temporary `GhostBuffer`.
3.  Local projection: every active new element owned by this rank computes its new
    coefficients from the buffered values of the old elements overlapping it. Work
    is split over disjoint element ranges; each worker returns (dofs, values) pairs
    and the pairs are written to the new vector afterwards, owned entries only.

Elements that did not change keep their coefficients verbatim. For all others the
continuous families interpolate the old field at the element vertices and project
the interior, and discontinuous families are L2-projected, so any field that both
spaces represent is carried exactly.
"""
import logging
import operator
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..discretization import IDofMap, IElement
from ..parallel import Communicator, parallel_reduce
from ..variables import Variable
from ..vectors import ManagedVector, VectorStore, gather_indexed_values
from .exceptions import ProjectionError
from .local_solve import project_onto_element, quadrature_on_pieces, quadrature_order
from .send_list import build_send_list

logger = logging.getLogger(__name__)

ElementUpdate = Tuple[List[int], np.ndarray]


class GhostBuffer:
    """Values of one old vector at the sorted entries of a send-list."""

    def __init__(self, indices: np.ndarray, values: np.ndarray):
        self.indices = indices
        self.values = values

    def take(self, dofs: Sequence[int]) -> np.ndarray:
        dofs = np.asarray(dofs, dtype=np.int64)
        pos = np.searchsorted(self.indices, dofs)
        if dofs.size:
            found = self.indices[np.minimum(pos, self.indices.size - 1)] if self.indices.size else np.zeros(0)
            if found.size != dofs.size or np.any(found != dofs):
                raise KeyError(f"Old DOF(s) {sorted(set(dofs.tolist()) - set(self.indices.tolist()))} are not in the send-list.")
        return self.values[pos]


def exchange_ghost_values(comm: Communicator, old_vector: ManagedVector, send_list: np.ndarray) -> GhostBuffer:
    """Collective: fetches `old_vector` at every send-list entry from its owner."""
    return GhostBuffer(send_list, gather_indexed_values(comm, old_vector, send_list))


class ProjectionEngine:
    """
    Projects vectors laid out for `old_dof_map` onto the layout of `new_dof_map`.
    Both maps must describe the same variables and the same processor group as `comm`.
    The send-list is built once and reused for every vector.
    """

    def __init__(
        self,
        old_dof_map: IDofMap,
        new_dof_map: IDofMap,
        comm: Communicator,
        system_name: str = "",
        n_threads: int = 1,
    ):
        self.old_dof_map = old_dof_map
        self.new_dof_map = new_dof_map
        self.comm = comm
        self.system_name = system_name
        self.n_threads = n_threads
        self._check_compatible()
        self._send_list: Optional[np.ndarray] = None

    def _check_compatible(self):
        old_types = [(v.name, v.fe_type) for v in self.old_dof_map.variables]
        new_types = [(v.name, v.fe_type) for v in self.new_dof_map.variables]
        if old_types != new_types:
            raise ProjectionError(self.system_name, f"variables differ: old {old_types}, new {new_types}.")
        for label, dof_map in (("old", self.old_dof_map), ("new", self.new_dof_map)):
            if dof_map.n_processors != self.comm.size or dof_map.rank != self.comm.rank:
                raise ProjectionError(
                    self.system_name,
                    f"{label} DOF map is rank {dof_map.rank} of {dof_map.n_processors}, "
                    f"communicator is rank {self.comm.rank} of {self.comm.size}."
                )

    @property
    def send_list(self) -> np.ndarray:
        if self._send_list is None:
            self._send_list = build_send_list(self.old_dof_map, self.new_dof_map, self.n_threads)
        return self._send_list

    # --- Vectors ---

    def project_vector(self, old_vector: ManagedVector) -> ManagedVector:
        """
        Collective: returns a new, unghosted vector with the new layout holding the
        projection of `old_vector`.

        Raises:
            VectorLayoutError: If `old_vector` is not laid out for the old DOF map.
        """
        old_vector.require_layout(self.old_dof_map.ownership_ranges(), self.old_dof_map.rank)
        buffer = exchange_ghost_values(self.comm, old_vector, self.send_list)

        new_vector = ManagedVector(old_vector.name)
        new_vector.init(self.new_dof_map.ownership_ranges(), self.new_dof_map.rank)

        local_elements = self.new_dof_map.mesh.active_local_elements(self.new_dof_map.rank)
        updates = parallel_reduce(
            local_elements,
            lambda chunk: self._project_elements(chunk, buffer),
            join=operator.add,
            initial=[],
            n_threads=self.n_threads,
        )
        _write_owned(new_vector, updates)
        logger.debug(f"[{self.system_name}] Projected '{old_vector.name}' over {len(local_elements)} local element(s).")
        return new_vector

    def project_store(self, store: VectorStore, project_solution: bool = True):
        """
        Collective: re-lays out every vector of `store` for the new DOF map. The
        solution (when `project_solution`) and the vectors registered with
        `project=True` are projected, the others are zero-filled. The ghosted copy of
        the solution is refreshed last.
        """
        projected = {
            name: self.project_vector(vector)
            for name, vector in store.items() if store.is_projected(name)
        }
        solution = self.project_vector(store.solution) if project_solution else None

        store.allocate(
            self.new_dof_map.ownership_ranges(), self.new_dof_map.rank, self.new_dof_map.send_list()
        )
        for name, vector in projected.items():
            store.get_vector(name).copy_values_from(vector)
        if solution is not None:
            store.solution.copy_values_from(solution)
        store.current_local_solution.copy_values_from(store.solution)
        store.current_local_solution.update_ghosts(self.comm)

        zeroed = len(store) - len(projected)
        logger.info(
            f"[{self.system_name}] Projected {len(projected) + (solution is not None)} vector(s), "
            f"zero-filled {zeroed + (solution is None)} onto {self.new_dof_map.n_dofs()} DOF(s)."
        )

    # --- Local projection ---

    def _project_elements(self, elements: Sequence[IElement], buffer: GhostBuffer) -> List[ElementUpdate]:
        updates = []
        for elem in elements:
            for var in self.new_dof_map.variables:
                new_dofs = self.new_dof_map.dof_indices(elem, var.number)
                if new_dofs:
                    updates.append((new_dofs, self._project_element(elem, var, new_dofs, buffer)))
        return updates

    def _project_element(self, elem: IElement, var: Variable, new_dofs: List[int], buffer: GhostBuffer) -> np.ndarray:
        old_mesh, old_map = self.old_dof_map.mesh, self.old_dof_map
        fe = self.new_dof_map.fe
        fe_type = var.fe_type
        old_elems = old_mesh.elements_overlapping(elem)
        if not old_elems:
            raise ProjectionError(self.system_name, f"no old element overlaps new element {elem.id}.")
        old_coeffs = [buffer.take(old_map.dof_indices(old, var.number)) for old in old_elems]

        # Unchanged element: copy.
        if len(old_elems) == 1 and old_elems[0].id == elem.id and old_coeffs[0].size == len(new_dofs):
            return old_coeffs[0]

        def _old_values(old: IElement, coeffs: np.ndarray, x: np.ndarray) -> np.ndarray:
            if coeffs.size == 0:
                return np.zeros(np.size(x))
            return coeffs @ fe.shape(fe_type, old.p_level, old.inverse_map(x))

        vertex_values = None
        if fe.n_dofs_per_vertex(fe_type):
            vertex_values = np.empty(2)
            for k, x in enumerate((elem.x0, elem.x1)):
                old = old_mesh.locate_point(x, candidates=old_elems)
                vertex_values[k] = _old_values(old, old_coeffs[old_elems.index(old)], np.array([x]))[0]
            if len(new_dofs) == 2:
                return vertex_values

        new_order = fe.n_dofs(fe_type, elem.p_level) - 1
        old_order = max(fe.n_dofs(fe_type, old.p_level) - 1 for old in old_elems)
        n_points = quadrature_order(new_order, old_order)
        xs, ws, vals = [], [], []
        for old, coeffs in zip(old_elems, old_coeffs):
            piece = (max(elem.x0, old.x0), min(elem.x1, old.x1))
            if piece[1] <= piece[0]:
                continue
            x_q, w_q = quadrature_on_pieces(elem, [piece], n_points)
            xs.append(x_q)
            ws.append(w_q)
            vals.append(_old_values(old, coeffs, x_q))

        return project_onto_element(
            fe, fe_type, elem, np.concatenate(xs), np.concatenate(ws), np.concatenate(vals),
            vertex_values=vertex_values,
        )


def _write_owned(vector: ManagedVector, updates: List[ElementUpdate]):
    """Writes element results into `vector`, skipping entries owned by other ranks."""
    first, end = vector.first_local_index, vector.last_local_index
    for dofs, values in updates:
        dofs = np.asarray(dofs, dtype=np.int64)
        owned = (dofs >= first) & (dofs < end)
        if owned.any():
            vector.set_local_values(dofs[owned], np.asarray(values)[owned])
