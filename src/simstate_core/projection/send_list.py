# src/simstate_core/projection/send_list.py
"""
Phase one of the projection: the send-list.

For every active element of the new mesh owned by this rank, the old DOFs of every
geometrically overlapping old element are needed to compute the new values. Workers
scan disjoint ranges of the local elements and each returns an unsorted list (with
duplicates). Lists are joined by concatenation, which is associative, and the final
sort plus de-duplication gives the canonical send-list.
"""
import logging
import operator
from typing import List, Sequence

import numpy as np

from ..discretization import IDofMap, IElement, IMesh
from ..parallel import parallel_reduce

logger = logging.getLogger(__name__)


def _old_dofs_for(old_mesh: IMesh, old_dof_map: IDofMap, var_numbers: Sequence[int]):
    def _body(new_elements: Sequence[IElement]) -> List[int]:
        found: List[int] = []
        for new_elem in new_elements:
            for old_elem in old_mesh.elements_overlapping(new_elem):
                for var in var_numbers:
                    found.extend(old_dof_map.dof_indices(old_elem, var))
        return found
    return _body


def build_send_list(old_dof_map: IDofMap, new_dof_map: IDofMap, n_threads: int = 1) -> np.ndarray:
    """
    Returns the sorted, unique old DOF indices that the local projection on this
    rank reads. Entries owned by this rank under the old numbering are included;
    the exchange resolves them locally.
    """
    var_numbers = [var.number for var in new_dof_map.variables]
    new_elements = new_dof_map.mesh.active_local_elements(new_dof_map.rank)
    merged = parallel_reduce(
        new_elements,
        _old_dofs_for(old_dof_map.mesh, old_dof_map, var_numbers),
        join=operator.add,
        initial=[],
        n_threads=n_threads,
    )
    send_list = np.unique(np.asarray(merged, dtype=np.int64))
    logger.debug(
        f"Send-list on rank {new_dof_map.rank}: {send_list.size} unique old DOF(s) "
        f"from {len(merged)} collected over {len(new_elements)} local element(s)."
    )
    return send_list


def remote_entries(send_list: np.ndarray, old_dof_map: IDofMap) -> np.ndarray:
    """The part of a send-list owned by other ranks under the old numbering."""
    first, end = old_dof_map.first_dof(), old_dof_map.end_dof()
    return send_list[(send_list < first) | (send_list >= end)]
