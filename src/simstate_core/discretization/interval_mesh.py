# src/simstate_core/discretization/interval_mesh.py
"""
A replicated, adaptively refinable 1-D mesh.

Every `IntervalMesh` is an immutable snapshot: a set of active elements over a
shared `RefinementForest`. Refining, coarsening, changing p-levels or repartitioning
returns a new snapshot and leaves the old one usable, which is exactly what a
projection between an old and a new discretization needs.

The forest is a `networkx.DiGraph` with an edge from every parent element to each of
its children. Two elements of different snapshots overlap geometrically iff one is
an ancestor of the other, or they are the same element.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Node:
    id: int
    x: float
    processor_id: int


@dataclass(frozen=True)
class Element:
    """An active element of one mesh snapshot."""
    id: int
    x0: float
    x1: float
    left_node: int
    right_node: int
    subdomain_id: int
    level: int
    p_level: int
    processor_id: int

    @property
    def length(self) -> float:
        return self.x1 - self.x0

    @property
    def node_ids(self) -> Tuple[int, int]:
        return (self.left_node, self.right_node)

    def map(self, xi) -> np.ndarray:
        """Maps reference coordinates in [-1, 1] to physical coordinates."""
        return self.x0 + 0.5 * (np.asarray(xi, dtype=float) + 1.0) * self.length

    def inverse_map(self, x) -> np.ndarray:
        """Maps physical coordinates to reference coordinates of this element."""
        return 2.0 * (np.asarray(x, dtype=float) - self.x0) / self.length - 1.0

    def contains_point(self, x: float, tol: float = 1e-12) -> bool:
        return self.x0 - tol <= x <= self.x1 + tol


class RefinementForest:
    """
    The append-only history of every element ever created, shared by all snapshots
    derived from one initial mesh. Refining an element that already has children
    reuses them, so repeated refinement is deterministic.
    """
    def __init__(self):
        self.graph = nx.DiGraph()
        self.node_coords: Dict[int, float] = {}
        self._lock = threading.Lock()

    def add_node(self, x: float) -> int:
        node_id = len(self.node_coords)
        self.node_coords[node_id] = float(x)
        return node_id

    def add_element(self, left: int, right: int, subdomain_id: int, parent: Optional[int] = None) -> int:
        elem_id = self.graph.number_of_nodes()
        level = 0 if parent is None else self.graph.nodes[parent]['level'] + 1
        self.graph.add_node(
            elem_id, left=left, right=right, subdomain_id=subdomain_id, level=level, parent=parent
        )
        if parent is not None:
            self.graph.add_edge(parent, elem_id)
        return elem_id

    def children(self, elem_id: int) -> List[int]:
        with self._lock:
            existing = sorted(self.graph.successors(elem_id))
            if existing:
                return existing
            attrs = self.graph.nodes[elem_id]
            x_mid = 0.5 * (self.node_coords[attrs['left']] + self.node_coords[attrs['right']])
            mid = self.add_node(x_mid)
            first = self.add_element(attrs['left'], mid, attrs['subdomain_id'], parent=elem_id)
            second = self.add_element(mid, attrs['right'], attrs['subdomain_id'], parent=elem_id)
            return [first, second]

    def existing_children(self, elem_id: int) -> List[int]:
        return sorted(self.graph.successors(elem_id))

    def parent(self, elem_id: int) -> Optional[int]:
        return self.graph.nodes[elem_id]['parent']

    def ancestors(self, elem_id: int) -> set:
        return nx.ancestors(self.graph, elem_id)

    def descendants(self, elem_id: int) -> set:
        return nx.descendants(self.graph, elem_id)


class IntervalMesh:
    """An immutable snapshot of active elements with a linear element partition."""

    def __init__(
        self,
        forest: RefinementForest,
        active: Iterable[int],
        n_partitions: int = 1,
        p_levels: Optional[Dict[int, int]] = None,
    ):
        if n_partitions < 1:
            raise ValueError(f"n_partitions must be >= 1, got {n_partitions}.")
        self.forest = forest
        self.n_partitions = n_partitions
        self._p_levels = {eid: lvl for eid, lvl in (p_levels or {}).items() if lvl}

        coords = forest.node_coords
        attrs = forest.graph.nodes
        ordered = sorted(active, key=lambda eid: coords[attrs[eid]['left']])
        self._partition = self._linear_partition(ordered, n_partitions)

        self._elements: Dict[int, Element] = {}
        for eid in ordered:
            a = attrs[eid]
            self._elements[eid] = Element(
                id=eid,
                x0=coords[a['left']],
                x1=coords[a['right']],
                left_node=a['left'],
                right_node=a['right'],
                subdomain_id=a['subdomain_id'],
                level=a['level'],
                p_level=self._p_levels.get(eid, 0),
                processor_id=self._partition[eid],
            )
        self._ordered: Tuple[int, ...] = tuple(ordered)

        # A node belongs to the lowest-ranked processor among its neighbouring elements.
        node_owner: Dict[int, int] = {}
        for elem in self._elements.values():
            for nid in elem.node_ids:
                node_owner[nid] = min(node_owner.get(nid, elem.processor_id), elem.processor_id)
        self._nodes: Dict[int, Node] = {
            nid: Node(id=nid, x=coords[nid], processor_id=owner) for nid, owner in sorted(node_owner.items())
        }

    @staticmethod
    def _linear_partition(ordered: Sequence[int], n_partitions: int) -> Dict[int, int]:
        n = len(ordered)
        return {eid: min(i * n_partitions // max(n, 1), n_partitions - 1) for i, eid in enumerate(ordered)}

    # --- Construction ---

    @classmethod
    def uniform(
        cls,
        n_elements: int,
        x_min: float = 0.0,
        x_max: float = 1.0,
        n_partitions: int = 1,
        subdomain_of: Optional[Callable[[float], int]] = None,
    ) -> "IntervalMesh":
        """
        Builds a uniform mesh of `n_elements` on [x_min, x_max]. `subdomain_of` maps an
        element centroid to a subdomain id (default 0 everywhere).
        """
        if n_elements < 1:
            raise ValueError(f"A mesh needs at least one element, got {n_elements}.")
        forest = RefinementForest()
        xs = np.linspace(x_min, x_max, n_elements + 1)
        node_ids = [forest.add_node(x) for x in xs]
        active = []
        for i in range(n_elements):
            centroid = 0.5 * (xs[i] + xs[i + 1])
            sid = subdomain_of(centroid) if subdomain_of else 0
            active.append(forest.add_element(node_ids[i], node_ids[i + 1], sid))
        logger.info(f"Built uniform interval mesh with {n_elements} element(s) on [{x_min}, {x_max}].")
        return cls(forest, active, n_partitions)

    def refine(self, elem_ids: Iterable[int]) -> "IntervalMesh":
        """Bisects the given active elements. Children inherit the parent's p-level."""
        targets = set(elem_ids)
        self._require_active(targets)
        active, p_levels = [], dict(self._p_levels)
        for eid in self._ordered:
            if eid in targets:
                children = self.forest.children(eid)
                active.extend(children)
                for child in children:
                    p_levels[child] = self._p_levels.get(eid, 0)
                p_levels.pop(eid, None)
            else:
                active.append(eid)
        logger.debug(f"Refined {len(targets)} element(s); {len(active)} active element(s).")
        return IntervalMesh(self.forest, active, self.n_partitions, p_levels)

    def refine_uniformly(self, n_times: int = 1) -> "IntervalMesh":
        mesh = self
        for _ in range(n_times):
            mesh = mesh.refine(mesh.element_ids())
        return mesh

    def coarsen(self, parent_ids: Iterable[int]) -> "IntervalMesh":
        """
        Replaces the active children of each given parent by the parent itself. Every
        child of a coarsened parent must be active. The parent takes the largest
        p-level of its children.
        """
        active_set = set(self._ordered)
        p_levels = dict(self._p_levels)
        for pid in set(parent_ids):
            children = self.forest.existing_children(pid)
            if not children or not set(children) <= active_set:
                raise ValueError(f"Element {pid} cannot be coarsened: its children are not all active.")
            active_set.difference_update(children)
            active_set.add(pid)
            p_levels[pid] = max(self._p_levels.get(c, 0) for c in children)
            for child in children:
                p_levels.pop(child, None)
        logger.debug(f"Coarsened mesh; {len(active_set)} active element(s).")
        return IntervalMesh(self.forest, active_set, self.n_partitions, p_levels)

    def with_p_levels(self, levels: Dict[int, int]) -> "IntervalMesh":
        self._require_active(levels)
        merged = dict(self._p_levels)
        merged.update(levels)
        return IntervalMesh(self.forest, self._ordered, self.n_partitions, merged)

    def repartition(self, n_partitions: int) -> "IntervalMesh":
        return IntervalMesh(self.forest, self._ordered, n_partitions, self._p_levels)

    def _require_active(self, elem_ids: Iterable[int]):
        missing = [eid for eid in elem_ids if eid not in self._elements]
        if missing:
            raise ValueError(f"Element(s) {sorted(missing)} are not active in this mesh.")

    # --- Queries ---

    def element_ids(self) -> List[int]:
        return list(self._ordered)

    def elements(self) -> List[Element]:
        """All active elements, ordered by position."""
        return [self._elements[eid] for eid in self._ordered]

    def active_local_elements(self, rank: int) -> List[Element]:
        return [e for e in self.elements() if e.processor_id == rank]

    def element(self, elem_id: int) -> Element:
        return self._elements[elem_id]

    def has_element(self, elem_id: int) -> bool:
        return elem_id in self._elements

    def nodes(self) -> List[Node]:
        """All nodes of the active elements, ordered by id."""
        return list(self._nodes.values())

    def node(self, node_id: int) -> Node:
        return self._nodes[node_id]

    @property
    def n_elements(self) -> int:
        return len(self._ordered)

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    def elements_overlapping(self, element: Element) -> List[Element]:
        """
        The active elements of this snapshot that geometrically overlap `element`,
        which may belong to any snapshot sharing this mesh's forest.
        """
        if element.id in self._elements:
            return [self._elements[element.id]]
        for ancestor in self.forest.ancestors(element.id):
            if ancestor in self._elements:
                return [self._elements[ancestor]]
        descendants = self.forest.descendants(element.id)
        return [self._elements[eid] for eid in self._ordered if eid in descendants]

    def locate_point(self, x: float, candidates: Optional[Sequence[Element]] = None) -> Element:
        """Returns an active element containing `x`, searching `candidates` first if given."""
        for elem in (candidates or ()):
            if elem.contains_point(x):
                return elem
        for elem in self.elements():
            if elem.contains_point(x):
                return elem
        raise ValueError(f"Point {x} lies outside the mesh.")

    def __repr__(self):
        return f"IntervalMesh(n_elements={self.n_elements}, n_partitions={self.n_partitions})"
