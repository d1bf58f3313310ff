# src/simstate_core/discretization/fe.py
"""
Reference finite-element evaluation on the 1-D reference element [-1, 1].

Two families are provided:

- LAGRANGE (continuous): nodal basis on equispaced points. DOF 0 sits on the left
  vertex, DOF 1 on the right vertex, the remaining DOFs on interior points in
  increasing coordinate order.
- MONOMIAL (discontinuous): the basis 1, xi, xi**2, ... with every DOF owned by the
  element interior.

The effective polynomial order on an element is the variable's order plus the
element's p-refinement level.
"""
import logging
from functools import lru_cache
from typing import Tuple

import numpy as np

from ..variables import FEFamily, FEType

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def gauss_legendre(n_points: int) -> Tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre points and weights on [-1, 1], exact for degree 2n-1."""
    points, weights = np.polynomial.legendre.leggauss(n_points)
    points.setflags(write=False)
    weights.setflags(write=False)
    return points, weights


@lru_cache(maxsize=None)
def _lagrange_nodes(order: int) -> np.ndarray:
    interior = [-1.0 + 2.0 * k / order for k in range(1, order)]
    nodes = np.array([-1.0, 1.0] + interior)
    nodes.setflags(write=False)
    return nodes


class ReferenceFE:
    """Shape-function service for the families in `FEFamily`."""

    @staticmethod
    def effective_order(fe_type: FEType, p_level: int = 0) -> int:
        return fe_type.order + p_level

    def n_dofs(self, fe_type: FEType, p_level: int = 0) -> int:
        return self.effective_order(fe_type, p_level) + 1

    def n_dofs_per_vertex(self, fe_type: FEType) -> int:
        return 1 if fe_type.family.is_continuous else 0

    def n_interior_dofs(self, fe_type: FEType, p_level: int = 0) -> int:
        return self.n_dofs(fe_type, p_level) - 2 * self.n_dofs_per_vertex(fe_type)

    def nodal_points(self, fe_type: FEType, p_level: int = 0) -> np.ndarray:
        """Reference coordinates of the nodal points of a LAGRANGE element, in DOF order."""
        if fe_type.family is not FEFamily.LAGRANGE:
            raise ValueError(f"{fe_type} has no nodal points.")
        return _lagrange_nodes(self.effective_order(fe_type, p_level))

    def shape(self, fe_type: FEType, p_level: int, xi) -> np.ndarray:
        """Shape-function values, shape (n_dofs, n_points)."""
        xi = np.atleast_1d(np.asarray(xi, dtype=float))
        order = self.effective_order(fe_type, p_level)
        if fe_type.family is FEFamily.MONOMIAL:
            return np.vstack([xi ** k for k in range(order + 1)])

        nodes = _lagrange_nodes(order)
        phi = np.ones((order + 1, xi.size))
        for i, xi_i in enumerate(nodes):
            for j, xi_j in enumerate(nodes):
                if i != j:
                    phi[i] *= (xi - xi_j) / (xi_i - xi_j)
        return phi

    def shape_deriv(self, fe_type: FEType, p_level: int, xi) -> np.ndarray:
        """Reference derivatives d(phi)/d(xi), shape (n_dofs, n_points)."""
        xi = np.atleast_1d(np.asarray(xi, dtype=float))
        order = self.effective_order(fe_type, p_level)
        if fe_type.family is FEFamily.MONOMIAL:
            rows = [np.zeros_like(xi)] + [k * xi ** (k - 1) for k in range(1, order + 1)]
            return np.vstack(rows)

        nodes = _lagrange_nodes(order)
        dphi = np.zeros((order + 1, xi.size))
        for i, xi_i in enumerate(nodes):
            for m, xi_m in enumerate(nodes):
                if m == i:
                    continue
                term = np.full(xi.size, 1.0 / (xi_i - xi_m))
                for j, xi_j in enumerate(nodes):
                    if j != i and j != m:
                        term *= (xi - xi_j) / (xi_i - xi_j)
                dphi[i] += term
        return dphi
