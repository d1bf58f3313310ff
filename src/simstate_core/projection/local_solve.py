# src/simstate_core/projection/local_solve.py
"""
Element-local projection of a field onto the basis of one element.

For continuous families the vertex coefficients are fixed by pointwise
interpolation, and only the interior coefficients are found by a projection
constrained by those vertex values. This keeps the projected field continuous
across elements. Discontinuous families are projected freely.

A field representable exactly in the element's space is reproduced exactly
(up to round-off) by both variants.
"""
import logging
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
import scipy.linalg

from ..discretization import IElement, IFEEvaluator, gauss_legendre
from ..variables import FEType

logger = logging.getLogger(__name__)

# f(x) -> values at the physical points x
PointField = Callable[[np.ndarray], np.ndarray]


def quadrature_on_pieces(
    element: IElement,
    pieces: Sequence[Tuple[float, float]],
    n_points: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss points (physical coordinates) and weights covering `element` piece by
    piece, so that integrands that are only piecewise smooth are integrated exactly.
    """
    ref_points, ref_weights = gauss_legendre(n_points)
    xs, ws = [], []
    for a, b in pieces:
        if b <= a:
            continue
        xs.append(a + 0.5 * (ref_points + 1.0) * (b - a))
        ws.append(ref_weights * 0.5 * (b - a))
    return np.concatenate(xs), np.concatenate(ws)


def project_onto_element(
    fe: IFEEvaluator,
    fe_type: FEType,
    element: IElement,
    x_q: np.ndarray,
    w_q: np.ndarray,
    values_q: np.ndarray,
    vertex_values: Optional[np.ndarray] = None,
    gradients_q: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Returns the element coefficients of the projection of a field given by its
    values (and optionally its gradients) at quadrature points.

    Args:
        vertex_values: For continuous families, the two interpolated vertex values.
                       These coefficients are held fixed.
        gradients_q: When given, the projection uses the H1 inner product instead
                     of the L2 inner product.
    """
    p_level = element.p_level
    xi_q = element.inverse_map(x_q)
    phi = fe.shape(fe_type, p_level, xi_q)
    mass = (phi * w_q) @ phi.T
    rhs = (phi * w_q) @ values_q

    if gradients_q is not None:
        # d(xi)/dx = 2 / h on an affine 1-D element
        jac_inv = 2.0 / (element.x1 - element.x0)
        dphi = fe.shape_deriv(fe_type, p_level, xi_q) * jac_inv
        mass = mass + (dphi * w_q) @ dphi.T
        rhs = rhs + (dphi * w_q) @ gradients_q

    n_dofs = phi.shape[0]
    n_fixed = 2 * fe.n_dofs_per_vertex(fe_type)
    coeffs = np.zeros(n_dofs)
    if n_fixed:
        if vertex_values is None:
            raise ValueError(f"{fe_type} needs vertex values for a constrained projection.")
        coeffs[:n_fixed] = vertex_values
    if n_dofs == n_fixed:
        return coeffs

    free = slice(n_fixed, n_dofs)
    reduced_rhs = rhs[free] - mass[free, :n_fixed] @ coeffs[:n_fixed]
    coeffs[free] = scipy.linalg.solve(mass[free, free], reduced_rhs, assume_a='pos')
    return coeffs


def quadrature_order(*orders: int) -> int:
    """Number of Gauss points integrating a product of polynomials of these orders exactly."""
    return sum(orders) // 2 + 2
