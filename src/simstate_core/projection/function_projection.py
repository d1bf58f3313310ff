# src/simstate_core/projection/function_projection.py
"""
Initializes (or overwrites) a vector from a user-supplied scalar function.

The function is called pointwise as `f(x, parameters, system_name, variable_name)`
and must return a float. An optional gradient function with the same signature
switches the element-interior projection from L2 to H1. The work is split over
disjoint ranges of the local elements like the mesh-to-mesh projection, but there is
no old mesh, no send-list and no communication: only locally owned entries are
written.
"""
import logging
import math
import operator
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..discretization import IDofMap, IElement
from ..parallel import parallel_reduce
from ..variables import Variable
from ..vectors import ManagedVector
from .engine import ElementUpdate, _write_owned
from .exceptions import FunctionEvaluationError
from .local_solve import project_onto_element, quadrature_on_pieces, quadrature_order

logger = logging.getLogger(__name__)

PointFunction = Callable[[float, Mapping[str, Any], str, str], float]


class _PointEvaluator:
    """Calls a user function at one point and checks the result."""

    def __init__(self, fn: PointFunction, parameters: Mapping[str, Any], system_name: str, var: Variable):
        self.fn = fn
        self.parameters = parameters
        self.system_name = system_name
        self.var = var

    def __call__(self, x: float) -> float:
        try:
            value = float(self.fn(float(x), self.parameters, self.system_name, self.var.name))
        except Exception as e:
            raise FunctionEvaluationError(
                system_name=self.system_name, variable_name=self.var.name, point=float(x),
                details=f"{type(e).__name__}: {e}"
            ) from e
        if not math.isfinite(value):
            raise FunctionEvaluationError(
                system_name=self.system_name, variable_name=self.var.name, point=float(x),
                details=f"returned the non-finite value {value}."
            )
        return value

    def at(self, xs: np.ndarray) -> np.ndarray:
        return np.array([self(x) for x in xs])


def project_function(
    dof_map: IDofMap,
    vector: ManagedVector,
    value_fn: PointFunction,
    gradient_fn: Optional[PointFunction] = None,
    parameters: Optional[Mapping[str, Any]] = None,
    system_name: str = "",
    var_numbers: Optional[Iterable[int]] = None,
    n_threads: int = 1,
):
    """
    Projects `value_fn` onto the variables `var_numbers` (default: all) of `vector`.
    Entries of other variables are left untouched.

    Raises:
        VectorLayoutError: If `vector` is not laid out for `dof_map`.
        FunctionEvaluationError: If the function raises or returns a non-finite value.
    """
    vector.require_layout(dof_map.ownership_ranges(), dof_map.rank)
    parameters = parameters or {}
    selected = [dof_map.variables[n] for n in (var_numbers if var_numbers is not None else range(len(dof_map.variables)))]
    fe = dof_map.fe

    def _body(elements: Sequence[IElement]) -> List[ElementUpdate]:
        updates = []
        for var in selected:
            f = _PointEvaluator(value_fn, parameters, system_name, var)
            g = _PointEvaluator(gradient_fn, parameters, system_name, var) if gradient_fn else None
            for elem in elements:
                dofs = dof_map.dof_indices(elem, var.number)
                if not dofs:
                    continue
                vertex_values = None
                if fe.n_dofs_per_vertex(var.fe_type):
                    vertex_values = f.at(np.array([elem.x0, elem.x1]))
                    if len(dofs) == 2:
                        updates.append((dofs, vertex_values))
                        continue
                # Two extra orders of accuracy for a non-polynomial integrand.
                order = fe.n_dofs(var.fe_type, elem.p_level) - 1
                x_q, w_q = quadrature_on_pieces(elem, [(elem.x0, elem.x1)], quadrature_order(order, order + 2))
                coeffs = project_onto_element(
                    fe, var.fe_type, elem, x_q, w_q, f.at(x_q),
                    vertex_values=vertex_values,
                    gradients_q=g.at(x_q) if g else None,
                )
                updates.append((dofs, coeffs))
        return updates

    local_elements = dof_map.mesh.active_local_elements(dof_map.rank)
    updates = parallel_reduce(local_elements, _body, join=operator.add, initial=[], n_threads=n_threads)
    _write_owned(vector, updates)
    logger.debug(
        f"[{system_name}] Projected function onto {len(selected)} variable(s) of '{vector.name}' "
        f"over {len(local_elements)} local element(s)."
    )
