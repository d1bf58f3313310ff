# src/simstate_core/solve/context.py
"""
Value types passed between a System, its user hooks and its solve strategy.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

if TYPE_CHECKING:
    from ..system import System

logger = logging.getLogger(__name__)


class QoISet:
    """
    A selection of quantity-of-interest indices, with an optional weight per index.
    An empty selection means "every QoI of the system".
    """

    def __init__(self, indices: Optional[Iterable[int]] = None, weights: Optional[Mapping[int, float]] = None):
        self._indices = sorted(set(indices)) if indices is not None else []
        if any(i < 0 for i in self._indices):
            raise ValueError(f"QoI indices must be non-negative, got {self._indices}.")
        self._weights: Dict[int, float] = dict(weights or {})

    def has_index(self, index: int) -> bool:
        return not self._indices or index in self._indices

    def indices(self, n_qois: int) -> List[int]:
        """The selected indices among the `n_qois` QoIs of a system."""
        return [i for i in range(n_qois) if self.has_index(i)]

    def size(self, n_qois: int) -> int:
        return len(self.indices(n_qois))

    def weight(self, index: int) -> float:
        return self._weights.get(index, 1.0)

    def __repr__(self):
        return f"QoISet(indices={self._indices or 'all'})"


class ParameterVector:
    """Named scalar parameters with a fixed order, the independent variables of a sensitivity."""

    def __init__(self, values: Optional[Mapping[str, float]] = None):
        values = dict(values or {})
        self._names: List[str] = list(values)
        self._values = np.array([float(v) for v in values.values()], dtype=float)

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def index_of(self, name: str) -> int:
        try:
            return self._names.index(name)
        except ValueError:
            raise KeyError(f"Unknown parameter '{name}'. Known parameters: {self._names}.") from None

    def __len__(self) -> int:
        return len(self._names)

    def __getitem__(self, key) -> float:
        return float(self._values[self.index_of(key) if isinstance(key, str) else key])

    def __setitem__(self, key, value: float):
        self._values[self.index_of(key) if isinstance(key, str) else key] = value

    def as_dict(self) -> Dict[str, float]:
        return {name: float(v) for name, v in zip(self._names, self._values)}

    def deep_copy(self) -> "ParameterVector":
        return ParameterVector(self.as_dict())

    def __repr__(self):
        return f"ParameterVector({self.as_dict()})"


class SensitivityData:
    """
    Derivatives of QoIs with respect to parameters: first derivatives in a
    (n_qois, n_parameters) array and, once allocated, second derivatives in a
    (n_qois, n_parameters, n_parameters) array.
    """

    def __init__(self, n_qois: int = 0, n_parameters: int = 0):
        self._first = np.zeros((n_qois, n_parameters))
        self._second: Optional[np.ndarray] = None

    def allocate_data(self, n_qois: int, n_parameters: int):
        self._first = np.zeros((n_qois, n_parameters))

    def allocate_hessian_data(self, n_qois: int, n_parameters: int):
        self.allocate_data(n_qois, n_parameters)
        self._second = np.zeros((n_qois, n_parameters, n_parameters))

    @property
    def shape(self):
        return self._first.shape

    def derivative(self, qoi_index: int, parameter_index: int) -> float:
        return float(self._first[qoi_index, parameter_index])

    def set_derivative(self, qoi_index: int, parameter_index: int, value: float):
        self._first[qoi_index, parameter_index] = value

    def second_derivative(self, qoi_index: int, p1: int, p2: int) -> float:
        if self._second is None:
            raise ValueError("Second derivatives were not allocated; call allocate_hessian_data() first.")
        return float(self._second[qoi_index, p1, p2])

    def set_second_derivative(self, qoi_index: int, p1: int, p2: int, value: float):
        if self._second is None:
            raise ValueError("Second derivatives were not allocated; call allocate_hessian_data() first.")
        self._second[qoi_index, p1, p2] = value

    def as_array(self) -> np.ndarray:
        return self._first.copy()


@dataclass
class SolveReport:
    """Outcome of one solve delegated to a strategy."""
    converged: bool = True
    n_iterations: int = 0
    final_residual: float = 0.0


@dataclass
class EquationContext:
    """
    The single argument every user hook receives.

    Attributes:
        system: The System being initialized, assembled or evaluated.
        parameters: The parameter values in effect, if any.
        qoi_indices: The QoIs requested, for QoI and QoI-derivative hooks.
        include_liftfunc: For QoI derivatives, whether lift-function terms are wanted.
        apply_constraints: For QoI derivatives, whether constraints should be applied.
    """
    system: "System"
    parameters: Optional[ParameterVector] = None
    qoi_indices: Optional[QoISet] = None
    include_liftfunc: bool = True
    apply_constraints: bool = True

    def selected_qois(self) -> Sequence[int]:
        qois = self.qoi_indices or QoISet()
        return qois.indices(len(self.system.qoi))
