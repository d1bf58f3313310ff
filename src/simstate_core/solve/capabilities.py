# src/simstate_core/solve/capabilities.py
"""
Defines the solve capabilities a System can delegate to.

A System owns state, not algorithms. Linear, adjoint and sensitivity solves are
provided by a `SolveStrategy` attached to the System, and each operation the
strategy supports is declared as a capability: a nested class decorated with
`@provides(<Protocol>)`. The System asks its strategy for the capability an
operation needs and raises `SolveNotImplementedError` when it is absent.

Key elements:
- SolveCapability: A marker protocol for all capabilities.
- ISolver ... IQoIHessianEvaluator: The contracts of the individual operations.
  Every method receives the System as its first argument.
- @provides: A class decorator registering a class as an implementation of one
  capability.
- TCapability: A TypeVar for precise type-hinting of capability queries.
"""
import logging
from typing import TYPE_CHECKING, Protocol, Type, TypeVar, runtime_checkable

from .context import EquationContext, ParameterVector, QoISet, SensitivityData, SolveReport

if TYPE_CHECKING:
    from ..system import System

logger = logging.getLogger(__name__)


@runtime_checkable
class SolveCapability(Protocol):
    """A marker protocol for all solve capabilities."""
    pass


TCapability = TypeVar("TCapability", bound=SolveCapability)


@runtime_checkable
class ISolver(SolveCapability, Protocol):
    """Solves for the primary solution, writing into `system.solution`."""

    def solve(self, system: "System", context: EquationContext) -> SolveReport:
        ...


@runtime_checkable
class ISensitivitySolver(SolveCapability, Protocol):
    """Solves for d(solution)/d(parameter), one `sensitivity_solution_<i>` per parameter."""

    def sensitivity_solve(self, system: "System", parameters: ParameterVector) -> SolveReport:
        ...


@runtime_checkable
class IAdjointSolver(SolveCapability, Protocol):
    """Solves the adjoint problem of each requested QoI into `adjoint_solution_<i>`."""

    def adjoint_solve(self, system: "System", qoi_indices: QoISet) -> SolveReport:
        ...


@runtime_checkable
class IWeightedSensitivitySolver(SolveCapability, Protocol):
    """
    Solves for the directional derivative of the solution along `weights` into the
    single `weighted_sensitivity_solution` vector.
    """

    def weighted_sensitivity_solve(
        self, system: "System", parameters: ParameterVector, weights: ParameterVector
    ) -> SolveReport:
        ...


@runtime_checkable
class IWeightedSensitivityAdjointSolver(SolveCapability, Protocol):
    """Solves for the directional derivative of each adjoint along `weights`."""

    def weighted_sensitivity_adjoint_solve(
        self, system: "System", parameters: ParameterVector, weights: ParameterVector, qoi_indices: QoISet
    ) -> SolveReport:
        ...


@runtime_checkable
class IAdjointQoISensitivityEvaluator(SolveCapability, Protocol):
    """QoI parameter sensitivities from adjoint solutions: cheap when parameters outnumber QoIs."""

    def adjoint_qoi_parameter_sensitivity(
        self, system: "System", qoi_indices: QoISet, parameters: ParameterVector, sensitivities: SensitivityData
    ) -> None:
        ...


@runtime_checkable
class IForwardQoISensitivityEvaluator(SolveCapability, Protocol):
    """QoI parameter sensitivities from forward sensitivity solutions: cheap when QoIs outnumber parameters."""

    def forward_qoi_parameter_sensitivity(
        self, system: "System", qoi_indices: QoISet, parameters: ParameterVector, sensitivities: SensitivityData
    ) -> None:
        ...


@runtime_checkable
class IQoIHessianEvaluator(SolveCapability, Protocol):
    """Second derivatives of QoIs with respect to parameters."""

    def qoi_parameter_hessian(
        self, system: "System", qoi_indices: QoISet, parameters: ParameterVector, hessian: SensitivityData
    ) -> None:
        ...

    def qoi_parameter_hessian_vector_product(
        self,
        system: "System",
        qoi_indices: QoISet,
        parameters: ParameterVector,
        vector: ParameterVector,
        product: SensitivityData,
    ) -> None:
        ...


def provides(capability_protocol: Type[SolveCapability]):
    """
    A class decorator to register a class as an implementation for a capability.

    The decorator attaches `_implements_capability` to the decorated class;
    `SolveStrategy.declare_capabilities` uses it for discovery.

    Args:
        capability_protocol: The capability Protocol (e.g., IAdjointSolver)
                             that this class implements.
    """

    def decorator(cls: Type) -> Type:
        if not (isinstance(capability_protocol, type) and issubclass(capability_protocol, SolveCapability)):
            raise TypeError(
                f"Decorator argument for @provides must be a SolveCapability "
                f"Protocol, but got {capability_protocol}."
            )
        cls._implements_capability = capability_protocol
        logger.debug(
            f"Class '{cls.__name__}' registered as providing capability '{capability_protocol.__name__}'."
        )
        return cls

    return decorator
