# src/simstate_core/system.py
"""
The `System`: the simulation-state container of one discretized physical problem.

A System declares the field variables of a problem, owns every DOF-indexed vector
of its solves (the solution, its ghosted local copy, the adjoint and sensitivity
families and any auxiliary vectors), carries them across mesh changes, and reads
and writes them. It does not assemble or solve anything itself:

- Assembly, constraints, QoIs and initial values come from user callables attached
  with the `attach_*` methods; each receives an `EquationContext`.
- Solves are delegated to an attached `SolveStrategy` through its capabilities.
- The mesh, DOF map and FE evaluation are external collaborators (see
  `discretization`).

Every collective operation uses the communicator the System was created with.
Lifecycle: declare variables and vectors, `init(mesh)` once (this seals the vector
set), then any number of `reinit(new_mesh)` calls.
"""
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .constants import (
    DEFAULT_IO_BLOCK_SIZE,
    ADJOINT_SOLUTION_FAMILY,
    ADJOINT_RHS_FAMILY,
    SENSITIVITY_SOLUTION_FAMILY,
    SENSITIVITY_RHS_FAMILY,
    WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY,
    WEIGHTED_SENSITIVITY_SOLUTION_NAME,
    SOLUTION_NAME,
)
from .discretization import DofMap, IDofMap, IFEEvaluator, IMesh, ReferenceFE
from .errors import DiagnosableError, FrameworkLogicError
from .parallel import Communicator, SerialCommunicator
from .persistence import IOContext, IOLayout, StreamFormat, layout_for
from .projection import PointFunction, ProjectionEngine, project_function
from .solve import (
    EquationContext,
    IAdjointQoISensitivityEvaluator,
    IAdjointSolver,
    IForwardQoISensitivityEvaluator,
    IQoIHessianEvaluator,
    ISensitivitySolver,
    ISolver,
    IWeightedSensitivityAdjointSolver,
    IWeightedSensitivitySolver,
    ParameterVector,
    QoISet,
    SensitivityData,
    SolveNotImplementedError,
    SolveReport,
    SolveStrategy,
    UserHookError,
)
from .units import Quantity, parse_variable_units
from .validation import HeaderValidator, ValidationIssue
from .variables import FEFamily, FEType, Variable, VariableRegistry
from .vectors import ManagedVector, VectorStore, standard_families

logger = logging.getLogger(__name__)

DofMapFactory = Callable[[IMesh, Sequence[Variable], int, IFEEvaluator], IDofMap]
Hook = Callable[[EquationContext], Any]

NORM_TYPES = ("l1", "l2", "linf")


def _default_dof_map(mesh: IMesh, variables: Sequence[Variable], rank: int, fe: IFEEvaluator) -> IDofMap:
    return DofMap(mesh, variables, rank=rank, fe=fe)


class System:
    """
    Args:
        name: The system name, used in diagnostics and file headers.
        number: The ordinal of the system among those of a simulation.
        comm: The communicator of every collective. Defaults to a single rank.
        n_threads: Worker threads for element-parallel loops on each rank.
        fe: The FE evaluation service.
        dof_map_factory: Builds the DOF map of a mesh snapshot for this rank.
    """
    system_type = "BasicSystem"

    def __init__(
        self,
        name: str,
        number: int = 0,
        comm: Optional[Communicator] = None,
        n_threads: int = 1,
        fe: Optional[IFEEvaluator] = None,
        dof_map_factory: DofMapFactory = _default_dof_map,
    ):
        self.name = name
        self.number = number
        self.comm = comm if comm is not None else SerialCommunicator()
        self.n_threads = n_threads
        self.fe = fe or ReferenceFE()
        self._dof_map_factory = dof_map_factory

        self.variables = VariableRegistry(name)
        self.vectors = VectorStore(name)
        self._families = standard_families(self.vectors)

        self.mesh: Optional[IMesh] = None
        self.dof_map: Optional[IDofMap] = None
        self.project_solution_on_reinit = True
        self.parameters = ParameterVector()
        self.qoi: List[float] = []

        self.io_layout = IOLayout.SERIALIZED
        self.stream_format = StreamFormat.BINARY
        self.io_block_size = DEFAULT_IO_BLOCK_SIZE

        self._active = True
        self._initialized = False
        self._hooks: Dict[str, Hook] = {}
        self._strategy: Optional[SolveStrategy] = None
        logger.debug(f"Created system '{name}' (#{number}) on {self.comm!r}.")

    # --- Identity and state ---

    @property
    def active(self) -> bool:
        return self._active

    def activate(self):
        self._active = True

    def deactivate(self):
        self._active = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self, operation: str):
        if not self._initialized:
            raise FrameworkLogicError(f"System '{self.name}': {operation} requires an initialized system; call init() first.")

    # --- Variables ---

    def add_variable(
        self,
        name: str,
        fe_type: Union[FEType, str] = "LAGRANGE",
        order: int = 1,
        subdomains: Optional[Sequence[int]] = None,
        units: Optional[str] = None,
    ) -> int:
        """
        Declares a variable and returns its ordinal. `fe_type` is an `FEType` or a
        family name, in which case `order` applies.

        Raises:
            DuplicateVariableError: If the name is already used. Nothing changes.
            FrameworkLogicError: If the system is already initialized.
        """
        if self._initialized:
            raise FrameworkLogicError(
                f"System '{self.name}': cannot add variable '{name}' after initialization; "
                f"the DOF layout is fixed. Call clear() first."
            )
        if isinstance(fe_type, str):
            fe_type = FEType(FEFamily.from_string(fe_type), order)
        return self.variables.add_variable(name, fe_type, subdomains, units)

    @property
    def n_vars(self) -> int:
        return len(self.variables)

    def variable(self, number: int) -> Variable:
        return self.variables.variable(number)

    def variable_name(self, number: int) -> str:
        return self.variables.variable(number).name

    def variable_number(self, name: str) -> int:
        return self.variables.variable_number(name)

    def variable_type(self, key: Union[int, str]) -> FEType:
        return self.variables.variable(key).fe_type

    def has_variable(self, name: str) -> bool:
        return self.variables.has_variable(name)

    # --- Vectors ---

    def add_vector(self, name: str, project: bool = True) -> ManagedVector:
        """
        Registers an auxiliary vector. With `project=False` it is zero-filled instead
        of projected when the mesh changes.

        Raises:
            VectorStoreSealedError: After the first initialization.
            DuplicateVectorError: If the name is already used.
        """
        return self.vectors.add_vector(name, project)

    def request_vector(self, key: Union[str, int]) -> Optional[ManagedVector]:
        return self.vectors.request_vector(key)

    def get_vector(self, key: Union[str, int]) -> ManagedVector:
        return self.vectors.get_vector(key)

    def have_vector(self, name: str) -> bool:
        return self.vectors.have_vector(name)

    def vector_name(self, number: int) -> str:
        return self.vectors.vector_name(number)

    def vector_preservation(self, name: str) -> bool:
        """True if the vector is projected (rather than zeroed) on mesh changes."""
        return self.vectors.is_projected(name)

    @property
    def n_vectors(self) -> int:
        return len(self.vectors)

    def iter_vectors(self) -> Iterator[Tuple[str, ManagedVector]]:
        """(name, vector) pairs in registration order."""
        return self.vectors.items()

    @property
    def solution(self) -> ManagedVector:
        return self.vectors.solution

    @property
    def current_local_solution(self) -> ManagedVector:
        return self.vectors.current_local_solution

    # --- Indexed vector families ---

    def add_adjoint_solution(self, i: int = 0) -> ManagedVector:
        return self._families[ADJOINT_SOLUTION_FAMILY].add(i)

    def get_adjoint_solution(self, i: int = 0) -> ManagedVector:
        return self._families[ADJOINT_SOLUTION_FAMILY].get(i)

    def add_adjoint_rhs(self, i: int = 0) -> ManagedVector:
        return self._families[ADJOINT_RHS_FAMILY].add(i)

    def get_adjoint_rhs(self, i: int = 0) -> ManagedVector:
        return self._families[ADJOINT_RHS_FAMILY].get(i)

    def add_sensitivity_solution(self, i: int = 0) -> ManagedVector:
        return self._families[SENSITIVITY_SOLUTION_FAMILY].add(i)

    def get_sensitivity_solution(self, i: int = 0) -> ManagedVector:
        return self._families[SENSITIVITY_SOLUTION_FAMILY].get(i)

    def add_sensitivity_rhs(self, i: int = 0) -> ManagedVector:
        return self._families[SENSITIVITY_RHS_FAMILY].add(i)

    def get_sensitivity_rhs(self, i: int = 0) -> ManagedVector:
        return self._families[SENSITIVITY_RHS_FAMILY].get(i)

    def add_weighted_sensitivity_adjoint_solution(self, i: int = 0) -> ManagedVector:
        return self._families[WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY].add(i)

    def get_weighted_sensitivity_adjoint_solution(self, i: int = 0) -> ManagedVector:
        return self._families[WEIGHTED_SENSITIVITY_ADJOINT_SOLUTION_FAMILY].get(i)

    def add_weighted_sensitivity_solution(self) -> ManagedVector:
        return self._families[WEIGHTED_SENSITIVITY_SOLUTION_NAME].add()

    def get_weighted_sensitivity_solution(self) -> ManagedVector:
        return self._families[WEIGHTED_SENSITIVITY_SOLUTION_NAME].get()

    # --- Lifecycle ---

    def _build_dof_map(self, mesh: IMesh) -> IDofMap:
        if mesh.n_partitions != self.comm.size:
            raise FrameworkLogicError(
                f"System '{self.name}': the mesh is partitioned for {mesh.n_partitions} rank(s), "
                f"the communicator has {self.comm.size}."
            )
        return self._dof_map_factory(mesh, tuple(self.variables), self.comm.rank, self.fe)

    def init(self, mesh: IMesh):
        """
        Collective: distributes the DOFs on `mesh`, seals the vector set, allocates
        every vector (zeroed), then runs the attached initialization function.
        """
        if self._initialized:
            raise FrameworkLogicError(f"System '{self.name}' is already initialized; use reinit() for a new mesh.")
        self.mesh = mesh
        self.dof_map = self._build_dof_map(mesh)
        self.vectors.seal()
        self.vectors.allocate(self.dof_map.ownership_ranges(), self.comm.rank, self.dof_map.send_list())
        self._initialized = True
        logger.info(
            f"Initialized system '{self.name}': {self.n_vars} variable(s), {self.n_vectors} vector(s), "
            f"{self.n_dofs} DOF(s) ({self.n_local_dofs} on rank {self.comm.rank})."
        )
        if 'init' in self._hooks:
            self.user_initialization()
        if 'constraint' in self._hooks:
            self.user_constrain()
        self.update()

    def reinit(self, mesh: IMesh):
        """
        Collective: moves the system to a changed mesh (refined, coarsened,
        p-changed or repartitioned). The solution (unless
        `project_solution_on_reinit` is off) and every vector added with
        `project=True` are projected; the other vectors are zero-filled.
        """
        self._require_initialized("reinit()")
        old_dof_map = self.dof_map
        new_dof_map = self._build_dof_map(mesh)
        engine = ProjectionEngine(old_dof_map, new_dof_map, self.comm, self.name, self.n_threads)
        engine.project_store(self.vectors, project_solution=self.project_solution_on_reinit)
        self.mesh = mesh
        self.dof_map = new_dof_map
        if 'constraint' in self._hooks:
            self.user_constrain()
            self.update()
        logger.info(f"Reinitialized system '{self.name}' on {mesh!r}: {self.n_dofs} DOF(s).")

    def update(self):
        """Collective: refreshes the ghosted local copy from the solution."""
        self._require_initialized("update()")
        self.current_local_solution.copy_values_from(self.solution)
        self.current_local_solution.update_ghosts(self.comm)

    def re_update(self):
        """
        Collective: re-lays out the ghosted local copy for the current send-list,
        then refreshes it. Needed when the ghost set changed without a reinit.
        """
        self._require_initialized("re_update()")
        self.current_local_solution.init(
            self.dof_map.ownership_ranges(), self.comm.rank, ghost_indices=self.dof_map.send_list()
        )
        self.update()

    def clear(self):
        """Drops the vectors, the DOF map and the mesh. Variables and hooks are kept."""
        self.vectors.clear()
        self.vectors.unseal()
        self._families = standard_families(self.vectors)
        self.mesh = None
        self.dof_map = None
        self._initialized = False
        logger.debug(f"Cleared system '{self.name}'.")

    # --- DOF counts and access ---

    @property
    def n_dofs(self) -> int:
        return self.dof_map.n_dofs() if self.dof_map is not None else 0

    @property
    def n_local_dofs(self) -> int:
        return self.dof_map.n_local_dofs() if self.dof_map is not None else 0

    @property
    def n_constrained_dofs(self) -> int:
        """Constraints are applied by user hooks; the system itself constrains nothing."""
        return 0

    @property
    def n_active_dofs(self) -> int:
        return self.n_dofs - self.n_constrained_dofs

    def current_solution(self, global_dof: int) -> float:
        """The solution at an owned or ghosted DOF, from the ghosted local copy."""
        self._require_initialized("current_solution()")
        return self.current_local_solution[global_dof]

    def local_dof_indices(self, var: Union[int, str]) -> np.ndarray:
        """The DOFs of one variable owned by this rank, sorted."""
        self._require_initialized("local_dof_indices()")
        return self.dof_map.local_dof_indices(self.variables.variable(var).number)

    def zero_variable(self, vector: ManagedVector, var: Union[int, str]):
        """Zeroes the locally owned entries of one variable in `vector`."""
        indices = self.local_dof_indices(var)
        vector.set_local_values(indices, np.zeros(indices.size))

    def discrete_var_norm(self, vector: ManagedVector, var: Union[int, str], norm_type: str = "l2") -> float:
        """
        Collective: the discrete l1, l2 or linf norm of one variable's entries of
        `vector`, over all ranks.
        """
        if norm_type not in NORM_TYPES:
            raise ValueError(f"Unknown norm type '{norm_type}'. Expected one of {NORM_TYPES}.")
        indices = self.local_dof_indices(var)
        values = vector.local_values[indices - vector.first_local_index]
        if norm_type == "l1":
            return float(sum(self.comm.allgather(float(np.abs(values).sum()))))
        if norm_type == "l2":
            return float(np.sqrt(sum(self.comm.allgather(float(np.square(values).sum())))))
        return float(max(self.comm.allgather(float(np.abs(values).max(initial=0.0)))))

    def variable_values(self, var: Union[int, str], vector: Optional[ManagedVector] = None) -> Quantity:
        """The locally owned entries of one variable (default: of the solution) in its declared units."""
        variable = self.variables.variable(var)
        vector = vector if vector is not None else self.solution
        indices = self.local_dof_indices(variable.number)
        return Quantity(vector.local_values[indices - vector.first_local_index].copy(),
                        parse_variable_units(variable.units))

    def update_global_solution(self, root: Optional[int] = None) -> Optional[np.ndarray]:
        """
        Collective: the full solution vector on every rank, or only on `root`
        (None elsewhere) when `root` is given.
        """
        self._require_initialized("update_global_solution()")
        if root is None:
            return self.solution.localize(self.comm)
        return self.solution.localize_to_one(self.comm, root=root)

    def compare(self, other: "System", threshold: float = 1e-10, verbose: bool = False) -> bool:
        """
        Collective: True when both systems have the same vector names and the
        solution and every vector agree within `threshold` (max-abs) on every rank.
        """
        same = self.vectors.names() == other.vectors.names()
        if verbose and not same:
            logger.info(f"Vector names differ: {self.vectors.names()} vs {other.vectors.names()}.")
        pairs = [(SOLUTION_NAME, self.solution, other.solution)]
        if same:
            pairs += [(name, vec, other.get_vector(name)) for name, vec in self.iter_vectors()]
        for name, mine, theirs in pairs:
            if mine.local_size != theirs.local_size:
                same = False
                if verbose:
                    logger.info(f"Vector '{name}' has local size {mine.local_size} vs {theirs.local_size}.")
                continue
            diff = float(np.abs(mine.local_values - theirs.local_values).max(initial=0.0))
            if verbose:
                logger.info(f"Vector '{name}': max |difference| = {diff:.3e} on rank {self.comm.rank}.")
            same = same and diff <= threshold
        return all(self.comm.allgather(same))

    def get_info(self) -> str:
        lines = [
            f" System #{self.number}, \"{self.name}\"",
            f"  Type \"{self.system_type}\"",
            f"  Variables={self.n_vars}",
        ]
        for var in self.variables:
            extras = []
            if var.subdomains:
                extras.append(f"subdomains={sorted(var.subdomains)}")
            if var.units:
                extras.append(f"units={var.units}")
            lines.append(f"    \"{var.name}\" {var.fe_type}" + (f" ({', '.join(extras)})" if extras else ""))
        lines.append(f"  n_dofs()={self.n_dofs}")
        lines.append(f"  n_local_dofs()={self.n_local_dofs}")
        lines.append(f"  n_constrained_dofs()={self.n_constrained_dofs}")
        lines.append(f"  n_vectors()={self.n_vectors}")
        for name, _ in self.iter_vectors():
            flag = "projected" if self.vectors.is_projected(name) else "zeroed on reinit"
            lines.append(f"    \"{name}\" ({flag})")
        return "\n".join(lines)

    # --- Function projection ---

    def project_vector(
        self,
        vector: ManagedVector,
        value_fn: PointFunction,
        gradient_fn: Optional[PointFunction] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        variables: Optional[Sequence[Union[int, str]]] = None,
    ):
        """Sets `vector` to the projection of a pointwise function (see `project_function`)."""
        self._require_initialized("project_vector()")
        var_numbers = None if variables is None else [self.variables.variable(v).number for v in variables]
        project_function(
            self.dof_map, vector, value_fn, gradient_fn,
            parameters=parameters if parameters is not None else self.parameters.as_dict(),
            system_name=self.name, var_numbers=var_numbers, n_threads=self.n_threads,
        )

    def project_solution(
        self,
        value_fn: PointFunction,
        gradient_fn: Optional[PointFunction] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        variables: Optional[Sequence[Union[int, str]]] = None,
    ):
        """Collective: projects a function onto the solution and refreshes the ghosted copy."""
        self.project_vector(self.solution, value_fn, gradient_fn, parameters, variables)
        self.update()

    # --- User hooks ---

    def _attach(self, hook: str, fn: Hook):
        if not callable(fn):
            raise TypeError(f"The {hook} function of system '{self.name}' must be callable, got {type(fn).__name__}.")
        if hook in self._hooks:
            logger.warning(f"System '{self.name}': replacing the attached {hook} function.")
        self._hooks[hook] = fn

    def attach_init_function(self, fn: Hook):
        self._attach('init', fn)

    def attach_assemble_function(self, fn: Hook):
        self._attach('assemble', fn)

    def attach_constraint_function(self, fn: Hook):
        self._attach('constraint', fn)

    def attach_qoi_function(self, fn: Hook):
        """The QoI function may return a mapping {qoi index: value}, which is stored in `qoi`."""
        self._attach('qoi', fn)

    def attach_qoi_derivative(self, fn: Hook):
        self._attach('qoi_derivative', fn)

    def _call_hook(self, hook: str, context: EquationContext) -> Any:
        fn = self._hooks.get(hook)
        if fn is None:
            return None
        try:
            return fn(context)
        except DiagnosableError:
            raise
        except Exception as e:
            raise UserHookError(system_name=self.name, hook=hook, details=f"{type(e).__name__}: {e}") from e

    def _context(self, **kwargs) -> EquationContext:
        return EquationContext(system=self, parameters=self.parameters, **kwargs)

    def user_initialization(self):
        self._call_hook('init', self._context())

    def user_assembly(self):
        self._call_hook('assemble', self._context())

    def user_constrain(self):
        self._call_hook('constraint', self._context())

    def user_qoi(self, qoi_indices: Optional[QoISet] = None):
        values = self._call_hook('qoi', self._context(qoi_indices=qoi_indices or QoISet()))
        if values:
            for index, value in dict(values).items():
                if index >= len(self.qoi):
                    self.qoi.extend([0.0] * (index + 1 - len(self.qoi)))
                self.qoi[index] = float(value)

    def user_qoi_derivative(
        self, qoi_indices: Optional[QoISet] = None, include_liftfunc: bool = True, apply_constraints: bool = True
    ):
        self._call_hook('qoi_derivative', self._context(
            qoi_indices=qoi_indices or QoISet(),
            include_liftfunc=include_liftfunc,
            apply_constraints=apply_constraints,
        ))

    def assemble(self):
        self._require_initialized("assemble()")
        self.user_assembly()

    def assemble_qoi(self, qoi_indices: Optional[QoISet] = None):
        self._require_initialized("assemble_qoi()")
        self.user_qoi(qoi_indices)

    def assemble_qoi_derivative(
        self, qoi_indices: Optional[QoISet] = None, include_liftfunc: bool = True, apply_constraints: bool = True
    ):
        self._require_initialized("assemble_qoi_derivative()")
        self.user_qoi_derivative(qoi_indices, include_liftfunc, apply_constraints)

    # --- Solves (delegated) ---

    def attach_solve_strategy(self, strategy: SolveStrategy):
        self._strategy = strategy
        logger.debug(f"System '{self.name}': attached {strategy!r}.")

    @property
    def solve_strategy(self) -> Optional[SolveStrategy]:
        return self._strategy

    def _capability(self, capability_type, operation: str):
        impl = self._strategy.get_capability(capability_type) if self._strategy is not None else None
        if impl is None:
            raise SolveNotImplementedError(
                system_name=self.name, operation=operation, capability=capability_type.__name__
            )
        return impl

    def _qois(self, qoi_indices: Optional[QoISet]) -> List[int]:
        return (qoi_indices or QoISet()).indices(len(self.qoi))

    def solve(self) -> SolveReport:
        self._require_initialized("solve()")
        report = self._capability(ISolver, "solve").solve(self, self._context())
        self.update()
        return report

    def sensitivity_solve(self, parameters: ParameterVector) -> SolveReport:
        self._require_initialized("sensitivity_solve()")
        impl = self._capability(ISensitivitySolver, "sensitivity_solve")
        for p in range(len(parameters)):
            self.get_sensitivity_solution(p)
        return impl.sensitivity_solve(self, parameters)

    def adjoint_solve(self, qoi_indices: Optional[QoISet] = None) -> SolveReport:
        self._require_initialized("adjoint_solve()")
        impl = self._capability(IAdjointSolver, "adjoint_solve")
        qoi_indices = qoi_indices or QoISet()
        for q in self._qois(qoi_indices):
            self.get_adjoint_solution(q)
        return impl.adjoint_solve(self, qoi_indices)

    def weighted_sensitivity_solve(self, parameters: ParameterVector, weights: ParameterVector) -> SolveReport:
        self._require_initialized("weighted_sensitivity_solve()")
        impl = self._capability(IWeightedSensitivitySolver, "weighted_sensitivity_solve")
        self.get_weighted_sensitivity_solution()
        return impl.weighted_sensitivity_solve(self, parameters, weights)

    def weighted_sensitivity_adjoint_solve(
        self, parameters: ParameterVector, weights: ParameterVector, qoi_indices: Optional[QoISet] = None
    ) -> SolveReport:
        self._require_initialized("weighted_sensitivity_adjoint_solve()")
        impl = self._capability(IWeightedSensitivityAdjointSolver, "weighted_sensitivity_adjoint_solve")
        qoi_indices = qoi_indices or QoISet()
        for q in self._qois(qoi_indices):
            self.get_weighted_sensitivity_adjoint_solution(q)
        return impl.weighted_sensitivity_adjoint_solve(self, parameters, weights, qoi_indices)

    def adjoint_qoi_parameter_sensitivity(
        self, qoi_indices: QoISet, parameters: ParameterVector, sensitivities: SensitivityData
    ):
        self._require_initialized("adjoint_qoi_parameter_sensitivity()")
        self._capability(IAdjointQoISensitivityEvaluator, "adjoint_qoi_parameter_sensitivity") \
            .adjoint_qoi_parameter_sensitivity(self, qoi_indices, parameters, sensitivities)

    def forward_qoi_parameter_sensitivity(
        self, qoi_indices: QoISet, parameters: ParameterVector, sensitivities: SensitivityData
    ):
        self._require_initialized("forward_qoi_parameter_sensitivity()")
        self._capability(IForwardQoISensitivityEvaluator, "forward_qoi_parameter_sensitivity") \
            .forward_qoi_parameter_sensitivity(self, qoi_indices, parameters, sensitivities)

    def qoi_parameter_sensitivity(
        self, qoi_indices: QoISet, parameters: ParameterVector, sensitivities: SensitivityData
    ):
        """
        Forward sensitivities when QoIs outnumber parameters, adjoint sensitivities
        otherwise. Falls back to whichever method the strategy provides.
        """
        has_forward = self._strategy is not None and self._strategy.has_capability(IForwardQoISensitivityEvaluator)
        has_adjoint = self._strategy is not None and self._strategy.has_capability(IAdjointQoISensitivityEvaluator)
        prefer_forward = qoi_indices.size(len(self.qoi)) > len(parameters)
        if has_forward and (prefer_forward or not has_adjoint):
            self.forward_qoi_parameter_sensitivity(qoi_indices, parameters, sensitivities)
        else:
            self.adjoint_qoi_parameter_sensitivity(qoi_indices, parameters, sensitivities)

    def qoi_parameter_hessian(self, qoi_indices: QoISet, parameters: ParameterVector, hessian: SensitivityData):
        self._require_initialized("qoi_parameter_hessian()")
        self._capability(IQoIHessianEvaluator, "qoi_parameter_hessian") \
            .qoi_parameter_hessian(self, qoi_indices, parameters, hessian)

    def qoi_parameter_hessian_vector_product(
        self, qoi_indices: QoISet, parameters: ParameterVector, vector: ParameterVector, product: SensitivityData
    ):
        self._require_initialized("qoi_parameter_hessian_vector_product()")
        self._capability(IQoIHessianEvaluator, "qoi_parameter_hessian_vector_product") \
            .qoi_parameter_hessian_vector_product(self, qoi_indices, parameters, vector, product)

    # --- Persistence ---

    def _io_context(self) -> IOContext:
        return IOContext(self.name, self.variables, self.vectors, self.dof_map, self.comm)

    def _layout(self, layout, stream_format):
        return layout_for(
            layout if layout is not None else self.io_layout,
            stream_format if stream_format is not None else self.stream_format,
            self.io_block_size,
        )

    def write(
        self,
        path: str,
        layout: Optional[Union[IOLayout, str]] = None,
        stream_format: Optional[Union[StreamFormat, str]] = None,
        write_additional_data: bool = True,
    ):
        """Collective: writes the header, the solution and (optionally) every vector."""
        self._require_initialized("write()")
        self._layout(layout, stream_format).write(self._io_context(), str(path), write_additional_data)

    def read(
        self,
        path: str,
        layout: Optional[Union[IOLayout, str]] = None,
        stream_format: Optional[Union[StreamFormat, str]] = None,
        read_additional_data: bool = True,
    ):
        """
        Collective: reads a file written by `write` into the live vectors, then
        refreshes the ghosted copy.

        Raises:
            HeaderValidationError: If the file's variables differ from the system's.
        """
        self._require_initialized("read()")
        header = self._layout(layout, stream_format).read(self._io_context(), str(path), read_additional_data)
        self.update()
        logger.info(f"System '{self.name}' read '{path}' ({header.version}).")

    def read_header(
        self,
        path: str,
        layout: Optional[Union[IOLayout, str]] = None,
        stream_format: Optional[Union[StreamFormat, str]] = None,
        read_additional_data: bool = True,
        read_legacy_format: bool = False,
    ) -> List[ValidationIssue]:
        """
        Collective: reads only the header of a file and checks it against the system.

        On a system with no variables yet, the file's variables are declared. On a
        system that is not yet initialized, file vectors it lacks are registered
        (projected) when `read_additional_data` is set. Returns the validation
        issues; nothing is raised for a mismatch here.
        """
        strategy = self._layout(layout, stream_format)
        header = strategy.read_header(self._io_context(), str(path), read_legacy_format)

        if len(self.variables) == 0 and not self._initialized:
            for var in header.variables:
                self.variables.add_variable(var.name, var.fe_type)
            logger.info(f"System '{self.name}' declared {len(header.variables)} variable(s) from '{path}'.")
        if read_additional_data and not self.vectors.sealed:
            for name in header.vector_names:
                if not self.vectors.have_vector(name):
                    self.vectors.add_vector(name)

        issues = HeaderValidator(
            self.name, self.variables, self.vectors,
            n_dofs=self.n_dofs if self._initialized else None, source_file=str(path)
        ).validate(header)
        for issue in issues:
            if issue.is_error:
                logger.warning(f"[{self.name}] {issue}")
            else:
                logger.debug(f"[{self.name}] {issue}")
        return issues

    def __repr__(self):
        return f"System(name={self.name!r}, number={self.number}, n_vars={self.n_vars}, n_dofs={self.n_dofs})"
