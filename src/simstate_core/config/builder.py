# src/simstate_core/config/builder.py
"""
Builds a `System` from a validated `SystemConfig`.

`load_system_config` and `build_system` are the user-facing entry points of this
package. Each wraps its whole process in one error handler that turns any
`DiagnosableError` from the subsystems (schema validation, variable and vector
registration, expression compilation) into a single `SystemSetupError` carrying
the diagnostic report.
"""
import logging
from pathlib import Path
from typing import Dict, Optional, Union

from ..errors import DiagnosableError, SystemSetupError, format_diagnostic_report
from ..functions import CompiledExpression, compile_expression
from ..parallel import Communicator
from ..persistence import IOLayout, StreamFormat
from ..solve import EquationContext, ParameterVector
from ..system import System
from .schema import SystemConfig, SystemConfigParser

logger = logging.getLogger(__name__)


def _setup_error(e: Exception, stage: str) -> SystemSetupError:
    if isinstance(e, DiagnosableError):
        return SystemSetupError(e.get_diagnostic_report())
    report = format_diagnostic_report(
        error_type=f"An Unexpected Error Occurred ({type(e).__name__})",
        details=f"{stage} encountered an unexpected internal error: {e}",
        suggestion="This may indicate a bug in SimState Core. Please review the traceback.",
        context={}
    )
    return SystemSetupError(report)


def load_system_config(path: Union[str, Path]) -> SystemConfig:
    """
    Loads and validates a YAML system description.

    Raises:
        SystemSetupError: With the diagnostic report of the first problem found.
    """
    try:
        return SystemConfigParser().parse_file(path)
    except Exception as e:
        raise _setup_error(e, "Loading the system description") from e


class InitialConditions:
    """
    The initialization function of a configured System: projects each compiled
    expression onto the solution entries of its variable. The exact derivative of
    each expression is used, so continuous variables get an H1 projection.
    """

    def __init__(self, expressions: Dict[str, CompiledExpression]):
        self.expressions = expressions
        self.gradients = {name: expr.derivative() for name, expr in expressions.items()}

    def __call__(self, context: EquationContext):
        system = context.system
        parameters = context.parameters.as_dict()
        for var_name, expr in self.expressions.items():
            system.project_vector(
                system.solution, expr, self.gradients[var_name], parameters=parameters, variables=[var_name]
            )
            logger.debug(f"[{system.name}] Applied initial condition {var_name} = {expr.source}")


def _configure(config: SystemConfig, comm: Optional[Communicator]) -> System:
    system = System(config.name, number=config.number, comm=comm, n_threads=config.n_threads)
    for var in config.variables:
        system.add_variable(var.name, var.family, var.order, subdomains=var.subdomains or None, units=var.units)
    for vec in config.vectors:
        system.add_vector(vec.name, project=vec.project)
    for family, count in config.families.items():
        add_member = getattr(system, f"add_{family}")
        for i in range(count):
            add_member(i)

    system.project_solution_on_reinit = config.project_solution_on_reinit
    system.io_layout = IOLayout.from_string(config.io_layout)
    system.stream_format = StreamFormat.from_string(config.io_format)
    system.io_block_size = config.io_block_size
    system.parameters = ParameterVector(config.parameters)

    if config.initial_conditions:
        names = tuple(config.parameters)
        expressions = {
            var_name: compile_expression(expr, names) for var_name, expr in config.initial_conditions.items()
        }
        system.attach_init_function(InitialConditions(expressions))
    return system


def build_system(config: Union[SystemConfig, str, Path], comm: Optional[Communicator] = None) -> System:
    """
    Declares a System from a config (or the path of a YAML description). The
    returned System is not initialized: call `init(mesh)` next, which also applies
    the initial conditions.

    Raises:
        SystemSetupError: With the diagnostic report of the first problem found.
    """
    if not isinstance(config, SystemConfig):
        config = load_system_config(config)
    try:
        system = _configure(config, comm)
    except Exception as e:
        raise _setup_error(e, "Building the system") from e
    logger.info(
        f"Built system '{system.name}' from {config.source_path or 'an in-memory config'}: "
        f"{system.n_vars} variable(s), {system.n_vectors} vector(s)."
    )
    return system
