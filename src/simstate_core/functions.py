# src/simstate_core/functions.py
"""
Compiles closed-form expression strings (e.g. initial conditions written in a YAML
system description) into pointwise functions usable by `System.project_solution`.

An expression is written in the coordinate symbol `x` and any number of named
parameters, using a restricted subset of SymPy: arithmetic, powers and the
elementary functions listed in `ALLOWED_FUNCTIONS`. The parsed expression is
checked node by node, then compiled to NumPy with `sympy.lambdify`. Its exact
derivative in `x` is available for H1 projection.
"""
import logging
from dataclasses import dataclass
from tokenize import TokenError
from typing import Any, Callable, Mapping, Sequence, Tuple

import sympy
from sympy import (
    Abs, Add, Float, Integer, Mul, Pow, Rational, Symbol,
    acos, asin, atan, atan2, cos, cosh, exp, log, sin, sinh, sqrt, tan, tanh,
)
from sympy.core.relational import Relational
from sympy.logic.boolalg import BooleanFunction
from sympy.parsing.sympy_parser import parse_expr

from .errors import DiagnosableError, format_diagnostic_report

logger = logging.getLogger(__name__)

COORDINATE_SYMBOL = "x"

ALLOWED_FUNCTIONS = {
    Abs, sqrt, exp, log,
    sin, cos, tan, asin, acos, atan, atan2,
    sinh, cosh, tanh,
}
ALLOWED_CONSTANTS = {sympy.pi, sympy.E}

_PARSE_GLOBALS = {
    "Symbol": Symbol, "Integer": Integer, "Float": Float, "Rational": Rational,
    "Add": Add, "Mul": Mul, "Pow": Pow,
    "Function": sympy.Function,
    "pi": sympy.pi, "E": sympy.E,
    **{func.__name__: func for func in ALLOWED_FUNCTIONS},
}


@dataclass(frozen=True)
class ExpressionError(DiagnosableError):
    """Raised when an expression string cannot be parsed, is outside the allowed subset, or fails to compile."""
    expression: str
    details: str

    def __str__(self) -> str:
        return f"Invalid expression '{self.expression}': {self.details}"

    def get_diagnostic_report(self) -> str:
        allowed = ", ".join(sorted(f.__name__ for f in ALLOWED_FUNCTIONS))
        return format_diagnostic_report(
            error_type="Invalid Expression",
            details=f"Expression: '{self.expression}'\n{self.details}",
            suggestion=(
                f"Write the expression in the coordinate '{COORDINATE_SYMBOL}' and the declared parameters only.\n"
                f"Allowed functions: {allowed}. Allowed constants: pi, E."
            ),
            context={}
        )


@dataclass(frozen=True)
class ExpressionEvaluationError(DiagnosableError):
    """Raised when a compiled expression is evaluated without one of its parameters."""
    expression: str
    missing_parameter: str

    def __str__(self) -> str:
        return f"Expression '{self.expression}' needs parameter '{self.missing_parameter}', which was not supplied."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Missing Expression Parameter",
            details=str(self),
            suggestion="Declare the parameter in the system's 'parameters' block or pass it explicitly.",
            context={}
        )


class CompiledExpression:
    """
    A pointwise function `f(x, parameters, system_name, variable_name) -> float`
    compiled from an expression string. The system and variable names are accepted
    for signature compatibility and ignored.
    """

    def __init__(self, source: str, expr: sympy.Expr, parameter_names: Tuple[str, ...]):
        self.source = source
        self.expr = expr
        self.parameter_names = parameter_names
        args = [Symbol(COORDINATE_SYMBOL, real=True)] + [Symbol(name, real=True) for name in parameter_names]
        try:
            self._fn: Callable[..., Any] = sympy.lambdify(args, expr, modules=['numpy'], cse=True)
        except Exception as e:
            raise ExpressionError(expression=source, details=f"Compilation failed: {type(e).__name__} - {e}") from e

    def __call__(self, x: float, parameters: Mapping[str, Any], system_name: str = "", variable_name: str = "") -> float:
        values = []
        for name in self.parameter_names:
            if name not in parameters:
                raise ExpressionEvaluationError(expression=self.source, missing_parameter=name)
            values.append(float(parameters[name]))
        return float(self._fn(x, *values))

    def derivative(self) -> "CompiledExpression":
        """The exact derivative in the coordinate, as a new compiled expression."""
        d_expr = sympy.diff(self.expr, Symbol(COORDINATE_SYMBOL, real=True))
        return CompiledExpression(f"d/d{COORDINATE_SYMBOL}({self.source})", d_expr, self.parameter_names)

    def __repr__(self):
        return f"CompiledExpression({self.source!r}, parameters={list(self.parameter_names)})"


def _validate_subset(source: str, expr: sympy.Expr, allowed_symbols: set):
    for node in sympy.preorder_traversal(expr):
        if isinstance(node, (Relational, BooleanFunction, sympy.Derivative, sympy.Integral, sympy.Lambda, sympy.Piecewise)):
            raise ExpressionError(expression=source, details=f"Disallowed operation '{type(node).__name__}'.")
        if isinstance(node, sympy.Function) and node.func not in ALLOWED_FUNCTIONS:
            raise ExpressionError(expression=source, details=f"Disallowed function '{node.func.__name__}'.")
        if node.is_Symbol and str(node) not in allowed_symbols:
            raise ExpressionError(
                expression=source,
                details=f"Unknown symbol '{node}'. Known symbols: {sorted(allowed_symbols)}."
            )
        if node.is_Number and node.is_finite is False:
            raise ExpressionError(expression=source, details=f"Disallowed number '{node}' (Infinity/NaN).")


def compile_expression(expression: str, parameter_names: Sequence[str] = ()) -> CompiledExpression:
    """
    Parses, validates and compiles an expression in `x` and `parameter_names`.

    Args:
        expression: e.g. "amplitude * sin(pi * x)".
        parameter_names: The parameter symbols the expression may use.

    Raises:
        ExpressionError: On a syntax error, a disallowed construct, an unknown symbol
            or a compilation failure.
    """
    parameter_names = tuple(parameter_names)
    if COORDINATE_SYMBOL in parameter_names:
        raise ExpressionError(
            expression=expression, details=f"'{COORDINATE_SYMBOL}' is the coordinate and cannot be a parameter name."
        )
    local_dict = {name: Symbol(name, real=True) for name in (COORDINATE_SYMBOL,) + parameter_names}
    try:
        expr = parse_expr(expression, local_dict=local_dict, global_dict=dict(_PARSE_GLOBALS))
    except (SyntaxError, TokenError, TypeError, ValueError, AttributeError) as e:
        raise ExpressionError(expression=expression, details=f"Syntax error: {e}") from e
    if not isinstance(expr, sympy.Expr):
        raise ExpressionError(expression=expression, details=f"Not a scalar expression: {expr!r}.")
    _validate_subset(expression, expr, set(local_dict))
    compiled = CompiledExpression(expression, expr, parameter_names)
    logger.debug(f"Compiled expression '{expression}' with parameters {list(parameter_names)}.")
    return compiled
