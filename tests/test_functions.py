# tests/test_functions.py
import math

import numpy as np
import pytest

from simstate_core import ParameterVector, compile_expression
from simstate_core.functions import ExpressionError, ExpressionEvaluationError
from simstate_core.projection import FunctionEvaluationError

from conftest import make_system


class TestCompileExpression:

    def test_evaluates_with_parameters(self):
        f = compile_expression("amplitude * sin(pi * x)", ["amplitude"])
        assert f(0.5, {"amplitude": 2.0}) == pytest.approx(2.0)
        # The system and variable names are accepted and ignored.
        assert f(0.5, {"amplitude": 2.0}, "Heat", "T") == pytest.approx(2.0)

    def test_constant_expression(self):
        f = compile_expression("3")
        assert f(0.7, {}) == 3.0
        assert f.derivative()(0.7, {}) == 0.0

    def test_exact_derivative(self):
        f = compile_expression("a * x**3 + exp(x)", ["a"])
        df = f.derivative()
        assert df(1.0, {"a": 2.0}) == pytest.approx(6.0 + math.e)
        assert df.parameter_names == ("a",)

    def test_allowed_constants_and_functions(self):
        f = compile_expression("E**x + atan2(x, 1) + Abs(x - 1) + sqrt(x)")
        assert f(1.0, {}) == pytest.approx(math.e + math.atan2(1.0, 1.0) + 1.0)

    @pytest.mark.parametrize("expression, fragment", [
        ("gamma(x)", "Disallowed function"),
        ("x * y", "Unknown symbol 'y'"),
        ("x > 1", "Not a scalar expression"),
        ("x +* 2", "Syntax error"),
        ("sin(x", "Syntax error"),
    ])
    def test_rejected_expressions(self, expression, fragment):
        with pytest.raises(ExpressionError) as excinfo:
            compile_expression(expression)
        assert fragment in str(excinfo.value)
        assert "Invalid Expression" in excinfo.value.get_diagnostic_report()

    def test_coordinate_cannot_be_a_parameter(self):
        with pytest.raises(ExpressionError):
            compile_expression("x", ["x"])

    def test_missing_parameter(self):
        f = compile_expression("k * x", ["k"])
        with pytest.raises(ExpressionEvaluationError) as excinfo:
            f(1.0, {})
        assert excinfo.value.missing_parameter == "k"


class TestExpressionProjection:

    def test_quadratic_is_reproduced_by_second_order_lagrange(self, mesh4):
        system = make_system(mesh4, variables=(("T", "LAGRANGE", 2),))
        f = compile_expression("amplitude * x**2", ["amplitude"])
        system.project_solution(f, f.derivative(), parameters={"amplitude": 2.0})
        for x in (0.0, 0.3, 0.5, 0.9):
            element = system.mesh.locate_point(x)
            dofs = system.dof_map.dof_indices(element, 0)
            xi = np.array([2.0 * (x - element.x0) / (element.x1 - element.x0) - 1.0])
            phi = system.fe.shape(system.variable_type("T"), element.p_level, xi)[:, 0]
            value = float(phi @ system.solution.get_values(np.array(dofs)))
            assert value == pytest.approx(2.0 * x * x, abs=1e-12)

    def test_system_parameters_are_the_default(self, mesh4):
        system = make_system(mesh4)
        system.parameters = ParameterVector({"k": 4.0})
        system.project_solution(compile_expression("k", ["k"]))
        assert (system.solution.local_values == 4.0).all()

    def test_missing_parameter_during_projection(self, mesh4):
        system = make_system(mesh4)
        with pytest.raises(FunctionEvaluationError) as excinfo:
            system.project_solution(compile_expression("k * x", ["k"]))
        assert isinstance(excinfo.value.__cause__, ExpressionEvaluationError)
