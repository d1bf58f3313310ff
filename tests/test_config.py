# tests/test_config.py
import textwrap

import numpy as np
import pytest

from simstate_core import IntervalMesh, SystemSetupError, build_system, load_system_config
from simstate_core.config import ConfigFileError, ConfigSchemaError, SystemConfigParser
from simstate_core.persistence import IOLayout, StreamFormat

from conftest import node_values

HEAT_YAML = """
system: heat
number: 2
variables:
  - {name: T, family: lagrange, order: 2, units: kelvin}
  - {name: q, family: MONOMIAL, order: 0, subdomains: [1]}
vectors:
  - {name: old_solution}
  - {name: residual, project: false}
families:
  adjoint_solution: 2
  sensitivity_rhs: 1
project_solution_on_reinit: false
parallel: {n_threads: 2}
io: {layout: Parallel, format: ascii, block_size: 64}
parameters: {amplitude: 2}
initial_conditions:
  T: "amplitude * x**2"
  q: 5
"""


@pytest.fixture
def write_yaml(tmp_path):
    def _write(content: str, name: str = "system.yaml"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path
    return _write


def schema_errors(write_yaml, content: str) -> str:
    with pytest.raises(ConfigSchemaError) as excinfo:
        SystemConfigParser().parse_file(write_yaml(content))
    return str(excinfo.value)


class TestSystemConfigParser:

    def test_full_description(self, write_yaml):
        config = load_system_config(write_yaml(HEAT_YAML))
        assert config.name == "heat"
        assert config.number == 2
        assert [(v.name, v.family, v.order) for v in config.variables] == [("T", "LAGRANGE", 2), ("q", "MONOMIAL", 0)]
        assert config.variables[0].units == "kelvin"
        assert config.variables[1].subdomains == (1,)
        assert [(v.name, v.project) for v in config.vectors] == [("old_solution", True), ("residual", False)]
        assert config.families == {"adjoint_solution": 2, "sensitivity_rhs": 1}
        assert config.n_threads == 2
        assert (config.io_layout, config.io_format, config.io_block_size) == ("parallel", "ascii", 64)
        assert config.parameters == {"amplitude": 2.0}
        assert config.initial_conditions == {"T": "amplitude * x**2", "q": "5"}

    def test_defaults(self, write_yaml):
        config = load_system_config(write_yaml("""
            system: minimal
            variables:
              - {name: u}
        """))
        assert [(v.name, v.family, v.order) for v in config.variables] == [("u", "LAGRANGE", 1)]
        assert config.vectors == []
        assert config.project_solution_on_reinit
        assert config.n_threads == 1
        assert config.io_layout == IOLayout.SERIALIZED.value
        assert config.io_format == StreamFormat.BINARY.value

    def test_invalid_identifier(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables:
              - {name: bad-name}
        """)
        assert "Forbidden character(s): ['-']" in message

    def test_duplicate_variable(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables:
              - {name: T}
              - {name: T, family: MONOMIAL, order: 0}
        """)
        assert "Duplicate values found for key 'name': ['T']" in message

    @pytest.mark.parametrize("name", ["solution", "current_local_solution"])
    def test_vector_cannot_take_a_reserved_name(self, write_yaml, name):
        message = schema_errors(write_yaml, f"""
            system: heat
            variables: [{{name: T}}]
            vectors: [{{name: {name}}}]
        """)
        assert "vectors" in message
        assert name in message

    def test_unknown_family_and_layout(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables:
              - {name: T, family: NEDELEC}
            io: {layout: hdf5}
        """)
        assert "variables" in message
        assert "io.layout" in message

    def test_unknown_vector_family(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables: [{name: T}]
            families: {hessian: 1}
        """)
        assert "families" in message

    def test_unknown_top_level_key(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables: [{name: T}]
            solver: gmres
        """)
        assert "solver" in message

    def test_coordinate_cannot_be_a_parameter(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables: [{name: T}]
            parameters: {x: 1.0}
        """)
        assert "parameters" in message

    def test_initial_condition_for_undeclared_variable(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables: [{name: T}]
            initial_conditions: {p: "x"}
        """)
        assert "Initial condition for undeclared variable 'p'" in message

    def test_zero_order_lagrange(self, write_yaml):
        message = schema_errors(write_yaml, """
            system: heat
            variables: [{name: T, order: 0}]
        """)
        assert "LAGRANGE requires order >= 1" in message

    def test_missing_variables(self, write_yaml):
        message = schema_errors(write_yaml, "system: heat\n")
        assert "variables" in message

    @pytest.mark.parametrize("content, fragment", [
        ("", "empty"),
        ("- just\n- a list\n", "must be a dictionary"),
        ("system: [unclosed\n", "Invalid YAML syntax"),
    ])
    def test_file_level_errors(self, write_yaml, content, fragment):
        with pytest.raises(ConfigFileError) as excinfo:
            SystemConfigParser().parse_file(write_yaml(content))
        assert fragment in excinfo.value.details

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemSetupError) as excinfo:
            load_system_config(tmp_path / "absent.yaml")
        assert "YAML Configuration or File Error" in str(excinfo.value)

    def test_facade_reports_schema_errors(self, write_yaml):
        with pytest.raises(SystemSetupError) as excinfo:
            load_system_config(write_yaml("system: heat\nvariables: []\n"))
        assert "YAML Schema Validation Error" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, ConfigSchemaError)


class TestBuildSystem:

    def test_declares_the_system(self, write_yaml):
        system = build_system(write_yaml(HEAT_YAML))
        assert (system.name, system.number, system.n_threads) == ("heat", 2, 2)
        assert system.variables.names() == ["T", "q"]
        assert system.variable("q").subdomains == frozenset({1})
        assert system.vectors.names() == [
            "old_solution", "residual", "adjoint_solution_0", "adjoint_solution_1", "sensitivity_rhs_0",
        ]
        assert not system.vector_preservation("residual")
        assert not system.project_solution_on_reinit
        assert system.io_layout is IOLayout.PARALLEL
        assert system.stream_format is StreamFormat.ASCII
        assert system.io_block_size == 64
        assert system.parameters.as_dict() == {"amplitude": 2.0}
        assert not system.initialized

    def test_initial_conditions_are_applied_at_init(self, write_yaml):
        system = build_system(write_yaml(HEAT_YAML))
        mesh = IntervalMesh.uniform(4, subdomain_of=lambda x: 0 if x < 0.5 else 1)
        system.init(mesh)
        for x, value in node_values(system, system.solution, var_number=0).items():
            assert value == pytest.approx(2.0 * x * x)
        q = system.variable_values("q").magnitude
        # q lives on subdomain 1 only: two elements with one DOF each.
        np.testing.assert_allclose(q, [5.0, 5.0])

    def test_accepts_a_config_object(self, write_yaml):
        config = load_system_config(write_yaml(HEAT_YAML))
        assert build_system(config).name == "heat"

    def test_invalid_expression(self, write_yaml):
        with pytest.raises(SystemSetupError) as excinfo:
            build_system(write_yaml("""
                system: heat
                variables: [{name: T}]
                initial_conditions: {T: "gamma(x)"}
            """))
        assert "Invalid Expression" in str(excinfo.value)

    def test_invalid_units(self, write_yaml):
        with pytest.raises(SystemSetupError) as excinfo:
            build_system(write_yaml("""
                system: heat
                variables: [{name: T, units: not_a_unit}]
            """))
        assert "not_a_unit" in str(excinfo.value)
