# tests/conftest.py
import pytest
import numpy as np

from simstate_core import System, IntervalMesh, SerialCommunicator
from simstate_core.discretization import NODE


def linear_field(x, parameters, system_name, variable_name):
    return 2.0 * x + 1.0


def constant_field(x, parameters, system_name, variable_name):
    return 3.0


def make_system(
    mesh: IntervalMesh,
    comm=None,
    name: str = "TestSystem",
    variables=(("u", "LAGRANGE", 1),),
    vectors=(),
    init: bool = True,
) -> System:
    """
    Declares a System with the given (name, family, order) variables and
    (name, project) vectors, and initializes it on `mesh` unless told otherwise.
    """
    system = System(name, comm=comm)
    for var_name, family, order in variables:
        system.add_variable(var_name, family, order)
    for vec_name, project in vectors:
        system.add_vector(vec_name, project=project)
    if init:
        system.init(mesh)
    return system


def node_values(system: System, vector, var_number: int = 0) -> dict:
    """{node x: value} for the locally owned vertex DOFs of one variable."""
    values = {}
    first, end = vector.first_local_index, vector.last_local_index
    for node in system.mesh.nodes():
        for dof in system.dof_map.entity_dofs(NODE, node.id, var_number):
            if first <= dof < end:
                values[node.x] = vector[dof]
    return values


@pytest.fixture
def serial_comm():
    return SerialCommunicator()


@pytest.fixture
def mesh4():
    """Four uniform elements on [0, 1], one partition."""
    return IntervalMesh.uniform(4)


@pytest.fixture
def mesh4_two_ranks():
    """Four uniform elements on [0, 1], split over two partitions."""
    return IntervalMesh.uniform(4, n_partitions=2)


@pytest.fixture
def mixed_system(mesh4):
    """An initialized system with one continuous and one discontinuous variable."""
    return make_system(
        mesh4,
        variables=(("T", "LAGRANGE", 2), ("q", "MONOMIAL", 1)),
        vectors=(("old_solution", True), ("residual", False)),
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
