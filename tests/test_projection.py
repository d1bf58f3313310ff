# tests/test_projection.py
"""
Tests for carrying vectors across mesh changes: the send-list, the ghost exchange
and the local projection, in serial and on in-process rank groups.
"""
import numpy as np
import pytest

from simstate_core import IntervalMesh, SerialCommunicator, run_on_ranks
from simstate_core.discretization import DofMap
from simstate_core.projection import (
    GhostBuffer, ProjectionEngine, ProjectionError, FunctionEvaluationError,
    build_send_list, remote_entries,
)
from simstate_core.variables import FEFamily, FEType, Variable

from conftest import constant_field, linear_field, make_system, node_values


def quadratic_field(x, parameters, system_name, variable_name):
    return x * x


def brute_force_send_list(old_mesh, old_map, new_mesh, rank, n_vars):
    """Every old DOF of every old element overlapping a local new element with positive length."""
    found = set()
    for new_elem in new_mesh.active_local_elements(rank):
        for old_elem in old_mesh.elements():
            if min(new_elem.x1, old_elem.x1) - max(new_elem.x0, old_elem.x0) > 0:
                for var in range(n_vars):
                    found.update(old_map.dof_indices(old_elem, var))
    return sorted(found)


MIXED = [
    Variable("T", 0, FEType(FEFamily.LAGRANGE, 2)),
    Variable("q", 1, FEType(FEFamily.MONOMIAL, 1)),
]


class TestSendList:

    @pytest.mark.parametrize("change", ["refine", "coarsen", "p_change"])
    def test_matches_brute_force_overlap(self, change):
        base = IntervalMesh.uniform(6, n_partitions=2)
        if change == "refine":
            old, new = base, base.refine([1, 2, 3])
        elif change == "coarsen":
            old = base.refine([0, 4])
            new = old.coarsen([0, 4])
        else:
            old, new = base, base.with_p_levels({2: 1, 5: 2})

        for rank in range(2):
            old_map = DofMap(old, MIXED, rank=rank)
            new_map = DofMap(new, MIXED, rank=rank)
            expected = brute_force_send_list(old, old_map, new, rank, len(MIXED))
            assert build_send_list(old_map, new_map, n_threads=3).tolist() == expected

    def test_is_sorted_unique_and_thread_independent(self):
        old = IntervalMesh.uniform(9, n_partitions=3)
        new = old.refine_uniformly(1)
        old_map, new_map = DofMap(old, MIXED, rank=1), DofMap(new, MIXED, rank=1)
        serial = build_send_list(old_map, new_map, n_threads=1)
        threaded = build_send_list(old_map, new_map, n_threads=4)
        np.testing.assert_array_equal(serial, threaded)
        assert np.all(np.diff(serial) > 0)

    def test_remote_entries(self):
        old = IntervalMesh.uniform(4, n_partitions=2)
        variables = [Variable("u", 0, FEType(FEFamily.LAGRANGE, 1))]
        old_map = DofMap(old, variables, rank=1)
        new_map = DofMap(old.refine([2]), variables, rank=1)
        send_list = build_send_list(old_map, new_map)
        # Rank 1 owns old DOFs 3 and 4; node 2 (DOF 2) belongs to rank 0.
        assert send_list.tolist() == [2, 3, 4]
        assert remote_entries(send_list, old_map).tolist() == [2]


class TestGhostBuffer:

    def test_take(self):
        buffer = GhostBuffer(np.array([1, 4, 7]), np.array([10.0, 40.0, 70.0]))
        np.testing.assert_array_equal(buffer.take([7, 1]), [70.0, 10.0])

    def test_take_missing_entry(self):
        buffer = GhostBuffer(np.array([1, 4]), np.array([10.0, 40.0]))
        with pytest.raises(KeyError):
            buffer.take([2])


class TestSerialProjection:

    def test_constant_survives_refine_p_change_and_coarsen(self, mesh4):
        """Lagrange coefficients are nodal values; a monomial constant lives in the first coefficient only."""
        system = make_system(mesh4, variables=(("T", "LAGRANGE", 2), ("q", "MONOMIAL", 0)))
        system.project_solution(constant_field)
        refined = mesh4.refine([0, 2])
        for mesh in (refined, refined.with_p_levels({1: 1, 5: 2}), refined.coarsen([0, 2])):
            system.reinit(mesh)
            values = system.solution.local_values
            np.testing.assert_allclose(values[system.local_dof_indices("T")], 3.0, rtol=1e-12)
            for elem in mesh.elements():
                coeffs = values[system.dof_map.dof_indices(elem, 1)]
                assert coeffs[0] == pytest.approx(3.0)
                np.testing.assert_allclose(coeffs[1:], 0.0, atol=1e-12)
            np.testing.assert_array_equal(system.current_local_solution.local_values, values)

    def test_linear_field_is_exact_after_refinement(self, mesh4):
        system = make_system(mesh4)
        system.project_solution(linear_field)
        system.reinit(mesh4.refine([1, 3]).refine_uniformly(1))
        values = node_values(system, system.solution)
        assert len(values) == system.mesh.n_nodes
        for x, value in values.items():
            assert value == pytest.approx(2.0 * x + 1.0, abs=1e-12)

    def test_quadratic_field_is_exact_in_quadratic_space(self, mesh4):
        system = make_system(mesh4, variables=(("T", "LAGRANGE", 2),))
        system.project_solution(quadratic_field)
        refined = mesh4.refine([0, 1])
        system.reinit(refined)
        system.reinit(refined.coarsen([0, 1]))
        for x, value in node_values(system, system.solution).items():
            assert value == pytest.approx(x * x, abs=1e-12)

    def test_unchanged_elements_keep_their_coefficients(self, mesh4, rng):
        system = make_system(mesh4, variables=(("T", "LAGRANGE", 2), ("q", "MONOMIAL", 1)))
        system.solution.local_values[:] = rng.normal(size=system.n_dofs)
        old_map, old_values = system.dof_map, system.solution.local_values.copy()

        system.reinit(mesh4.refine([0]))
        for elem_id in (1, 2, 3):
            for var in (0, 1):
                old_dofs = old_map.dof_indices(old_map.mesh.element(elem_id), var)
                new_dofs = system.dof_map.dof_indices(system.mesh.element(elem_id), var)
                np.testing.assert_array_equal(system.solution.local_values[new_dofs], old_values[old_dofs])

    def test_unprojected_vectors_are_zeroed(self, mesh4):
        system = make_system(mesh4, vectors=(("old_solution", True), ("residual", False)))
        for name in ("old_solution", "residual"):
            system.project_vector(system.get_vector(name), linear_field)
        system.reinit(mesh4.refine([0]))

        residual = system.get_vector("residual")
        assert residual.local_size == system.n_dofs == 6
        assert not residual.local_values.any()
        for x, value in node_values(system, system.get_vector("old_solution")).items():
            assert value == pytest.approx(2.0 * x + 1.0)

    def test_solution_projection_can_be_disabled(self, mesh4):
        system = make_system(mesh4)
        system.project_solution(linear_field)
        system.project_solution_on_reinit = False
        system.reinit(mesh4.refine([0]))
        assert not system.solution.local_values.any()
        assert not system.current_local_solution.local_values.any()

    def test_thread_count_does_not_change_the_result(self, mesh4, rng):
        # 5 vertex + 4 interior DOFs for T, 8 for q.
        values = rng.normal(size=17)
        new_mesh = mesh4.refine([1, 2]).with_p_levels({0: 1})
        results = []
        for n_threads in (1, 3):
            system = make_system(mesh4, variables=(("T", "LAGRANGE", 2), ("q", "MONOMIAL", 1)), init=False)
            system.n_threads = n_threads
            system.init(mesh4)
            system.solution.local_values[:] = values
            system.reinit(new_mesh)
            results.append(system.solution.local_values.copy())
        np.testing.assert_array_equal(results[0], results[1])

    def test_mismatched_variables(self, mesh4):
        old_map = DofMap(mesh4, [Variable("u", 0, FEType(FEFamily.LAGRANGE, 1))])
        new_map = DofMap(mesh4, [Variable("u", 0, FEType(FEFamily.LAGRANGE, 2))])
        with pytest.raises(ProjectionError) as excinfo:
            ProjectionEngine(old_map, new_map, SerialCommunicator(), system_name="Sys")
        assert "Projection Failed" in excinfo.value.get_diagnostic_report()


class TestFunctionProjection:

    def test_restricted_to_selected_variables(self, mesh4):
        system = make_system(mesh4, variables=(("u", "LAGRANGE", 1), ("v", "LAGRANGE", 1)))
        system.project_solution(constant_field, variables=["v"])
        assert not system.solution.local_values[system.local_dof_indices("u")].any()
        np.testing.assert_allclose(system.solution.local_values[system.local_dof_indices("v")], 3.0)

    def test_parameters_reach_the_function(self, mesh4):
        system = make_system(mesh4, variables=(("q", "MONOMIAL", 0),))
        system.project_solution(lambda x, p, s, v: p["amplitude"], parameters={"amplitude": 4.0})
        np.testing.assert_allclose(system.solution.local_values, 4.0)

    def test_gradient_gives_h1_projection(self, mesh4):
        """With the exact derivative, the cubic interior of a cubic field is recovered."""
        system = make_system(mesh4, variables=(("T", "LAGRANGE", 3),))
        system.project_solution(lambda x, p, s, v: x ** 3, lambda x, p, s, v: 3 * x ** 2)
        fe = system.fe
        for elem in system.mesh.elements():
            dofs = system.dof_map.dof_indices(elem, 0)
            xi = fe.nodal_points(system.variable_type("T"))
            np.testing.assert_allclose(system.solution.local_values[dofs], elem.map(xi) ** 3, atol=1e-12)

    def test_failing_function(self, mesh4):
        system = make_system(mesh4)

        def broken(x, p, s, v):
            raise ZeroDivisionError("division by zero")

        with pytest.raises(FunctionEvaluationError) as excinfo:
            system.project_solution(broken)
        assert excinfo.value.variable_name == "u"
        assert "ZeroDivisionError" in excinfo.value.details

    def test_non_finite_value(self, mesh4):
        system = make_system(mesh4)
        with pytest.raises(FunctionEvaluationError):
            system.project_solution(lambda x, p, s, v: float("nan"))


class TestParallelProjection:

    def test_linear_field_across_ranks(self):
        """
        Refining the last element moves element 2 from rank 1 to rank 0, so owned
        values must travel between ranks.
        """
        old = IntervalMesh.uniform(4, n_partitions=2)
        new = old.refine([3])
        assert old.element(2).processor_id == 1 and new.element(2).processor_id == 0

        def body(comm):
            system = make_system(old, comm=comm, vectors=(("old_solution", True),))
            system.project_solution(linear_field)
            system.project_vector(system.get_vector("old_solution"), linear_field)
            system.reinit(new)
            checks = []
            for elem in system.mesh.active_local_elements(comm.rank):
                left, right = system.dof_map.dof_indices(elem, 0)
                checks.append((elem.x0, system.current_solution(left)))
                checks.append((elem.x1, system.current_solution(right)))
            owned = node_values(system, system.get_vector("old_solution"))
            return checks, owned, system.update_global_solution()

        results = run_on_ranks(2, body)
        for checks, owned, full in results:
            for x, value in checks + list(owned.items()):
                assert value == pytest.approx(2.0 * x + 1.0)
            assert full.size == 6
        np.testing.assert_array_equal(results[0][2], results[1][2])

    def test_parallel_matches_serial(self):
        """The same field projected on one and on two ranks agrees at every vertex."""
        serial_mesh = IntervalMesh.uniform(6)
        new_serial = serial_mesh.refine([0, 5]).with_p_levels({2: 1})
        parallel_mesh = serial_mesh.repartition(2)
        new_parallel = parallel_mesh.refine([0, 5]).with_p_levels({2: 1})

        def field(x, p, s, v):
            return np.sin(3.0 * x)

        def run(comm, old, new):
            system = make_system(old, comm=comm, variables=(("T", "LAGRANGE", 2),))
            system.project_solution(field)
            system.reinit(new)
            return node_values(system, system.solution)

        serial = run(SerialCommunicator(), serial_mesh, new_serial)
        parallel = {}
        for part in run_on_ranks(2, run, parallel_mesh, new_parallel):
            parallel.update(part)
        assert parallel.keys() == serial.keys()
        for x in serial:
            assert parallel[x] == pytest.approx(serial[x], abs=1e-13)
