# tests/test_persistence.py
"""
Tests for writing and reading System state in the serialized, parallel and legacy
layouts, in serial and on in-process rank groups.
"""
import logging

import numpy as np
import pytest

from simstate_core import IntervalMesh, System, run_on_ranks
from simstate_core.constants import FILE_VERSION, LEGACY_FILE_VERSION
from simstate_core.persistence import (
    StreamFormat, StreamMode, XdrStream, SystemHeader, HeaderVariable,
    read_header, write_header, rank_file_name,
    StreamFormatError, RankFileError,
)
from simstate_core.validation import HeaderValidationError, HeaderValidator, ValidationIssueLevel
from simstate_core.variables import FEFamily, FEType

from conftest import make_system

VARIABLES = (("T", "LAGRANGE", 2), ("q", "MONOMIAL", 1))
VECTORS = (("old_solution", True), ("residual", False))

MESH6 = IntervalMesh.uniform(6)
MESH6_TWO_RANKS = MESH6.repartition(2)
MESH6_THREE_RANKS = MESH6.repartition(3)


def populated_system(mesh, comm=None, variables=VARIABLES, vectors=VECTORS):
    """A system whose solution and vectors hold distinct, partition-independent fields."""
    system = make_system(mesh, comm=comm, variables=variables, vectors=vectors)
    system.project_solution(lambda x, p, s, v: np.sin(3.0 * x) + (1.0 if v == "q" else 0.0))
    for i, (name, _) in enumerate(vectors):
        system.project_vector(system.get_vector(name), lambda x, p, s, v, k=i: x * x - k)
    return system


def fresh_system(mesh, comm=None, variables=VARIABLES, vectors=VECTORS):
    return make_system(mesh, comm=comm, variables=variables, vectors=vectors)


def assert_same_state(expected: System, actual: System):
    np.testing.assert_array_equal(actual.solution.local_values, expected.solution.local_values)
    np.testing.assert_array_equal(actual.current_local_solution.local_values, expected.solution.local_values)
    for name, vector in expected.iter_vectors():
        np.testing.assert_array_equal(actual.get_vector(name).local_values, vector.local_values)


class TestXdrStream:

    def test_binary_round_trip_and_padding(self, tmp_path):
        path = tmp_path / "stream.xdr"
        with XdrStream(path, StreamMode.WRITE) as stream:
            stream.write_string("abc")
        assert path.stat().st_size == 8

        with XdrStream(path, StreamMode.WRITE) as stream:
            stream.write_uint32(7)
            stream.write_uint64(2 ** 40)
            stream.write_bool(True)
            stream.write_string("T")
            stream.write_floats(np.array([0.1, 1.0 / 3.0]))
        with XdrStream(path, StreamMode.READ) as stream:
            assert stream.read_uint32() == 7
            assert stream.read_uint64() == 2 ** 40
            assert stream.read_bool() is True
            assert stream.read_string() == "T"
            np.testing.assert_array_equal(stream.read_floats(), [0.1, 1.0 / 3.0])
            assert stream.at_end()

    def test_ascii_floats_round_trip_exactly(self, tmp_path):
        path = tmp_path / "stream.txt"
        values = np.array([0.1, 1.0 / 3.0, -2.5e-300])
        with XdrStream(path, StreamMode.WRITE, StreamFormat.ASCII) as stream:
            stream.write_string("solution")
            stream.write_floats(values)
        assert path.read_text().splitlines()[:2] == ["solution", "3"]
        with XdrStream(path, StreamMode.READ, StreamFormat.ASCII) as stream:
            assert stream.read_string() == "solution"
            np.testing.assert_array_equal(stream.read_floats(expected=3), values)

    def test_truncated_file(self, tmp_path):
        path = tmp_path / "short.xdr"
        with XdrStream(path, StreamMode.WRITE) as stream:
            stream.write_uint32(1)
        with XdrStream(path, StreamMode.READ) as stream:
            with pytest.raises(StreamFormatError) as excinfo:
                stream.read_uint64()
        assert "unexpected end of file" in str(excinfo.value)

    def test_unexpected_count(self, tmp_path):
        path = tmp_path / "count.xdr"
        with XdrStream(path, StreamMode.WRITE) as stream:
            stream.write_floats(np.zeros(2))
        with XdrStream(path, StreamMode.READ) as stream:
            with pytest.raises(StreamFormatError):
                stream.read_floats(expected=3)

    def test_misuse(self, tmp_path):
        path = tmp_path / "misuse.xdr"
        with XdrStream(path, StreamMode.WRITE) as stream:
            with pytest.raises(ValueError):
                stream.write_string("two\nlines")
            with pytest.raises(ValueError):
                stream.read_uint32()

    def test_format_from_string(self):
        assert StreamFormat.from_string("ASCII") is StreamFormat.ASCII
        with pytest.raises(ValueError):
            StreamFormat.from_string("hdf5")


class TestHeader:

    def _header(self, version=FILE_VERSION):
        return SystemHeader(
            version=version,
            variables=[HeaderVariable("T", FEType(FEFamily.LAGRANGE, 2))],
            n_dofs=13,
            has_additional_data=True,
            vector_names=["old_solution"],
        )

    def test_round_trip(self, tmp_path):
        path = tmp_path / "header.xdr"
        with XdrStream(path, StreamMode.WRITE) as stream:
            write_header(stream, self._header())
        with XdrStream(path, StreamMode.READ) as stream:
            assert read_header(stream) == self._header()

    def test_legacy_header_needs_flag(self, tmp_path):
        path = tmp_path / "legacy.xdr"
        with XdrStream(path, StreamMode.WRITE) as stream:
            write_header(stream, self._header(LEGACY_FILE_VERSION))
        with XdrStream(path, StreamMode.READ) as stream:
            with pytest.raises(StreamFormatError):
                read_header(stream)
        with XdrStream(path, StreamMode.READ) as stream:
            header = read_header(stream, read_legacy_format=True)
        assert header.is_legacy
        # Legacy files name their vectors inline with the data.
        assert header.vector_names == []

    def test_version_checks(self):
        system = make_system(MESH6, variables=(("T", "LAGRANGE", 2),), vectors=(("old_solution", True),), init=False)
        validator = HeaderValidator(system.name, system.variables, system.vectors)

        issues = validator.validate(self._header("otherlib-2.0"))
        assert [(i.code, i.level) for i in issues] == [("HDR_VERSION_UNKNOWN", ValidationIssueLevel.ERROR)]

        issues = validator.validate(self._header("simstate-2.0"))
        assert [(i.code, i.level) for i in issues] == [("HDR_VERSION_DIFFERS", ValidationIssueLevel.WARNING)]

        assert validator.validate(self._header()) == []


class TestSerializedLayout:

    @pytest.mark.parametrize("stream_format", ["binary", "ascii"])
    def test_round_trip_is_bit_exact(self, tmp_path, stream_format):
        path = tmp_path / "state.dat"
        writer = populated_system(MESH6)
        writer.write(path, stream_format=stream_format)

        reader = fresh_system(MESH6)
        reader.read(path, stream_format=stream_format)
        assert_same_state(writer, reader)
        assert reader.compare(writer, threshold=0.0)

    def test_file_does_not_depend_on_block_size(self, tmp_path):
        writer = populated_system(MESH6)
        writer.write(tmp_path / "default.dat")
        writer.io_block_size = 1
        writer.write(tmp_path / "tiny_blocks.dat")
        assert (tmp_path / "default.dat").read_bytes() == (tmp_path / "tiny_blocks.dat").read_bytes()

    def test_file_does_not_depend_on_processor_count(self, tmp_path):
        populated_system(MESH6).write(tmp_path / "one.dat")

        def write_on_ranks(comm, mesh, path):
            system = populated_system(mesh, comm)
            system.io_block_size = 2
            system.write(path)

        run_on_ranks(2, write_on_ranks, MESH6_TWO_RANKS, tmp_path / "two.dat")
        run_on_ranks(3, write_on_ranks, MESH6_THREE_RANKS, tmp_path / "three.dat")
        one = (tmp_path / "one.dat").read_bytes()
        assert (tmp_path / "two.dat").read_bytes() == one
        assert (tmp_path / "three.dat").read_bytes() == one

    def test_written_on_one_rank_read_on_three(self, tmp_path):
        path = tmp_path / "state.dat"
        populated_system(MESH6).write(path)

        def body(comm):
            reader = fresh_system(MESH6_THREE_RANKS, comm)
            reader.io_block_size = 3
            reader.read(path)
            assert_same_state(populated_system(MESH6_THREE_RANKS, comm), reader)
            return reader.n_local_dofs

        assert sum(run_on_ranks(3, body)) == populated_system(MESH6).n_dofs

    def test_solution_only(self, tmp_path):
        path = tmp_path / "solution_only.dat"
        writer = populated_system(MESH6)
        writer.write(path, write_additional_data=False)

        reader = fresh_system(MESH6)
        reader.get_vector("old_solution").local_values[:] = 5.0
        reader.read(path)
        np.testing.assert_array_equal(reader.solution.local_values, writer.solution.local_values)
        np.testing.assert_array_equal(reader.get_vector("old_solution").local_values, 5.0)

    def test_additional_data_can_be_ignored_on_read(self, tmp_path):
        path = tmp_path / "state.dat"
        writer = populated_system(MESH6)
        writer.write(path)
        reader = fresh_system(MESH6)
        reader.read(path, read_additional_data=False)
        np.testing.assert_array_equal(reader.solution.local_values, writer.solution.local_values)
        assert not reader.get_vector("old_solution").local_values.any()

    def test_file_vector_unknown_to_reader_is_skipped(self, tmp_path, caplog):
        path = tmp_path / "state.dat"
        writer = populated_system(MESH6, vectors=VECTORS + (("extra", True),))
        writer.write(path)

        reader = fresh_system(MESH6)
        with caplog.at_level(logging.WARNING):
            reader.read(path)
        assert "Skipping file vector 'extra'" in caplog.text
        np.testing.assert_array_equal(reader.get_vector("residual").local_values, writer.get_vector("residual").local_values)

    def test_reader_vector_missing_from_file_keeps_its_values(self, tmp_path):
        path = tmp_path / "state.dat"
        populated_system(MESH6).write(path)
        reader = fresh_system(MESH6, vectors=VECTORS + (("only_here", False),))
        reader.get_vector("only_here").local_values[:] = 7.0

        issues = reader.read_header(path)
        assert [(i.code, i.level) for i in issues] == [("HDR_VEC_NOT_IN_FILE", ValidationIssueLevel.INFO)]
        reader.read(path)
        np.testing.assert_array_equal(reader.get_vector("only_here").local_values, 7.0)

    def test_dof_count_mismatch(self, tmp_path):
        path = tmp_path / "state.dat"
        populated_system(MESH6).write(path)
        reader = fresh_system(MESH6.refine([0]))
        assert [i.code for i in reader.read_header(path)] == ["HDR_DOFS_MISMATCH"]
        with pytest.raises(StreamFormatError):
            reader.read(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            fresh_system(MESH6).read(tmp_path / "nope.dat")

    def test_missing_file_fails_on_every_rank(self, tmp_path):
        """Only rank 0 touches the file; the others learn of its failure collectively."""
        def body(comm):
            try:
                fresh_system(MESH6_TWO_RANKS, comm).read(tmp_path / "nope.dat")
            except Exception as e:
                return type(e).__name__
            return None

        assert run_on_ranks(2, body) == ["FileNotFoundError", "CollectiveIOError"]


class TestHeaderValidationOnRead:

    @pytest.fixture
    def written(self, tmp_path):
        path = tmp_path / "state.dat"
        populated_system(MESH6).write(path)
        return path

    def test_variable_type_mismatch(self, written):
        reader = fresh_system(MESH6, variables=(("T", "LAGRANGE", 1), ("q", "MONOMIAL", 1)))
        with pytest.raises(HeaderValidationError) as excinfo:
            reader.read(written)
        assert [i.code for i in excinfo.value.issues] == ["HDR_VAR_TYPE"]
        assert "System File Header Mismatch" in excinfo.value.get_diagnostic_report()

    def test_variable_count_mismatch(self, written):
        reader = fresh_system(MESH6, variables=(("T", "LAGRANGE", 2),))
        with pytest.raises(HeaderValidationError) as excinfo:
            reader.read(written)
        assert [i.code for i in excinfo.value.issues] == ["HDR_VAR_COUNT"]

    def test_variable_name_mismatch(self, written):
        reader = fresh_system(MESH6, variables=(("T", "LAGRANGE", 2), ("flux", "MONOMIAL", 1)))
        with pytest.raises(HeaderValidationError) as excinfo:
            reader.read(written)
        assert [i.code for i in excinfo.value.issues] == ["HDR_VAR_NAME"]

    def test_read_header_reports_without_raising(self, written):
        reader = fresh_system(MESH6, variables=(("T", "LAGRANGE", 1), ("q", "MONOMIAL", 1)))
        codes = {i.code for i in reader.read_header(written)}
        assert codes == {"HDR_VAR_TYPE", "HDR_DOFS_MISMATCH"}

    def test_read_header_declares_variables_on_an_empty_system(self, written):
        fresh = System("Fresh")
        assert fresh.read_header(written) == []
        assert fresh.variables.names() == ["T", "q"]
        assert fresh.variable_type("q") == FEType(FEFamily.MONOMIAL, 1)
        assert fresh.vectors.names() == ["old_solution", "residual"]

        fresh.init(MESH6)
        fresh.read(written)
        assert_same_state(populated_system(MESH6), fresh)

    def test_sealed_system_reports_unregistered_vectors(self, written):
        reader = fresh_system(MESH6, vectors=(("old_solution", True),))
        issues = reader.read_header(written)
        assert [(i.code, i.level) for i in issues] == [("HDR_VEC_UNREGISTERED", ValidationIssueLevel.WARNING)]


class TestParallelLayout:

    def test_round_trip_on_two_ranks(self, tmp_path):
        path = tmp_path / "state.dat"

        def body(comm):
            writer = populated_system(MESH6_TWO_RANKS, comm)
            writer.write(path, layout="parallel")
            reader = fresh_system(MESH6_TWO_RANKS, comm)
            reader.read(path, layout="parallel")
            assert_same_state(writer, reader)
            return True

        assert run_on_ranks(2, body) == [True, True]
        assert path.exists()
        for rank in range(2):
            assert (tmp_path / rank_file_name("state.dat", rank)).exists()

    def test_parallel_data_equals_serialized_data(self, tmp_path):
        """Re-serializing what was read from per-rank files reproduces the serial file."""
        populated_system(MESH6).write(tmp_path / "reference.dat")

        def body(comm):
            populated_system(MESH6_TWO_RANKS, comm).write(tmp_path / "ranks.dat", layout="parallel")
            reader = fresh_system(MESH6_TWO_RANKS, comm)
            reader.read(tmp_path / "ranks.dat", layout="parallel")
            reader.write(tmp_path / "reserialized.dat", layout="serialized")

        run_on_ranks(2, body)
        assert (tmp_path / "reserialized.dat").read_bytes() == (tmp_path / "reference.dat").read_bytes()

    def test_ascii_round_trip(self, tmp_path):
        path = tmp_path / "state.txt"
        writer = populated_system(MESH6)
        writer.write(path, layout="parallel", stream_format="ascii")
        reader = fresh_system(MESH6)
        reader.read(path, layout="parallel", stream_format="ascii")
        assert_same_state(writer, reader)

    def test_different_rank_count_is_rejected(self, tmp_path):
        path = tmp_path / "state.dat"
        run_on_ranks(2, lambda comm: populated_system(MESH6_TWO_RANKS, comm).write(path, layout="parallel"))
        with pytest.raises(RankFileError) as excinfo:
            fresh_system(MESH6).read(path, layout="parallel")
        assert "written by 2 rank(s)" in str(excinfo.value)


class TestLegacyLayout:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "legacy.dat"
        writer = populated_system(MESH6)
        writer.write(path, layout="legacy")
        reader = fresh_system(MESH6)
        reader.read(path, layout="legacy")
        assert_same_state(writer, reader)

    def test_round_trip_on_two_ranks(self, tmp_path):
        path = tmp_path / "legacy.dat"

        def body(comm):
            writer = populated_system(MESH6_TWO_RANKS, comm)
            writer.write(path, layout="legacy", stream_format="ascii")
            reader = fresh_system(MESH6_TWO_RANKS, comm)
            reader.read(path, layout="legacy", stream_format="ascii")
            assert_same_state(writer, reader)
            return True

        assert run_on_ranks(2, body) == [True, True]

    def test_header_only_read_needs_legacy_flag(self, tmp_path):
        path = tmp_path / "legacy.dat"
        populated_system(MESH6).write(path, layout="legacy")
        reader = fresh_system(MESH6)
        with pytest.raises(StreamFormatError):
            reader.read_header(path, layout="legacy")
        issues = reader.read_header(path, layout="legacy", read_legacy_format=True)
        assert not any(issue.is_error for issue in issues)

    def test_current_layout_does_not_read_legacy_files(self, tmp_path):
        path = tmp_path / "legacy.dat"
        populated_system(MESH6).write(path, layout="legacy")
        with pytest.raises(StreamFormatError):
            fresh_system(MESH6).read(path)
