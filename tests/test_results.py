"""Result files: dry run, file layout, skipped files and the readers."""

import logging

import numpy as np
import pytest

from vobench.evaluation import results as results_module
from vobench.evaluation.results import (
    ITERATIONS_SUFFIX,
    PATH_SUFFIX,
    POSES_SUFFIX,
    TIME_SUFFIX,
    ResultWriter,
    load_camera_path,
    load_iterations,
    load_poses,
    load_times,
)
from vobench.evaluation.trajectory import Trajectory

from conftest import translation


def make_run(n=10):
    traj = Trajectory()
    traj.push_back(np.eye(4))
    for _ in range(n - 1):
        traj.push_back(translation(x=-0.1, z=-1.0))
    iterations = [i % 7 + 1 for i in range(n)]
    time_ms = [5.0 + 0.25 * i for i in range(n)]
    return traj, iterations, time_ms


class TestResultWriter:

    def test_dry_run_writes_nothing(self, tmp_path, monkeypatch, caplog):
        caplog.set_level(logging.INFO)
        monkeypatch.chdir(tmp_path)
        writer = ResultWriter("")

        assert not writer.enabled
        assert writer.write(*make_run()) == []
        assert list(tmp_path.iterdir()) == []
        assert "results not written" in caplog.text

    def test_writes_four_files(self, tmp_path, caplog):
        caplog.set_level(logging.INFO)
        prefix = str(tmp_path / "run1")
        written = ResultWriter(prefix).write(*make_run(10))

        assert len(written) == 4
        assert f"Writing results to prefix {prefix}" in caplog.text
        for suffix in (POSES_SUFFIX, PATH_SUFFIX, ITERATIONS_SUFFIX, TIME_SUFFIX):
            lines = (tmp_path / f"run1{suffix}").read_text().splitlines()
            assert len(lines) == 10

    def test_file_contents(self, tmp_path):
        prefix = str(tmp_path / "run1")
        traj, iterations, time_ms = make_run(3)
        ResultWriter(prefix).write(traj, iterations, time_ms)

        assert (tmp_path / "run1_iterations.txt").read_text() == "1\n2\n3\n"
        assert (tmp_path / "run1_time.txt").read_text() == "5.000000\n5.250000\n5.500000\n"
        last = [float(v) for v in (tmp_path / "run1_path.txt").read_text().splitlines()[-1].split()]
        assert last == pytest.approx([0.2, 0.0, 2.0])

    def test_unwritable_file_is_skipped(self, tmp_path):
        # A directory where a result file should go cannot be opened for writing
        (tmp_path / "run1_poses.txt").mkdir()
        written = ResultWriter(str(tmp_path / "run1")).write(*make_run(4))

        assert len(written) == 3
        assert tmp_path / "run1_poses.txt" not in written
        assert len((tmp_path / "run1_time.txt").read_text().splitlines()) == 4

    def test_failed_write_removes_partial_file(self, tmp_path, monkeypatch):
        real_open = open

        class DiskFullFile:
            def __init__(self, f):
                self._f = f

            def write(self, data):
                self._f.write(data[: len(data) // 2])
                self._f.flush()
                raise OSError(28, "No space left on device")

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                self._f.close()
                return False

        def fake_open(path, *args, **kwargs):
            f = real_open(path, *args, **kwargs)
            if str(path).endswith(TIME_SUFFIX):
                return DiskFullFile(f)
            return f

        monkeypatch.setattr(results_module, "open", fake_open, raising=False)
        written = ResultWriter(str(tmp_path / "run1")).write(*make_run(6))

        assert len(written) == 3
        assert not (tmp_path / "run1_time.txt").exists()
        assert len((tmp_path / "run1_poses.txt").read_text().splitlines()) == 6

    def test_missing_directory_does_not_raise(self, tmp_path):
        written = ResultWriter(str(tmp_path / "missing" / "run1")).write(*make_run(4))
        assert written == []

    def test_output_is_deterministic(self, tmp_path):
        run = make_run(10)
        ResultWriter(str(tmp_path / "a")).write(*run)
        ResultWriter(str(tmp_path / "b")).write(*run)
        for suffix in (POSES_SUFFIX, PATH_SUFFIX, ITERATIONS_SUFFIX, TIME_SUFFIX):
            assert (tmp_path / f"a{suffix}").read_bytes() == (tmp_path / f"b{suffix}").read_bytes()

    def test_empty_run(self, tmp_path):
        written = ResultWriter(str(tmp_path / "empty")).write(Trajectory(), [], [])
        assert len(written) == 4
        assert (tmp_path / "empty_poses.txt").read_text() == ""


class TestReaders:

    def test_read_back(self, tmp_path):
        traj, iterations, time_ms = make_run(6)
        prefix = str(tmp_path / "run")
        ResultWriter(prefix).write(traj, iterations, time_ms)

        np.testing.assert_allclose(load_poses(prefix + POSES_SUFFIX), traj.poses(), atol=1e-9)
        np.testing.assert_allclose(load_camera_path(prefix + PATH_SUFFIX), traj.positions(), atol=1e-9)
        assert load_iterations(prefix + ITERATIONS_SUFFIX).tolist() == iterations
        np.testing.assert_allclose(load_times(prefix + TIME_SUFFIX), time_ms)

    def test_full_matrix_rows(self, tmp_path):
        path = tmp_path / "poses.txt"
        path.write_text("# comment\n" + " ".join(["1", "0", "0", "0"] * 4) + "\n")
        poses = load_poses(path)
        assert poses.shape == (1, 4, 4)

    def test_bad_row(self, tmp_path):
        path = tmp_path / "poses.txt"
        path.write_text("1 2 3\n")
        with pytest.raises(ValueError):
            load_poses(path)
