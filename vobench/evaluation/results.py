"""
Result Files
============

Plain-text result files written under a caller-supplied prefix:

    <prefix>_poses.txt       12 values per line: row-major 3x4 [R|t] (KITTI layout)
    <prefix>_path.txt        'x y z' camera position per line
    <prefix>_iterations.txt  optimizer iterations at the reference level per line
    <prefix>_time.txt        per-frame processing time in milliseconds per line

An empty prefix is a dry run. A file that cannot be opened is skipped
without raising; the other files are still written.
"""

import logging
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

POSES_SUFFIX = "_poses.txt"
PATH_SUFFIX = "_path.txt"
ITERATIONS_SUFFIX = "_iterations.txt"
TIME_SUFFIX = "_time.txt"


def format_pose_line(T: np.ndarray) -> str:
    return " ".join(f"{v:.9e}" for v in np.asarray(T)[:3, :4].reshape(-1))


def format_path_line(T: np.ndarray) -> str:
    t = np.asarray(T)[:3, 3]
    return f"{t[0]:.9e} {t[1]:.9e} {t[2]:.9e}"


def write_lines(path: Union[str, Path], lines: Sequence[str]) -> bool:
    """
    Write `lines` to `path`, one per line.

    The content is rendered before the file is opened, so nothing is written
    when rendering fails. Returns False (and logs at DEBUG) if the file
    cannot be opened or written. A file that fails mid-write is removed.
    """
    content = "".join(f"{line}\n" for line in lines)
    try:
        f = open(path, "w", encoding="utf-8")
    except OSError as e:
        logger.debug(f"Skipping {path}: {e}")
        return False

    try:
        with f:
            f.write(content)
    except OSError as e:
        logger.debug(f"Failed writing {path}: {e}")
        Path(path).unlink(missing_ok=True)
        return False
    return True


class ResultWriter:
    """
    Writes a finished run to the four result files.

    Args:
        prefix: Output path prefix, e.g. 'results/run1'. Empty = dry run.

    Example:
        writer = ResultWriter("run1")
        written = writer.write(trajectory, stats.iterations, stats.time_ms)
    """

    def __init__(self, prefix: Union[str, Path, None] = ""):
        self.prefix = str(prefix) if prefix else ""

    @property
    def enabled(self) -> bool:
        return bool(self.prefix)

    def path_for(self, suffix: str) -> Path:
        return Path(self.prefix + suffix)

    @property
    def paths(self) -> List[Path]:
        return [self.path_for(s) for s in (POSES_SUFFIX, PATH_SUFFIX, ITERATIONS_SUFFIX, TIME_SUFFIX)]

    def write(
        self,
        trajectory,
        iterations: Sequence[int],
        time_ms: Sequence[float],
    ) -> List[Path]:
        """
        Write all result files.

        Args:
            trajectory: A `Trajectory` (anything with write_poses/write_camera_path)
            iterations: Iteration count per processed frame
            time_ms: Processing time per processed frame in milliseconds

        Returns:
            Paths of the files that were written
        """
        if not self.enabled:
            logger.info("No output prefix given, results not written")
            return []

        logger.info(f"Writing results to prefix {self.prefix}")
        written = []

        path = self.path_for(PATH_SUFFIX)
        if trajectory.write_camera_path(path):
            written.append(path)

        path = self.path_for(POSES_SUFFIX)
        if trajectory.write_poses(path):
            written.append(path)

        path = self.path_for(ITERATIONS_SUFFIX)
        if write_lines(path, [str(int(n)) for n in iterations]):
            written.append(path)

        path = self.path_for(TIME_SUFFIX)
        if write_lines(path, [f"{float(t):.6f}" for t in time_ms]):
            written.append(path)

        logger.info(f"Wrote {len(written)} of 4 result files")
        return written


def _read_rows(path: Union[str, Path]) -> List[List[float]]:
    rows = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            rows.append([float(v) for v in line.split()])
    return rows


def load_poses(path: Union[str, Path]) -> np.ndarray:
    """
    Read a pose file (12 values per line, or 16 for full 4x4 rows).

    Returns:
        (N, 4, 4) array of camera-to-world poses
    """
    rows = _read_rows(path)
    poses = np.tile(np.eye(4), (len(rows), 1, 1))
    for i, row in enumerate(rows):
        if len(row) == 12:
            poses[i, :3, :4] = np.reshape(row, (3, 4))
        elif len(row) == 16:
            poses[i] = np.reshape(row, (4, 4))
        else:
            raise ValueError(f"{path}:{i + 1}: expected 12 or 16 values, got {len(row)}")
    return poses


def load_camera_path(path: Union[str, Path]) -> np.ndarray:
    """Read a camera path file into an (N, 3) array."""
    rows = _read_rows(path)
    return np.array(rows, dtype=np.float64).reshape(-1, 3)


def load_iterations(path: Union[str, Path]) -> np.ndarray:
    return np.array([int(row[0]) for row in _read_rows(path)], dtype=np.int64)


def load_times(path: Union[str, Path]) -> np.ndarray:
    return np.array([row[0] for row in _read_rows(path)], dtype=np.float64)
