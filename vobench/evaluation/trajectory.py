"""
Trajectory Accumulator
======================

Append-only, ordered history of camera poses, one per processed frame.

Engines report the relative motion T_curr_prev for each frame;
`push_back()` integrates it into the camera-to-world pose

    T_w_curr = T_w_prev @ inv(T_curr_prev)

with the first entry being inv(T_first). Stored poses are read-only copies
and there is no API to remove or replace an entry.
"""

import logging
from pathlib import Path
from typing import Iterator, List, Union

import numpy as np

from ..pose.geometry import inv_T
from .results import format_path_line, format_pose_line, write_lines

logger = logging.getLogger(__name__)


class Trajectory:
    """
    Ordered camera-to-world poses.

    Example:
        trajectory = Trajectory()
        for result in results:
            trajectory.push_back(result.pose)
        trajectory.write_camera_path("run1_path.txt")
    """

    def __init__(self):
        self._poses: List[np.ndarray] = []

    def push_back(self, T_curr_prev: np.ndarray) -> np.ndarray:
        """
        Append the pose reached by applying one relative motion.

        Args:
            T_curr_prev: 4x4 motion from the previous camera frame to the current one

        Returns:
            The appended camera-to-world pose (read-only)
        """
        T_curr_prev = np.asarray(T_curr_prev, dtype=np.float64)
        if T_curr_prev.shape != (4, 4):
            raise ValueError(f"Pose must be 4x4, got shape {T_curr_prev.shape}")

        motion = inv_T(T_curr_prev)
        pose = motion if not self._poses else self._poses[-1] @ motion
        pose.setflags(write=False)
        self._poses.append(pose)
        return pose

    append = push_back

    def __len__(self) -> int:
        return len(self._poses)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return list(self._poses[index])
        return self._poses[index]

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self._poses)

    @property
    def size(self) -> int:
        return len(self._poses)

    def poses(self) -> np.ndarray:
        """All poses as an (N, 4, 4) array."""
        if not self._poses:
            return np.zeros((0, 4, 4))
        return np.stack(self._poses)

    def positions(self) -> np.ndarray:
        """Camera centres as an (N, 3) array."""
        return self.poses()[:, :3, 3]

    def write_poses(self, path: Union[str, Path]) -> bool:
        """Write one 3x4 row-major pose per line. Returns False if the file could not be written."""
        return write_lines(path, [format_pose_line(T) for T in self._poses])

    def write_camera_path(self, path: Union[str, Path]) -> bool:
        """Write one 'x y z' camera position per line. Returns False if the file could not be written."""
        return write_lines(path, [format_path_line(T) for T in self._poses])
