"""
Shared fixtures: an in-memory frame source, a scripted odometry engine and
synthetic textured stereo frames.
"""

import os
import sys
from typing import List, Optional, Sequence

import cv2
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from vobench.config import AlgorithmParameters
from vobench.pipeline.frames import FrameSource, StereoFrame
from vobench.pose.base import (
    BaseOdometryEngine,
    KeyFramingReason,
    OptimizerStatistics,
    PoseEstimationStatus,
    Result,
    StereoCalibration,
)

WIDTH, HEIGHT = 160, 120


# ---- helpers ----

def make_textured_image(width=WIDTH, height=HEIGHT, seed=0):
    """Smooth random texture: coarse noise upsampled with cubic interpolation."""
    rng = np.random.default_rng(seed)
    coarse = rng.uniform(0, 255, size=(height // 4, width // 4)).astype(np.float32)
    image = cv2.resize(coarse, (width, height), interpolation=cv2.INTER_CUBIC)
    return np.clip(image, 0, 255).astype(np.uint8)


def make_frame(idx, image=None, disparity_value=10.0):
    if image is None:
        image = make_textured_image(seed=idx)
    disparity = np.full(image.shape, disparity_value, dtype=np.float32)
    return StereoFrame(idx=idx, timestamp=float(idx), image=image, disparity=disparity)


def translation(x=0.0, y=0.0, z=0.0):
    T = np.eye(4)
    T[:3, 3] = [x, y, z]
    return T


class ListFrameSource(FrameSource):
    """Frame source over an in-memory list."""

    def __init__(self, frames: List[StereoFrame], calibration: Optional[StereoCalibration] = None):
        self.frames = frames
        self.requested: List[int] = []
        self._calibration = calibration or StereoCalibration(200.0, 200.0, 80.0, 60.0, 0.1)

    def get_frame(self, index):
        self.requested.append(index)
        if 0 <= index < len(self.frames):
            return self.frames[index]
        return None

    def __len__(self):
        return len(self.frames)

    @property
    def calibration(self):
        return self._calibration

    @property
    def image_size(self):
        return (WIDTH, HEIGHT)


class ScriptedEngine(BaseOdometryEngine):
    """
    Engine that replays a fixed script.

    Args:
        iterations: Iteration count reported at max_test_level, per frame
        poses: Relative motion per frame (identity if not given)
        raise_at: Frame number (0-based call count) at which to raise
        num_levels: Override the number of statistics levels returned
    """

    def __init__(
        self,
        params: AlgorithmParameters,
        iterations: Sequence[int] = (),
        poses: Sequence[np.ndarray] = (),
        raise_at: Optional[int] = None,
        num_levels: Optional[int] = None,
    ):
        super().__init__(StereoCalibration(200.0, 200.0, 80.0, 60.0, 0.1), (WIDTH, HEIGHT), params)
        self.iterations = list(iterations)
        self.poses = list(poses)
        self.raise_at = raise_at
        self.num_levels = num_levels

    def get_name(self):
        return "scripted"

    def process_frame(self, image, disparity):
        n = self._frame_count
        self._frame_count += 1
        if self.raise_at is not None and n == self.raise_at:
            raise RuntimeError(f"scripted failure at call {n}")

        levels = self.num_levels if self.num_levels is not None else self.params.num_pyramid_levels
        stats = [OptimizerStatistics() for _ in range(levels)]
        if self.params.max_test_level < levels:
            iters = self.iterations[n] if n < len(self.iterations) else 1
            stats[self.params.max_test_level] = OptimizerStatistics(
                num_iterations=iters,
                status=PoseEstimationStatus.CONVERGED_FUNCTION,
            )

        return Result(
            pose=self.poses[n] if n < len(self.poses) else np.eye(4),
            optimizer_statistics=stats,
            key_framing_reason=KeyFramingReason.FIRST_FRAME if n == 0 else KeyFramingReason.NO_KEYFRAMING,
            num_points=100 + n,
        )


# ---- fixtures ----

@pytest.fixture
def params():
    return AlgorithmParameters(num_pyramid_levels=3, max_test_level=1, max_iterations=50)


@pytest.fixture
def frames():
    return [make_frame(i) for i in range(10)]


@pytest.fixture
def source(frames):
    return ListFrameSource(frames)


@pytest.fixture
def calibration():
    return StereoCalibration(fx=200.0, fy=200.0, cx=80.0, cy=60.0, baseline=0.1)
