"""
Odometry Engine Interface
=========================

Types exchanged between the frame loop and an odometry engine:

- StereoCalibration: pinhole intrinsics plus stereo baseline
- OptimizerStatistics: per-pyramid-level convergence metadata
- KeyFramingReason: why a frame was (or was not) promoted to a keyframe
- Result: everything an engine returns for one frame
- BaseOdometryEngine: the stateful engine contract

The harness treats an engine as a black box: it calls `process_frame()` once
per frame, in order, and never resets it mid-run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

import numpy as np

from ..config import AlgorithmParameters


class KeyFramingReason(Enum):
    """Outcome of the keyframing decision for one frame."""
    FIRST_FRAME = "first_frame"
    LARGE_TRANSLATION = "large_translation"
    LARGE_ROTATION = "large_rotation"
    SMALL_FRACTION_OF_GOOD_POINTS = "small_fraction_of_good_points"
    NO_KEYFRAMING = "no_keyframing"

    @property
    def label(self) -> str:
        """Short human-readable label used in progress output."""
        return _KEYFRAMING_LABELS[self]

    def __str__(self) -> str:
        return self.label


_KEYFRAMING_LABELS = {
    KeyFramingReason.FIRST_FRAME: "FirstFrame",
    KeyFramingReason.LARGE_TRANSLATION: "LargeTranslation",
    KeyFramingReason.LARGE_ROTATION: "LargeRotation",
    KeyFramingReason.SMALL_FRACTION_OF_GOOD_POINTS: "SmallFracOfGoodPoints",
    KeyFramingReason.NO_KEYFRAMING: "NoKeyFraming",
}


class PoseEstimationStatus(Enum):
    """How the optimizer stopped at one pyramid level."""
    NOT_RUN = "not_run"
    CONVERGED_PARAMETER = "converged_parameter"
    CONVERGED_FUNCTION = "converged_function"
    CONVERGED_GRADIENT = "converged_gradient"
    MAX_ITERATIONS = "max_iterations"
    DEGENERATE = "degenerate"


@dataclass
class OptimizerStatistics:
    """Convergence metadata for a single pyramid level."""
    num_iterations: int = 0
    final_error: float = 0.0
    first_order_optimality: float = 0.0
    status: PoseEstimationStatus = PoseEstimationStatus.NOT_RUN


@dataclass
class Result:
    """
    Per-frame engine output.

    Attributes:
        pose: 4x4 rigid transform. For the bundled engines this is the
            relative motion T_curr_prev (maps points from the previous camera
            frame into the current one); identity for the first frame.
        optimizer_statistics: One entry per pyramid level, index = level
        key_framing_reason: Keyframing decision for this frame
        num_points: Points used by the optimizer at the reference level
    """
    pose: np.ndarray
    optimizer_statistics: List[OptimizerStatistics]
    key_framing_reason: KeyFramingReason
    num_points: int = 0

    def __post_init__(self):
        self.pose = np.asarray(self.pose, dtype=np.float64)
        if self.pose.shape != (4, 4):
            raise ValueError(f"Pose must be 4x4, got shape {self.pose.shape}")

    @property
    def is_keyframe(self) -> bool:
        return self.key_framing_reason != KeyFramingReason.NO_KEYFRAMING


@dataclass(frozen=True)
class StereoCalibration:
    """Rectified stereo calibration: left camera intrinsics and baseline (metres)."""
    fx: float
    fy: float
    cx: float
    cy: float
    baseline: float

    def __post_init__(self):
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}")
        if self.baseline <= 0:
            raise ValueError(f"Baseline must be positive, got {self.baseline}")

    @property
    def K(self) -> np.ndarray:
        return np.array([
            [self.fx, 0, self.cx],
            [0, self.fy, self.cy],
            [0, 0, 1]
        ], dtype=np.float64)

    def scaled(self, factor: float) -> "StereoCalibration":
        """Calibration for an image resized by `factor` (0.5 = one pyramid level down)."""
        return StereoCalibration(
            fx=self.fx * factor,
            fy=self.fy * factor,
            cx=self.cx * factor,
            cy=self.cy * factor,
            baseline=self.baseline,
        )

    @classmethod
    def from_dict(cls, values: Dict[str, float]) -> "StereoCalibration":
        """Build from a dictionary with fx, fy, cx, cy, baseline."""
        missing = [k for k in ('fx', 'fy', 'cx', 'cy', 'baseline') if k not in values]
        if missing:
            raise ValueError(f"Missing calibration parameter(s): {', '.join(missing)}")
        return cls(
            fx=float(values['fx']),
            fy=float(values['fy']),
            cx=float(values['cx']),
            cy=float(values['cy']),
            baseline=float(values['baseline']),
        )


class BaseOdometryEngine(ABC):
    """
    Abstract base class for stereo odometry engines.

    Engines are constructed once from the calibration, the image size
    (width, height) and the algorithm parameters, then fed frames in order.
    Each call may depend on every prior call.
    """

    def __init__(
        self,
        calibration: StereoCalibration,
        image_size: Tuple[int, int],
        params: AlgorithmParameters,
    ):
        self.calibration = calibration
        self.image_size = (int(image_size[0]), int(image_size[1]))
        self.params = params
        self._frame_count = 0

    @abstractmethod
    def process_frame(self, image: np.ndarray, disparity: np.ndarray) -> Result:
        """
        Process one stereo frame.

        Args:
            image: HxW uint8 intensity image (left camera)
            disparity: HxW float32 disparity map in pixels, 0 = invalid

        Returns:
            Result for this frame
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Get engine name."""
        pass

    def add_frame(self, image: np.ndarray, disparity: np.ndarray) -> Result:
        """Alias of `process_frame()`."""
        return self.process_frame(image, disparity)

    @property
    def frame_count(self) -> int:
        return self._frame_count

    def _check_frame(self, image: np.ndarray, disparity: np.ndarray) -> None:
        width, height = self.image_size
        if image.ndim != 2:
            raise ValueError(f"Image must be single channel HxW, got shape {image.shape}")
        if image.shape != (height, width):
            raise ValueError(
                f"Image shape {image.shape} doesn't match configured size {(height, width)}"
            )
        if disparity.shape != image.shape:
            raise ValueError(
                f"Disparity shape {disparity.shape} doesn't match image {image.shape}"
            )

    def _empty_statistics(self) -> List[OptimizerStatistics]:
        return [OptimizerStatistics() for _ in range(self.params.num_pyramid_levels)]
