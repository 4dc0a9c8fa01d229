"""
Stereo Frames and Sources
=========================

This module provides:
- StereoFrame: one stereo observation (left intensity image + disparity map)
- FrameSource: Abstract base class with index-based frame access
- KittiStereoSource: KITTI odometry benchmark layout
- TsukubaStereoSource: New Tsukuba stereo dataset layout
- StereoFolderSource: two folders of rectified left/right images
- create_frame_source(): builds a source from a DatasetConfig

Sources are lazy: nothing is decoded until `get_frame()` asks for it, and a
frame is returned as a fresh immutable object every time.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Iterator, List, Tuple

import cv2
import numpy as np

from ..config import DatasetConfig
from ..pose.base import StereoCalibration
from ..evaluation.results import load_poses
from .disparity import StereoDisparityEstimator

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.pgm', '.ppm', '.bmp', '.tif', '.tiff')


@dataclass
class StereoFrame:
    """
    A single stereo observation.

    Attributes:
        idx: Frame index within the source (0-based, in request order)
        timestamp: Timestamp in seconds (frame index when the dataset has none)
        image: Left intensity image, HxW uint8
        disparity: Left disparity map, HxW float32 pixels (0 = invalid)
        metadata: Optional dictionary for additional frame-specific data

    Both arrays are copied and made read-only on construction.
    """
    idx: int
    timestamp: float
    image: np.ndarray
    disparity: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate frame data after initialization."""
        if self.image.ndim != 2:
            raise ValueError(f"Image must be single channel HxW, got shape {self.image.shape}")
        if self.disparity.ndim != 2:
            raise ValueError(f"Disparity must be HxW, got shape {self.disparity.shape}")
        if self.disparity.shape != self.image.shape:
            raise ValueError(
                f"Disparity shape {self.disparity.shape} doesn't match image {self.image.shape}"
            )

        self.image = np.array(self.image, dtype=np.uint8, copy=True)
        self.disparity = np.array(self.disparity, dtype=np.float32, copy=True)
        self.image.setflags(write=False)
        self.disparity.setflags(write=False)

    @property
    def image_size(self) -> Tuple[int, int]:
        """Return (width, height) of the frame."""
        return (self.image.shape[1], self.image.shape[0])


class FrameSource(ABC):
    """
    Abstract base class for stereo frame sources.

    `get_frame(index)` returns the frame at `index` or None once the source
    is exhausted. It must be deterministic for a fixed configuration.

    Example usage:
        source = KittiStereoSource("/data/kitti/dataset", sequence="00")
        i = 0
        while (frame := source.get_frame(i)) is not None:
            result = engine.process_frame(frame.image, frame.disparity)
            i += 1
    """

    @abstractmethod
    def get_frame(self, index: int) -> Optional[StereoFrame]:
        """
        Get one frame.

        Args:
            index: 0-based frame index

        Returns:
            StereoFrame, or None when there is no frame at `index`
        """
        pass

    @abstractmethod
    def __len__(self) -> int:
        """Return the number of frames in the source."""
        pass

    @property
    @abstractmethod
    def calibration(self) -> StereoCalibration:
        """Rectified stereo calibration of the left camera."""
        pass

    @property
    @abstractmethod
    def image_size(self) -> Tuple[int, int]:
        """(width, height) of every frame."""
        pass

    def __iter__(self) -> Iterator[StereoFrame]:
        index = 0
        while True:
            frame = self.get_frame(index)
            if frame is None:
                return
            yield frame
            index += 1

    def load_ground_truth(self) -> Optional[np.ndarray]:
        """Ground-truth camera-to-world poses (N, 4, 4) for the selected frames, if known."""
        return None


def _list_images(directory: Path) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)


def _read_gray(path: Path) -> np.ndarray:
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise FileNotFoundError(f"Failed to read image: {path}")
    return image


class StereoPairSource(FrameSource):
    """
    Shared logic for sources backed by lists of left/right image files.

    Subclasses fill `_left_paths`, `_right_paths`, `_timestamps` and
    `_calibration` in their constructor, then call `_finalize()`.
    Disparity is computed with SGBM unless `_load_disparity()` returns a map.

    Args:
        start: First raw frame to use
        stride: Use every `stride`-th raw frame
        disparity_estimator: Matcher used to compute disparity on the fly
    """

    def __init__(
        self,
        start: int = 0,
        stride: int = 1,
        disparity_estimator: Optional[StereoDisparityEstimator] = None,
    ):
        self._start = start
        self._stride = stride
        self._disparity_estimator = disparity_estimator or StereoDisparityEstimator()
        self._left_paths: List[Path] = []
        self._right_paths: List[Path] = []
        self._timestamps: List[float] = []
        self._calibration: Optional[StereoCalibration] = None
        self._image_size: Optional[Tuple[int, int]] = None

    def _finalize(self) -> None:
        if not self._left_paths:
            raise FileNotFoundError(f"{type(self).__name__}: no images found")
        if len(self._left_paths) != len(self._right_paths):
            raise ValueError(
                f"Left/right image counts differ: {len(self._left_paths)} vs {len(self._right_paths)}"
            )
        if not self._timestamps:
            self._timestamps = [float(i) for i in range(len(self._left_paths))]
        elif len(self._timestamps) != len(self._left_paths):
            raise ValueError(
                f"Found {len(self._timestamps)} timestamps for {len(self._left_paths)} images"
            )
        if self._image_size is None:
            first = _read_gray(self._left_paths[0])
            self._image_size = (first.shape[1], first.shape[0])
        logger.info(f"{type(self).__name__}: {len(self)} frames selected of {len(self._left_paths)}")

    def _raw_index(self, index: int) -> Optional[int]:
        if index < 0:
            return None
        raw = self._start + index * self._stride
        if raw >= len(self._left_paths):
            return None
        return raw

    def _load_disparity(self, raw_index: int) -> Optional[np.ndarray]:
        return None

    def get_frame(self, index: int) -> Optional[StereoFrame]:
        raw = self._raw_index(index)
        if raw is None:
            return None

        left = _read_gray(self._left_paths[raw])
        disparity = self._load_disparity(raw)
        if disparity is None:
            right = _read_gray(self._right_paths[raw])
            disparity = self._disparity_estimator.compute(left, right)

        return StereoFrame(
            idx=index,
            timestamp=self._timestamps[raw],
            image=left,
            disparity=disparity,
            metadata={'raw_index': raw, 'path': str(self._left_paths[raw])},
        )

    def __len__(self) -> int:
        n = len(self._left_paths) - self._start
        if n <= 0:
            return 0
        return (n + self._stride - 1) // self._stride

    @property
    def calibration(self) -> StereoCalibration:
        return self._calibration

    @property
    def image_size(self) -> Tuple[int, int]:
        return self._image_size

    def _selected(self, items: List[Any]) -> List[Any]:
        return items[self._start::self._stride]


class KittiStereoSource(StereoPairSource):
    """
    Frame source for the KITTI odometry benchmark (grayscale pairs).

    KITTI format:
        <root>/sequences/<seq>/
            image_0/       # left images (png)
            image_1/       # right images (png)
            calib.txt      # P0..P3 projection matrices
            times.txt      # timestamps (seconds)
        <root>/poses/<seq>.txt   # optional ground truth, 12 values per line

    Args:
        dataset_root: KITTI root, a sequences/ directory or a sequence directory
        sequence: Sequence name, e.g. '00'
    """

    def __init__(
        self,
        dataset_root: str,
        sequence: Optional[str] = None,
        start: int = 0,
        stride: int = 1,
        disparity_estimator: Optional[StereoDisparityEstimator] = None,
    ):
        super().__init__(start, stride, disparity_estimator)
        self._dataset_root = Path(dataset_root)
        self._sequence = sequence

        self._sequence_path = self._find_sequence()
        if self._sequence_path is None:
            raise FileNotFoundError(
                f"No KITTI sequence found at {dataset_root} (sequence={sequence})"
            )
        logger.info(f"Found KITTI sequence at: {self._sequence_path}")

        self._left_paths = _list_images(self._sequence_path / "image_0")
        self._right_paths = _list_images(self._sequence_path / "image_1")
        self._calibration = self._read_calibration(self._sequence_path / "calib.txt")

        times_file = self._sequence_path / "times.txt"
        if times_file.exists():
            with open(times_file, 'r') as f:
                self._timestamps = [float(line) for line in f if line.strip()]

        self._finalize()

    @staticmethod
    def _is_sequence(path: Path) -> bool:
        return (path / "image_0").is_dir() and (path / "calib.txt").exists()

    def _find_sequence(self) -> Optional[Path]:
        if self._is_sequence(self._dataset_root):
            return self._dataset_root

        if self._sequence:
            for candidate in [
                self._dataset_root / self._sequence,
                self._dataset_root / "sequences" / self._sequence,
            ]:
                if self._is_sequence(candidate):
                    return candidate
        return None

    @staticmethod
    def _read_calibration(filepath: Path) -> StereoCalibration:
        """
        Read P0 and P1 from calib.txt.

        The baseline is recovered from P1 = K [I | -b e_x]: b = -P1[0,3] / P1[0,0].
        """
        projections = {}
        with open(filepath, 'r') as f:
            for line in f:
                if ':' not in line:
                    continue
                key, values = line.split(':', 1)
                projections[key.strip()] = np.array([float(v) for v in values.split()]).reshape(3, 4)

        if 'P0' not in projections or 'P1' not in projections:
            raise ValueError(f"calib.txt must define P0 and P1: {filepath}")

        P0, P1 = projections['P0'], projections['P1']
        return StereoCalibration(
            fx=P0[0, 0],
            fy=P0[1, 1],
            cx=P0[0, 2],
            cy=P0[1, 2],
            baseline=-P1[0, 3] / P1[0, 0],
        )

    def ground_truth_path(self) -> Optional[Path]:
        name = self._sequence or self._sequence_path.name
        for candidate in [
            self._dataset_root / "poses" / f"{name}.txt",
            self._sequence_path.parent.parent / "poses" / f"{name}.txt",
        ]:
            if candidate.exists():
                return candidate
        return None

    def load_ground_truth(self) -> Optional[np.ndarray]:
        path = self.ground_truth_path()
        if path is None:
            return None
        return np.array(self._selected(list(load_poses(path))))


class TsukubaStereoSource(StereoPairSource):
    """
    Frame source for the New Tsukuba stereo dataset.

    Layout:
        <root>/illumination/<lighting>/left/*.png
        <root>/illumination/<lighting>/right/*.png
        <root>/groundtruth/disparity_maps/left/*.png   # optional

    All lightings share one rig: 640x480, f = 615 px, baseline 10 cm.
    The camera track in groundtruth/ is not read, so runs on this source
    report no trajectory accuracy.

    Args:
        dataset_root: Dataset root directory
        sequence: Lighting condition ('fluorescent', 'daylight', 'flashlight', 'lamps')
        use_ground_truth_disparity: Read the rendered disparity maps instead of running SGBM
    """

    DEFAULT_CALIBRATION = StereoCalibration(fx=615.0, fy=615.0, cx=320.0, cy=240.0, baseline=0.10)

    def __init__(
        self,
        dataset_root: str,
        sequence: Optional[str] = None,
        start: int = 0,
        stride: int = 1,
        use_ground_truth_disparity: bool = False,
        disparity_estimator: Optional[StereoDisparityEstimator] = None,
    ):
        super().__init__(start, stride, disparity_estimator)
        self._dataset_root = Path(dataset_root)
        self._lighting = sequence or "fluorescent"

        lighting_dir = self._dataset_root / "illumination" / self._lighting
        if not lighting_dir.is_dir():
            raise FileNotFoundError(f"No Tsukuba lighting directory: {lighting_dir}")

        self._left_paths = _list_images(lighting_dir / "left")
        self._right_paths = _list_images(lighting_dir / "right")
        self._calibration = self.DEFAULT_CALIBRATION

        self._disparity_paths: List[Path] = []
        if use_ground_truth_disparity:
            self._disparity_paths = _list_images(
                self._dataset_root / "groundtruth" / "disparity_maps" / "left"
            )
            if len(self._disparity_paths) != len(self._left_paths):
                raise ValueError(
                    f"Found {len(self._disparity_paths)} disparity maps for "
                    f"{len(self._left_paths)} images"
                )

        self._finalize()

    def _load_disparity(self, raw_index: int) -> Optional[np.ndarray]:
        if not self._disparity_paths:
            return None
        path = self._disparity_paths[raw_index]
        disparity = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if disparity is None:
            raise FileNotFoundError(f"Failed to read disparity: {path}")
        return disparity.astype(np.float32)


class StereoFolderSource(StereoPairSource):
    """
    Frame source for two folders of rectified images.

    Calibration has to be supplied because the layout carries none.

    Args:
        dataset_root: Directory containing the left and right folders
        calibration: Rectified stereo calibration
        left_dir: Name of the left image folder
        right_dir: Name of the right image folder
    """

    def __init__(
        self,
        dataset_root: str,
        calibration: StereoCalibration,
        left_dir: str = "left",
        right_dir: str = "right",
        start: int = 0,
        stride: int = 1,
        disparity_estimator: Optional[StereoDisparityEstimator] = None,
    ):
        super().__init__(start, stride, disparity_estimator)
        root = Path(dataset_root)
        if not (root / left_dir).is_dir():
            raise FileNotFoundError(f"Left image folder not found: {root / left_dir}")

        self._left_paths = _list_images(root / left_dir)
        self._right_paths = _list_images(root / right_dir)
        self._calibration = calibration
        self._finalize()


def create_frame_source(config: DatasetConfig) -> FrameSource:
    """
    Build a frame source from the dataset section of a harness config.

    Raises:
        ValueError: for an unknown dataset type or missing calibration
        FileNotFoundError: if the dataset cannot be found
    """
    estimator = StereoDisparityEstimator(
        num_disparities=config.disparity.num_disparities,
        block_size=config.disparity.block_size,
    )
    dataset_type = config.type.lower()

    if dataset_type == 'kitti':
        return KittiStereoSource(
            config.root,
            sequence=config.sequence,
            start=config.start,
            stride=config.stride,
            disparity_estimator=estimator,
        )
    elif dataset_type == 'tsukuba':
        return TsukubaStereoSource(
            config.root,
            sequence=config.sequence,
            start=config.start,
            stride=config.stride,
            use_ground_truth_disparity=config.use_ground_truth_disparity,
            disparity_estimator=estimator,
        )
    elif dataset_type == 'stereo_folder':
        values = config.intrinsics_dict()
        if config.baseline is not None:
            values['baseline'] = config.baseline
        return StereoFolderSource(
            config.root,
            calibration=StereoCalibration.from_dict(values),
            left_dir=config.left_dir,
            right_dir=config.right_dir,
            start=config.start,
            stride=config.stride,
            disparity_estimator=estimator,
        )

    raise ValueError(f"Unknown dataset type: {config.type}. Available: ['kitti', 'tsukuba', 'stereo_folder']")
