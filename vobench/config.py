"""
Harness Configuration
=====================

Immutable configuration snapshot loaded once before the frame loop starts.

A config file is YAML with two sections:

    dataset:
      type: kitti            # kitti | tsukuba | stereo_folder
      root: ../datasets/kitti
      sequence: "00"
    algorithm:
      num_pyramid_levels: 4
      max_test_level: 1
      max_iterations: 50

The same `AlgorithmParameters` object is handed to both the frame source
factory and the odometry engine; nothing reads configuration from globals.
"""

import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)


def _check_keys(cls, section: str, values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}' config section: {', '.join(unknown)}")


@dataclass(frozen=True)
class AlgorithmParameters:
    """
    Parameters shared by the harness and the odometry engine.

    Attributes:
        engine: Registered engine name (see `vobench.pose.list_odometry_engines`)
        num_pyramid_levels: Number of image pyramid levels
        max_test_level: Finest pyramid level the optimizer runs on. Its
            iteration count is the one reported by the harness.
        max_iterations: Iteration cap per pyramid level
        parameter_tolerance: Stop when the update norm falls below this
        function_tolerance: Stop when the relative error decrease falls below this
        gradient_tolerance: Stop when the first-order optimality falls below this
        min_gradient: Minimum image gradient magnitude for a pixel to be tracked
        max_points: Maximum number of points tracked per pyramid level
        min_disparity: Disparities below this (pixels) are treated as invalid
        huber_k: Huber threshold in units of the robust residual scale
        min_translation_to_keyframe: Translation (metres) that forces a keyframe
        min_rotation_to_keyframe: Rotation (degrees) that forces a keyframe
        min_fraction_of_good_points: Keyframe when fewer points than this survive
    """
    engine: str = "direct"
    num_pyramid_levels: int = 4
    max_test_level: int = 1
    max_iterations: int = 50
    parameter_tolerance: float = 1e-6
    function_tolerance: float = 1e-6
    gradient_tolerance: float = 1e-6
    min_gradient: float = 8.0
    max_points: int = 4000
    min_disparity: float = 1.0
    huber_k: float = 1.345
    min_translation_to_keyframe: float = 0.1
    min_rotation_to_keyframe: float = 5.0
    min_fraction_of_good_points: float = 0.6

    def __post_init__(self):
        if self.num_pyramid_levels < 1:
            raise ValueError(f"num_pyramid_levels must be >= 1, got {self.num_pyramid_levels}")
        if not 0 <= self.max_test_level < self.num_pyramid_levels:
            raise ValueError(
                f"max_test_level must be in [0, {self.num_pyramid_levels - 1}], "
                f"got {self.max_test_level}"
            )
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not 0.0 <= self.min_fraction_of_good_points <= 1.0:
            raise ValueError("min_fraction_of_good_points must be in [0, 1]")

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "AlgorithmParameters":
        values = dict(values or {})
        _check_keys(cls, "algorithm", values)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DisparityConfig:
    """SGBM settings used when a source has to compute disparity itself."""
    num_disparities: int = 128
    block_size: int = 5

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "DisparityConfig":
        values = dict(values or {})
        _check_keys(cls, "dataset.disparity", values)
        return cls(**values)


@dataclass(frozen=True)
class DatasetConfig:
    """
    Frame source description.

    `intrinsics` and `baseline` are only read by sources whose on-disk layout
    carries no calibration (``stereo_folder``). `intrinsics` is stored as a
    sorted tuple of (key, value) pairs so the config stays hashable.
    """
    type: str = "kitti"
    root: str = "."
    sequence: Optional[str] = None
    start: int = 0
    stride: int = 1
    left_dir: str = "left"
    right_dir: str = "right"
    intrinsics: Tuple[Tuple[str, float], ...] = ()
    baseline: Optional[float] = None
    use_ground_truth_disparity: bool = False
    disparity: DisparityConfig = field(default_factory=DisparityConfig)

    def __post_init__(self):
        if self.start < 0:
            raise ValueError(f"dataset.start must be >= 0, got {self.start}")
        if self.stride < 1:
            raise ValueError(f"dataset.stride must be >= 1, got {self.stride}")

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]], base_dir: Optional[Path] = None) -> "DatasetConfig":
        values = dict(values or {})
        _check_keys(cls, "dataset", values)

        if "disparity" in values:
            values["disparity"] = DisparityConfig.from_dict(values["disparity"])
        if "intrinsics" in values:
            values["intrinsics"] = tuple(sorted(
                (str(k), float(v)) for k, v in dict(values["intrinsics"]).items()
            ))
        if "sequence" in values and values["sequence"] is not None:
            values["sequence"] = str(values["sequence"])

        root = Path(str(values.get("root", ".")))
        if base_dir is not None and not root.is_absolute():
            root = base_dir / root
        values["root"] = str(root)

        return cls(**values)

    def intrinsics_dict(self) -> Dict[str, float]:
        return dict(self.intrinsics)


@dataclass(frozen=True)
class HarnessConfig:
    """Everything loaded from one config file."""
    dataset: DatasetConfig = field(default_factory=DatasetConfig)
    algorithm: AlgorithmParameters = field(default_factory=AlgorithmParameters)
    source_path: Optional[str] = None

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]], base_dir: Optional[Path] = None) -> "HarnessConfig":
        values = dict(values or {})
        unknown = sorted(set(values) - {"dataset", "algorithm"})
        if unknown:
            raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")
        return cls(
            dataset=DatasetConfig.from_dict(values.get("dataset"), base_dir=base_dir),
            algorithm=AlgorithmParameters.from_dict(values.get("algorithm")),
        )


def load_config(path: Union[str, Path]) -> HarnessConfig:
    """
    Load a harness config from a YAML file.

    Relative ``dataset.root`` paths are resolved against the directory that
    contains the config file.

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if the file is not a mapping or holds unknown keys
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(raw).__name__}")

    config = HarnessConfig.from_dict(raw, base_dir=path.parent)
    logger.info(f"Loaded config: {path}")
    return HarnessConfig(dataset=config.dataset, algorithm=config.algorithm, source_path=str(path))
