"""
Odometry Engines
================

Stereo odometry engines consumed by the frame loop.

Available engines:
- direct: Keyframe-based direct stereo VO (coarse-to-fine Gauss-Newton)

Usage:
    from vobench.pose import get_odometry_engine

    engine = get_odometry_engine('direct', calibration, (width, height), params)
    result = engine.process_frame(image, disparity)
    iters = result.optimizer_statistics[params.max_test_level].num_iterations
"""

import logging
from typing import Any, Dict, Tuple

from ..config import AlgorithmParameters
from .base import (
    BaseOdometryEngine,
    KeyFramingReason,
    OptimizerStatistics,
    PoseEstimationStatus,
    Result,
    StereoCalibration,
)
from .direct_vo import DirectKeyframeVO

logger = logging.getLogger(__name__)


_ENGINES: Dict[str, type] = {
    'direct': DirectKeyframeVO,
}


def get_odometry_engine(
    name: str,
    calibration: StereoCalibration,
    image_size: Tuple[int, int],
    params: AlgorithmParameters,
    **kwargs,
) -> BaseOdometryEngine:
    """
    Get an odometry engine by name.

    Args:
        name: Engine name ('direct')
        calibration: Stereo calibration of the frame source
        image_size: (width, height) of incoming frames
        params: Algorithm parameters
        **kwargs: Additional arguments passed to constructor

    Returns:
        BaseOdometryEngine instance

    Raises:
        ValueError: If engine name is unknown
    """
    name_lower = name.lower().replace('-', '_')

    if name_lower not in _ENGINES:
        available = list(_ENGINES.keys())
        raise ValueError(f"Unknown odometry engine: {name}. Available: {available}")

    logger.info(f"Creating odometry engine '{name_lower}' for {image_size[0]}x{image_size[1]} images")
    return _ENGINES[name_lower](calibration, image_size, params, **kwargs)


def list_odometry_engines() -> Dict[str, Dict[str, Any]]:
    """List registered odometry engines."""
    engines = {
        'direct': {
            'description': 'Keyframe-based direct stereo VO',
            'requires_gpu': False,
        },
    }
    return {name: info for name, info in engines.items() if name in _ENGINES}


__all__ = [
    'BaseOdometryEngine',
    'DirectKeyframeVO',
    'KeyFramingReason',
    'OptimizerStatistics',
    'PoseEstimationStatus',
    'Result',
    'StereoCalibration',
    'get_odometry_engine',
    'list_odometry_engines',
]
