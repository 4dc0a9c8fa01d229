"""
Stereo Disparity
================

Disparity from rectified stereo pairs using OpenCV Semi-Global Block
Matching. Sources call this when the dataset ships no disparity maps.

Usage:
    from vobench.pipeline.disparity import StereoDisparityEstimator

    estimator = StereoDisparityEstimator(num_disparities=128, block_size=5)
    disparity = estimator.compute(left_gray, right_gray)  # float32 pixels, 0 = invalid
"""

import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class StereoDisparityEstimator:
    """
    Disparity estimation using Semi-Global Block Matching.

    Args:
        num_disparities: Max disparity (rounded down to a multiple of 16)
        block_size: Matching block size (forced odd)
    """

    def __init__(self, num_disparities: int = 128, block_size: int = 5):
        self.num_disparities = max(16, (num_disparities // 16) * 16)
        self.block_size = block_size | 1
        self._matcher = None

    def _lazy_init(self):
        if self._matcher is not None:
            return

        self._matcher = cv2.StereoSGBM_create(
            minDisparity=0,
            numDisparities=self.num_disparities,
            blockSize=self.block_size,
            P1=8 * self.block_size ** 2,
            P2=32 * self.block_size ** 2,
            disp12MaxDiff=1,
            uniquenessRatio=10,
            speckleWindowSize=100,
            speckleRange=32,
            preFilterCap=63,
            mode=cv2.STEREO_SGBM_MODE_SGBM_3WAY,
        )
        logger.info(
            f"Stereo matcher initialized (SGBM, {self.num_disparities} disparities, "
            f"block {self.block_size})"
        )

    def compute(self, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        """
        Compute the left-image disparity map.

        Args:
            left: Left image (grayscale or BGR)
            right: Right image (grayscale or BGR)

        Returns:
            HxW float32 disparity in pixels, 0 where matching failed
        """
        self._lazy_init()

        if left.ndim == 3:
            left = cv2.cvtColor(left, cv2.COLOR_BGR2GRAY)
        if right.ndim == 3:
            right = cv2.cvtColor(right, cv2.COLOR_BGR2GRAY)

        if left.shape != right.shape:
            raise ValueError(f"Stereo pair shapes differ: {left.shape} vs {right.shape}")

        # SGBM outputs fixed-point with 4 fractional bits
        disparity = self._matcher.compute(left, right).astype(np.float32) / 16.0
        disparity[disparity < 0] = 0
        return disparity
