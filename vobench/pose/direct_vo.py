"""
Direct Keyframe Stereo Visual Odometry
======================================

Dense-direct pose tracking against a keyframe:

- On a keyframe, high-gradient pixels with valid disparity are back-projected
  to 3D (Z = f * B / d) at every pyramid level and their intensities and
  photometric Jacobians are stored.
- Each new frame is aligned to the keyframe coarse-to-fine with
  inverse-compositional Gauss-Newton and Huber weights, down to
  `max_test_level`. Levels finer than that are not run.
- A new keyframe is taken when the motion since the keyframe is large or too
  few keyframe points remain visible.

The returned pose is the relative motion T_curr_prev between consecutive
frames; the keyframe-relative pose is kept internally.

Usage:
    from vobench.pose import DirectKeyframeVO

    vo = DirectKeyframeVO(calibration, (width, height), params)
    result = vo.process_frame(image, disparity)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .base import (
    BaseOdometryEngine,
    KeyFramingReason,
    OptimizerStatistics,
    PoseEstimationStatus,
    Result,
)
from .geometry import inv_T, rotation_angle_deg, se3_exp

logger = logging.getLogger(__name__)

# Fewer points than this cannot constrain a 6-DOF pose
_MIN_POINTS = 6


@dataclass
class _KeyframeLevel:
    """Keyframe data at one pyramid level."""
    fx: float
    fy: float
    cx: float
    cy: float
    points: np.ndarray       # (N, 3) points in keyframe camera coordinates
    intensities: np.ndarray  # (N,) template intensities
    jacobians: np.ndarray    # (N, 6) d(intensity)/d(twist) at identity

    @property
    def num_points(self) -> int:
        return len(self.points)


def build_pyramid(image: np.ndarray, num_levels: int) -> List[np.ndarray]:
    """Gaussian pyramid of a float32 copy of `image`, finest level first."""
    pyramid = [image.astype(np.float32)]
    for _ in range(1, num_levels):
        pyramid.append(cv2.pyrDown(pyramid[-1]))
    return pyramid


def interpolate_bilinear(image: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Sample `image` at sub-pixel locations. Callers keep (u, v) inside the image."""
    h, w = image.shape
    x0 = np.clip(np.floor(u).astype(np.int64), 0, w - 2)
    y0 = np.clip(np.floor(v).astype(np.int64), 0, h - 2)
    ax = u - x0
    ay = v - y0

    i00 = image[y0, x0]
    i01 = image[y0, x0 + 1]
    i10 = image[y0 + 1, x0]
    i11 = image[y0 + 1, x0 + 1]

    top = i00 + ax * (i01 - i00)
    bottom = i10 + ax * (i11 - i10)
    return top + ay * (bottom - top)


class DirectKeyframeVO(BaseOdometryEngine):
    """
    Keyframe-based direct stereo odometry.

    Args:
        calibration: Rectified stereo calibration of the full-resolution image
        image_size: (width, height) of incoming frames
        params: Algorithm parameters (pyramid, iteration budget, keyframing)
    """

    def __init__(self, calibration, image_size, params):
        super().__init__(calibration, image_size, params)

        self._keyframe: Optional[List[_KeyframeLevel]] = None
        # Pose of the previous frame relative to the keyframe (T_prev_kf)
        self._T_prev_kf = np.eye(4)

    def get_name(self) -> str:
        return "direct"

    @property
    def has_keyframe(self) -> bool:
        return self._keyframe is not None

    def process_frame(self, image: np.ndarray, disparity: np.ndarray) -> Result:
        self._check_frame(image, disparity)
        pyramid = build_pyramid(image, self.params.num_pyramid_levels)
        self._frame_count += 1

        if self._keyframe is None:
            self._keyframe = self._make_keyframe(pyramid, disparity)
            self._T_prev_kf = np.eye(4)
            return Result(
                pose=np.eye(4),
                optimizer_statistics=self._empty_statistics(),
                key_framing_reason=KeyFramingReason.FIRST_FRAME,
                num_points=self._keyframe[self.params.max_test_level].num_points,
            )

        T_curr_kf, stats, num_good = self._estimate_pose(pyramid, self._T_prev_kf)

        ref_points = self._keyframe[self.params.max_test_level].num_points
        frac_good = num_good / ref_points if ref_points > 0 else 0.0
        reason = self._keyframing_reason(T_curr_kf, frac_good)

        T_curr_prev = T_curr_kf @ inv_T(self._T_prev_kf)

        if reason == KeyFramingReason.NO_KEYFRAMING:
            self._T_prev_kf = T_curr_kf
        else:
            logger.debug(f"New keyframe at frame {self._frame_count - 1}: {reason.label}")
            self._keyframe = self._make_keyframe(pyramid, disparity)
            self._T_prev_kf = np.eye(4)

        return Result(
            pose=T_curr_prev,
            optimizer_statistics=stats,
            key_framing_reason=reason,
            num_points=num_good,
        )

    def _make_keyframe(self, pyramid: List[np.ndarray], disparity: np.ndarray) -> List[_KeyframeLevel]:
        levels = []
        for level, image in enumerate(pyramid):
            levels.append(self._make_keyframe_level(level, image, disparity))
        logger.debug(
            "Keyframe points per level: " + ", ".join(str(lvl.num_points) for lvl in levels)
        )
        return levels

    def _make_keyframe_level(self, level: int, image: np.ndarray, disparity: np.ndarray) -> _KeyframeLevel:
        p = self.params
        scale = 0.5 ** level
        calib = self.calibration.scaled(scale)
        h, w = image.shape

        # Disparity is kept in full-resolution pixels; depth does not change with scale
        disp = cv2.resize(disparity.astype(np.float32), (w, h), interpolation=cv2.INTER_NEAREST)

        gx = cv2.Sobel(image, cv2.CV_32F, 1, 0, ksize=3) / 8.0
        gy = cv2.Sobel(image, cv2.CV_32F, 0, 1, ksize=3) / 8.0
        magnitude = np.sqrt(gx * gx + gy * gy)

        valid = (disp > p.min_disparity) & (magnitude > p.min_gradient)
        valid[:1, :] = False
        valid[-1:, :] = False
        valid[:, :1] = False
        valid[:, -1:] = False

        ys, xs = np.nonzero(valid)
        if len(xs) > p.max_points:
            order = np.argsort(-magnitude[ys, xs], kind="stable")[:p.max_points]
            order.sort()
            ys, xs = ys[order], xs[order]

        d = disp[ys, xs].astype(np.float64)
        Z = (self.calibration.fx * self.calibration.baseline) / d
        X = (xs - calib.cx) * Z / calib.fx
        Y = (ys - calib.cy) * Z / calib.fy
        points = np.stack([X, Y, Z], axis=1)

        # Photometric Jacobian w.r.t. twist (v, w) at identity
        gxf = gx[ys, xs].astype(np.float64) * calib.fx / Z
        gyf = gy[ys, xs].astype(np.float64) * calib.fy / Z
        gzf = -(gxf * X + gyf * Y) / Z
        jacobians = np.stack([
            gxf,
            gyf,
            gzf,
            Y * gzf - Z * gyf,
            Z * gxf - X * gzf,
            X * gyf - Y * gxf,
        ], axis=1)

        return _KeyframeLevel(
            fx=calib.fx, fy=calib.fy, cx=calib.cx, cy=calib.cy,
            points=points,
            intensities=image[ys, xs].astype(np.float64),
            jacobians=jacobians,
        )

    def _residuals(
        self,
        level: _KeyframeLevel,
        image: np.ndarray,
        T: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Photometric residuals of keyframe points warped by T into `image`."""
        h, w = image.shape
        P = level.points @ T[:3, :3].T + T[:3, 3]
        Z = P[:, 2]
        valid = Z > 1e-6
        Z_safe = np.where(valid, Z, 1.0)

        u = level.fx * P[:, 0] / Z_safe + level.cx
        v = level.fy * P[:, 1] / Z_safe + level.cy
        valid &= (u >= 0) & (u <= w - 1) & (v >= 0) & (v <= h - 1)

        residuals = np.zeros(level.num_points)
        if np.any(valid):
            sampled = interpolate_bilinear(image, u[valid], v[valid])
            residuals[valid] = sampled - level.intensities[valid]
        return residuals, valid

    def _huber_weights(self, residuals: np.ndarray) -> np.ndarray:
        abs_r = np.abs(residuals)
        sigma = 1.4826 * float(np.median(abs_r)) + 1e-6
        k = self.params.huber_k * sigma
        return np.where(abs_r <= k, 1.0, k / np.maximum(abs_r, 1e-12))

    def _optimize_level(
        self,
        level: _KeyframeLevel,
        image: np.ndarray,
        T_init: np.ndarray,
    ) -> Tuple[np.ndarray, OptimizerStatistics, int]:
        p = self.params
        T = T_init.copy()
        stats = OptimizerStatistics()

        if level.num_points < _MIN_POINTS:
            stats.status = PoseEstimationStatus.DEGENERATE
            return T, stats, 0

        prev_error = None
        num_valid = 0
        stats.status = PoseEstimationStatus.MAX_ITERATIONS

        for it in range(1, p.max_iterations + 1):
            residuals, valid = self._residuals(level, image, T)
            num_valid = int(valid.sum())
            if num_valid < _MIN_POINTS:
                stats.status = PoseEstimationStatus.DEGENERATE
                break

            r = residuals[valid]
            J = level.jacobians[valid]
            weights = self._huber_weights(r)

            error = float(np.mean(weights * r * r))
            g = J.T @ (weights * r)
            H = J.T @ (J * weights[:, None])
            stats.first_order_optimality = float(np.max(np.abs(g)) / num_valid)
            stats.final_error = error

            try:
                dx = np.linalg.solve(H, g)
            except np.linalg.LinAlgError:
                stats.status = PoseEstimationStatus.DEGENERATE
                break

            T = T @ inv_T(se3_exp(dx))
            stats.num_iterations = it

            if np.linalg.norm(dx) < p.parameter_tolerance:
                stats.status = PoseEstimationStatus.CONVERGED_PARAMETER
                break
            if prev_error is not None and abs(prev_error - error) <= p.function_tolerance * max(prev_error, 1e-12):
                stats.status = PoseEstimationStatus.CONVERGED_FUNCTION
                break
            if stats.first_order_optimality < p.gradient_tolerance:
                stats.status = PoseEstimationStatus.CONVERGED_GRADIENT
                break
            prev_error = error

        return T, stats, num_valid

    def _estimate_pose(
        self,
        pyramid: List[np.ndarray],
        T_init: np.ndarray,
    ) -> Tuple[np.ndarray, List[OptimizerStatistics], int]:
        """Coarse-to-fine alignment of the current frame to the keyframe."""
        stats = self._empty_statistics()
        T = T_init
        num_good = 0

        for level in range(self.params.num_pyramid_levels - 1, self.params.max_test_level - 1, -1):
            T, stats[level], num_good = self._optimize_level(self._keyframe[level], pyramid[level], T)

        return T, stats, num_good

    def _keyframing_reason(self, T_curr_kf: np.ndarray, frac_good: float) -> KeyFramingReason:
        p = self.params
        if np.linalg.norm(T_curr_kf[:3, 3]) > p.min_translation_to_keyframe:
            return KeyFramingReason.LARGE_TRANSLATION
        if rotation_angle_deg(T_curr_kf[:3, :3]) > p.min_rotation_to_keyframe:
            return KeyFramingReason.LARGE_ROTATION
        if frac_good < p.min_fraction_of_good_points:
            return KeyFramingReason.SMALL_FRACTION_OF_GOOD_POINTS
        return KeyFramingReason.NO_KEYFRAMING
