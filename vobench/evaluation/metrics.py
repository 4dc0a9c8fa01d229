"""
Evaluation Metrics
==================

Metrics computed from a finished run:

Performance:
- Per-frame latency statistics (mean, min, max, p95, p99) and rate

Convergence:
- Iteration statistics and how often the iteration budget was hit

Trajectory (when ground truth is available):
- ATE: Absolute Trajectory Error after Umeyama alignment
- RPE: Relative Pose Error (translation and rotation)

Trajectory errors are computed with evo on PoseTrajectory3D objects.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
from evo.core import geometry, metrics, sync
from evo.core.trajectory import PoseTrajectory3D

logger = logging.getLogger(__name__)


def compute_timing_stats(time_ms: Sequence[float]) -> Dict[str, float]:
    """
    Latency statistics of per-frame processing times.

    Args:
        time_ms: Per-frame processing time in milliseconds

    Returns:
        Dictionary with 'num_frames', 'total_s', 'fps' and latency keys in ms
    """
    times = np.asarray(time_ms, dtype=np.float64)
    if times.size == 0:
        return {
            'num_frames': 0,
            'total_s': 0.0,
            'fps': 0.0,
            'avg_latency_ms': 0.0,
            'min_latency_ms': 0.0,
            'max_latency_ms': 0.0,
            'p95_latency_ms': 0.0,
            'p99_latency_ms': 0.0,
        }

    total_s = float(np.sum(times)) / 1000.0
    return {
        'num_frames': int(times.size),
        'total_s': total_s,
        'fps': float(times.size / total_s) if total_s > 0 else 0.0,
        'avg_latency_ms': float(np.mean(times)),
        'min_latency_ms': float(np.min(times)),
        'max_latency_ms': float(np.max(times)),
        'p95_latency_ms': float(np.percentile(times, 95)),
        'p99_latency_ms': float(np.percentile(times, 99)),
    }


def compute_convergence_stats(
    iterations: Sequence[int],
    max_iterations: Optional[int] = None,
) -> Dict[str, float]:
    """
    Optimizer iteration statistics.

    Args:
        iterations: Iterations at the reference pyramid level per frame
        max_iterations: Iteration budget; frames reaching it are counted

    Returns:
        Dictionary with 'mean_iterations', 'max_iterations_seen',
        'median_iterations' and (if a budget is given) 'budget_hits'
    """
    iters = np.asarray(iterations, dtype=np.int64)
    stats = {
        'mean_iterations': float(np.mean(iters)) if iters.size else 0.0,
        'median_iterations': float(np.median(iters)) if iters.size else 0.0,
        'max_iterations_seen': int(np.max(iters)) if iters.size else 0,
    }
    if max_iterations is not None:
        stats['budget_hits'] = int(np.sum(iters == max_iterations))
    return stats


def poses_to_trajectory(poses: np.ndarray, timestamps: Optional[np.ndarray] = None) -> PoseTrajectory3D:
    """Convert Nx4x4 poses to an evo PoseTrajectory3D (timestamps default to frame indices)."""
    poses = np.asarray(poses, dtype=np.float64)
    if timestamps is None:
        timestamps = np.arange(len(poses), dtype=np.float64)
    return PoseTrajectory3D(poses_se3=list(poses), timestamps=np.asarray(timestamps, dtype=np.float64))


def align_trajectories(
    estimated: np.ndarray,
    ground_truth: np.ndarray,
    with_scale: bool = False,
) -> Tuple[np.ndarray, float, np.ndarray, np.ndarray]:
    """
    Align estimated positions to ground truth using Umeyama alignment.

    Args:
        estimated: Nx3 estimated positions
        ground_truth: Nx3 ground truth positions
        with_scale: Also estimate a scale factor (monocular-style alignment)

    Returns:
        (aligned_estimated, scale, rotation, translation)

    Raises:
        evo.core.geometry.GeometryException: for degenerate point sets
    """
    estimated = np.asarray(estimated, dtype=np.float64)
    R, t, scale = geometry.umeyama_alignment(
        estimated.T, np.asarray(ground_truth, dtype=np.float64).T, with_scale=with_scale
    )
    aligned = scale * (estimated @ R.T) + t
    return aligned, float(scale), R, t


def _associate(
    estimated_poses: np.ndarray,
    ground_truth_poses: np.ndarray,
) -> Tuple[PoseTrajectory3D, PoseTrajectory3D]:
    n = len(estimated_poses)
    if n != len(ground_truth_poses):
        raise ValueError(f"Trajectory lengths differ: {n} vs {len(ground_truth_poses)}")
    gt_traj, est_traj = sync.associate_trajectories(
        poses_to_trajectory(ground_truth_poses),
        poses_to_trajectory(estimated_poses),
    )
    return gt_traj, est_traj


def compute_ate(
    estimated_poses: np.ndarray,
    ground_truth_poses: np.ndarray,
    align: bool = True,
) -> Dict[str, float]:
    """
    Compute Absolute Trajectory Error (ATE).

    Args:
        estimated_poses: Nx4x4 array of estimated camera-to-world transforms
        ground_truth_poses: Nx4x4 array of ground truth transforms
        align: Whether to align trajectories using Umeyama alignment

    Returns:
        Dictionary with 'ate_rmse', 'ate_mean', 'ate_median', 'ate_std', 'ate_max'
    """
    if len(estimated_poses) == 0:
        raise ValueError("Cannot compute ATE of an empty trajectory")
    gt_traj, est_traj = _associate(estimated_poses, ground_truth_poses)

    if align and est_traj.num_poses >= 3:
        try:
            R, t, _ = geometry.umeyama_alignment(
                est_traj.positions_xyz.T, gt_traj.positions_xyz.T, with_scale=False
            )
        except geometry.GeometryException as e:
            logger.warning(f"Umeyama alignment not possible ({e}), computing ATE unaligned")
        else:
            transform = np.eye(4)
            transform[:3, :3] = R
            transform[:3, 3] = t
            est_traj.transform(transform)

    ape_metric = metrics.APE(metrics.PoseRelation.translation_part)
    ape_metric.process_data((gt_traj, est_traj))
    stats = ape_metric.get_all_statistics()

    return {
        'ate_rmse': float(stats['rmse']),
        'ate_mean': float(stats['mean']),
        'ate_median': float(stats['median']),
        'ate_std': float(stats['std']),
        'ate_max': float(stats['max']),
    }


def compute_rpe(
    estimated_poses: np.ndarray,
    ground_truth_poses: np.ndarray,
    delta: int = 1,
) -> Dict[str, float]:
    """
    Compute Relative Pose Error (RPE) over a fixed frame delta.

    Args:
        estimated_poses: Nx4x4 array of estimated camera-to-world transforms
        ground_truth_poses: Nx4x4 array of ground truth transforms
        delta: Frame delta for relative pose computation

    Returns:
        Dictionary with translation (metres) and rotation (degrees) errors
    """
    n = len(estimated_poses)
    if n != len(ground_truth_poses):
        raise ValueError(f"Trajectory lengths differ: {n} vs {len(ground_truth_poses)}")
    if n <= delta:
        return {
            'rpe_trans_rmse': float('nan'),
            'rpe_trans_mean': float('nan'),
            'rpe_rot_rmse': float('nan'),
            'rpe_rot_mean': float('nan'),
        }

    gt_traj, est_traj = _associate(estimated_poses, ground_truth_poses)

    rpe_trans = metrics.RPE(metrics.PoseRelation.translation_part, delta=delta, delta_unit=metrics.Unit.frames)
    rpe_trans.process_data((gt_traj, est_traj))
    trans_stats = rpe_trans.get_all_statistics()

    rpe_rot = metrics.RPE(metrics.PoseRelation.rotation_angle_deg, delta=delta, delta_unit=metrics.Unit.frames)
    rpe_rot.process_data((gt_traj, est_traj))
    rot_stats = rpe_rot.get_all_statistics()

    return {
        'rpe_trans_rmse': float(trans_stats['rmse']),
        'rpe_trans_mean': float(trans_stats['mean']),
        'rpe_rot_rmse': float(rot_stats['rmse']),
        'rpe_rot_mean': float(rot_stats['mean']),
    }


def compute_trajectory_metrics(
    estimated_poses: np.ndarray,
    ground_truth_poses: np.ndarray,
    align: bool = True,
) -> Dict[str, float]:
    """ATE and RPE in one dictionary. Ground truth is truncated to the estimate's length."""
    gt = np.asarray(ground_truth_poses)[:len(estimated_poses)]
    if len(gt) < len(estimated_poses):
        raise ValueError(
            f"Ground truth has {len(gt)} poses, estimate has {len(estimated_poses)}"
        )
    errors = compute_ate(estimated_poses, gt, align=align)
    errors.update(compute_rpe(estimated_poses, gt))
    return errors


def save_metrics_to_json(metrics: Dict[str, float], filepath: Union[str, Path]) -> None:
    """Save metrics dictionary to JSON file."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Saved metrics to {filepath}")
