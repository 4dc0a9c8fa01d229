# Trajectory accumulation, result files and metrics for vobench
from .results import ResultWriter, load_poses, load_camera_path, load_iterations, load_times
from .trajectory import Trajectory
from .metrics import (
    compute_timing_stats,
    compute_convergence_stats,
    compute_ate,
    compute_rpe,
    compute_trajectory_metrics,
)

__all__ = [
    "Trajectory",
    "ResultWriter",
    "load_poses",
    "load_camera_path",
    "load_iterations",
    "load_times",
    "compute_timing_stats",
    "compute_convergence_stats",
    "compute_ate",
    "compute_rpe",
    "compute_trajectory_metrics",
]
