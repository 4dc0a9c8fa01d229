"""
VO Run Visualizations
=====================

Plots for a finished harness run, read back from its result files:
- Camera path, top view (XZ) and side view (XY), optionally against ground truth
- Per-frame processing time and optimizer iterations
"""

import logging
from pathlib import Path
from typing import Optional, Union

import matplotlib

matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)


def _save(fig: plt.Figure, output_path: Optional[Union[str, Path]]) -> None:
    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved plot to {output_path}")
        plt.close(fig)


def plot_camera_path(
    positions: np.ndarray,
    ground_truth: Optional[np.ndarray] = None,
    output_path: Optional[Union[str, Path]] = None,
    title: str = "Camera Path",
) -> plt.Figure:
    """
    Plot the estimated camera path.

    Args:
        positions: Estimated camera centres (N, 3)
        ground_truth: Ground truth camera centres (M, 3), optional
        output_path: Where to save; the figure is closed after saving
        title: Plot title
    """
    positions = np.asarray(positions).reshape(-1, 3)
    fig, axes = plt.subplots(1, 2, figsize=(14, 6))

    # Camera looks along +Z, y points down
    views = [
        (0, 2, 'X (m)', 'Z (m)', 'Top View (XZ Plane)'),
        (0, 1, 'X (m)', 'Y (m)', 'Side View (XY Plane)'),
    ]
    for ax, (i, j, xlabel, ylabel, view_title) in zip(axes, views):
        if ground_truth is not None and len(ground_truth):
            gt = np.asarray(ground_truth).reshape(-1, 3)
            ax.plot(gt[:, i], gt[:, j], 'b-', linewidth=2, label='Ground Truth')
        if len(positions):
            ax.plot(positions[:, i], positions[:, j], 'r-', linewidth=2, label='Estimated', alpha=0.8)
            ax.scatter(positions[0, i], positions[0, j], c='green', s=100, marker='o', label='Start', zorder=5)
            ax.scatter(positions[-1, i], positions[-1, j], c='red', s=100, marker='x', label='End', zorder=5)
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.set_title(view_title)
        ax.legend()
        ax.set_aspect('equal', adjustable='datalim')
        ax.grid(True, alpha=0.3)

    fig.suptitle(title, fontsize=14, y=1.02)
    plt.tight_layout()
    _save(fig, output_path)
    return fig


def plot_frame_statistics(
    time_ms: np.ndarray,
    iterations: np.ndarray,
    output_path: Optional[Union[str, Path]] = None,
    max_iterations: Optional[int] = None,
    title: str = "Per-Frame Statistics",
) -> plt.Figure:
    """
    Plot processing time and optimizer iterations per frame.

    Args:
        time_ms: Per-frame processing time in milliseconds
        iterations: Per-frame iteration counts
        output_path: Where to save; the figure is closed after saving
        max_iterations: Iteration budget, drawn as a dashed line
        title: Plot title
    """
    time_ms = np.asarray(time_ms, dtype=np.float64)
    iterations = np.asarray(iterations)

    fig, axes = plt.subplots(2, 1, figsize=(12, 7), sharex=True)

    axes[0].plot(np.arange(len(time_ms)), time_ms, 'b-', linewidth=1)
    if len(time_ms):
        axes[0].axhline(np.mean(time_ms), color='orange', linestyle='--',
                        label=f'mean {np.mean(time_ms):.2f} ms')
        axes[0].legend()
    axes[0].set_ylabel('Time (ms)')
    axes[0].set_title('Processing Time')
    axes[0].grid(True, alpha=0.3)

    axes[1].step(np.arange(len(iterations)), iterations, 'g-', where='mid', linewidth=1)
    if max_iterations is not None:
        axes[1].axhline(max_iterations, color='red', linestyle='--', label='budget')
        axes[1].legend()
    axes[1].set_xlabel('Frame')
    axes[1].set_ylabel('Iterations')
    axes[1].set_title('Optimizer Iterations')
    axes[1].grid(True, alpha=0.3)

    fig.suptitle(title, fontsize=14)
    plt.tight_layout()
    _save(fig, output_path)
    return fig
