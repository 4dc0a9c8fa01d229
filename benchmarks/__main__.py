#!/usr/bin/env python3
"""
vobench Benchmark CLI
=====================

Main entry point for benchmarks.

Usage:
    python -m benchmarks perf -c configs/kitti_stereo.yaml -o results/kitti00 -n 500 -x
    python -m benchmarks evaluate results/kitti00 --ground-truth datasets/kitti/poses/00.txt
    python -m benchmarks plot results/kitti00 --out results/plots
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

from benchmarks import setup_logging
from benchmarks.vo_perf import EXIT_CONFIG_ERROR, EXIT_OK, add_perf_arguments, run_perf

logger = logging.getLogger(__name__)


def _load_run(prefix: str):
    from vobench.evaluation import load_iterations, load_poses, load_times
    from vobench.evaluation.results import ITERATIONS_SUFFIX, POSES_SUFFIX, TIME_SUFFIX

    poses = load_poses(prefix + POSES_SUFFIX)
    iterations = load_iterations(prefix + ITERATIONS_SUFFIX)
    times = load_times(prefix + TIME_SUFFIX)
    if not (len(poses) == len(iterations) == len(times)):
        raise ValueError(
            f"Result files of '{prefix}' disagree: {len(poses)} poses, "
            f"{len(iterations)} iterations, {len(times)} times"
        )
    return poses, iterations, times


def _load_ground_truth(path: Optional[Path], num_poses: int) -> Optional[np.ndarray]:
    from vobench.evaluation import load_poses

    if path is None:
        return None
    gt = load_poses(path)[:num_poses]
    if len(gt) == 0:
        return None
    # Estimated trajectories start at the identity
    return np.linalg.inv(gt[0]) @ gt


def cmd_perf(args) -> int:
    """Run the VO harness."""
    return run_perf(args)


def cmd_evaluate(args) -> int:
    """Compute statistics of a finished run from its result files."""
    from vobench.evaluation import (
        compute_convergence_stats,
        compute_timing_stats,
        compute_trajectory_metrics,
    )
    from vobench.evaluation.metrics import save_metrics_to_json

    try:
        poses, iterations, times = _load_run(args.prefix)
        gt = _load_ground_truth(args.ground_truth, len(poses))
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Cannot load results: {e}")
        return EXIT_CONFIG_ERROR

    metrics = {}
    metrics.update(compute_timing_stats(times))
    metrics.update(compute_convergence_stats(iterations, args.max_iterations))
    if gt is not None:
        if len(gt) < len(poses):
            logger.warning(f"Ground truth has only {len(gt)} poses for {len(poses)} frames")
        else:
            metrics.update(compute_trajectory_metrics(poses, gt))

    print("\n" + "=" * 60)
    print(f"RUN EVALUATION: {args.prefix}")
    print("=" * 60)
    for key, value in metrics.items():
        if isinstance(value, float):
            print(f"{key:<24} {value:>12.4f}")
        else:
            print(f"{key:<24} {value:>12}")
    print("=" * 60)

    if args.json:
        save_metrics_to_json(metrics, args.json)
    return EXIT_OK


def cmd_plot(args) -> int:
    """Plot the camera path and per-frame statistics of a finished run."""
    from benchmarks.visualization.vo_plots import plot_camera_path, plot_frame_statistics

    try:
        poses, iterations, times = _load_run(args.prefix)
        gt = _load_ground_truth(args.ground_truth, len(poses))
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Cannot load results: {e}")
        return EXIT_CONFIG_ERROR

    name = Path(args.prefix).name
    out_dir = args.out or Path(args.prefix).parent
    plot_camera_path(
        poses[:, :3, 3],
        gt[:, :3, 3] if gt is not None else None,
        output_path=out_dir / f"{name}_camera_path.png",
        title=f"Camera Path: {name}",
    )
    plot_frame_statistics(
        times,
        iterations,
        output_path=out_dir / f"{name}_frame_stats.png",
        max_iterations=args.max_iterations,
        title=f"Per-Frame Statistics: {name}",
    )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="vobench Benchmark Suite",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m benchmarks perf -c configs/tsukuba_stereo.yaml -x
    python -m benchmarks perf -c configs/kitti_stereo.yaml -o results/kitti00 -n 500 -x
    python -m benchmarks evaluate results/kitti00 --json results/kitti00_metrics.json
    python -m benchmarks plot results/kitti00 --out results/plots
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command')

    # Perf subcommand
    perf_parser = subparsers.add_parser('perf', help='Run the VO harness')
    add_perf_arguments(perf_parser)

    # Evaluate subcommand
    eval_parser = subparsers.add_parser('evaluate', help='Statistics of a finished run')
    eval_parser.add_argument('prefix', help='Result prefix passed to perf -o')
    eval_parser.add_argument('--ground-truth', type=Path, help='Ground truth pose file (KITTI format)')
    eval_parser.add_argument('--max-iterations', type=int, help='Iteration budget to count hits against')
    eval_parser.add_argument('--json', type=Path, help='Output JSON file')
    eval_parser.add_argument('-v', '--verbose', action='store_true')

    # Plot subcommand
    plot_parser = subparsers.add_parser('plot', help='Plot a finished run')
    plot_parser.add_argument('prefix', help='Result prefix passed to perf -o')
    plot_parser.add_argument('--ground-truth', type=Path, help='Ground truth pose file (KITTI format)')
    plot_parser.add_argument('--max-iterations', type=int, help='Iteration budget line')
    plot_parser.add_argument('--out', type=Path, help='Output directory (default: next to the results)')
    plot_parser.add_argument('-v', '--verbose', action='store_true')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    setup_logging(args.verbose)

    if args.command == 'perf':
        return cmd_perf(args)
    elif args.command == 'evaluate':
        return cmd_evaluate(args)
    elif args.command == 'plot':
        return cmd_plot(args)
    parser.print_help()
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
