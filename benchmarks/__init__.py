"""
vobench Benchmark Suite
=======================

Command-line front end of the stereo VO harness.

Structure:
    benchmarks/
        __main__.py              - CLI entry point (perf / evaluate / plot)
        vo_perf.py               - Single-run harness CLI (vo-perf)
        runners/
            vo_perf.py           - VOPerfBenchmark: one harness run + summary
        visualization/
            vo_plots.py          - Trajectory and per-frame statistics plots

Usage:
    python -m benchmarks perf -c configs/kitti_stereo.yaml -o results/kitti00 -n 500 -x
    python -m benchmarks evaluate results/kitti00 --ground-truth poses/00.txt
    python -m benchmarks plot results/kitti00 --out results/plots

Results are written next to the given prefix:
    <prefix>_poses.txt, <prefix>_path.txt, <prefix>_iterations.txt, <prefix>_time.txt
"""

import logging

__version__ = "0.1.0"

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
