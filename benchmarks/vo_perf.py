#!/usr/bin/env python3
"""
vo-perf
=======

Runs a stereo visual odometry engine over a dataset, prints per-frame
progress and writes the trajectory, iteration counts and timings.

Usage:
    vo-perf -c configs/kitti_stereo.yaml -o results/kitti00 -n 500 -x
    python -m benchmarks perf -c configs/tsukuba_stereo.yaml

Exit codes:
    0  run finished (frame limit, end of data or user abort)
    1  the engine failed during the run
    2  invalid config or dataset
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from benchmarks import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("configs") / "tsukuba_stereo.yaml"

EXIT_OK = 0
EXIT_ENGINE_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def add_perf_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('-c', '--config', type=Path, default=DEFAULT_CONFIG,
                        help='Harness config file (YAML)')
    parser.add_argument('-o', '--output', default='',
                        help='Output prefix for result files, empty = do not write')
    parser.add_argument('-n', '--numframes', type=int, default=1000,
                        help='Maximum number of frames to process')
    parser.add_argument('-x', '--dontshow', action='store_true',
                        help='Do not open the preview window')
    parser.add_argument('--json', type=Path, help='Also save the run summary as JSON')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')


def run_perf(args: argparse.Namespace) -> int:
    """Run one harness pass from parsed arguments. Returns the process exit code."""
    from benchmarks.runners.vo_perf import VOPerfBenchmark

    if args.numframes < 0:
        logger.error(f"--numframes must be >= 0, got {args.numframes}")
        return EXIT_CONFIG_ERROR

    try:
        benchmark = VOPerfBenchmark.from_config(
            args.config,
            output_prefix=args.output,
            max_frames=args.numframes,
            show=not args.dontshow,
        )
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        logger.error(f"Cannot set up run: {e}")
        return EXIT_CONFIG_ERROR

    result = benchmark.run()
    benchmark.print_table()

    if args.json:
        benchmark.save_results(args.json)

    if result.error is not None:
        return EXIT_ENGINE_FAILURE
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog='vo-perf',
        description="Stereo visual odometry performance harness",
    )
    add_perf_arguments(parser)
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    return run_perf(args)


if __name__ == '__main__':
    sys.exit(main())
