"""
VO Performance Benchmark Runner
===============================

Runs one stereo visual odometry pass over a dataset and summarizes it:

- Builds the frame source and odometry engine from a harness config
- Drives them through `FrameLoop` (optionally with an OpenCV preview window)
- Writes the four result files under the output prefix
- Reports timing, convergence and (when available) trajectory accuracy
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from vobench.config import HarnessConfig, load_config
from vobench.evaluation import (
    ResultWriter,
    compute_convergence_stats,
    compute_timing_stats,
    compute_trajectory_metrics,
)
from vobench.pipeline import FrameLoop, FrameSource, OpenCVDisplay, create_frame_source
from vobench.pose import get_odometry_engine
from vobench.pose.base import BaseOdometryEngine

logger = logging.getLogger(__name__)


@dataclass
class VOPerfResult:
    """Summary of one harness run."""
    engine: str
    dataset: str
    num_frames: int
    stop_reason: str

    # Timing
    total_time: float
    fps: float
    avg_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0

    # Convergence
    mean_iterations: float = 0.0
    max_iterations_seen: int = 0
    budget_hits: int = 0
    keyframes: int = 0

    # Trajectory accuracy, NaN without ground truth
    ate_rmse: float = float('nan')
    rpe_trans_rmse: float = float('nan')
    rpe_rot_rmse: float = float('nan')

    error: Optional[str] = None
    files_written: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class VOPerfBenchmark:
    """
    Single-run VO benchmark.

    Args:
        source: Frame source to read from
        engine: Odometry engine to evaluate
        config: Harness config the source and engine were built from
        output_prefix: Result file prefix, empty for a dry run
        max_frames: Upper bound on processed frames
        show: Open an OpenCV preview window; 'q' aborts the run

    Example:
        benchmark = VOPerfBenchmark.from_config('configs/kitti_stereo.yaml',
                                                output_prefix='results/kitti00')
        result = benchmark.run()
        benchmark.print_table()
    """

    def __init__(
        self,
        source: FrameSource,
        engine: BaseOdometryEngine,
        config: HarnessConfig,
        output_prefix: Union[str, Path, None] = "",
        max_frames: int = 1000,
        show: bool = False,
    ):
        self.source = source
        self.engine = engine
        self.config = config
        self.output_prefix = str(output_prefix) if output_prefix else ""
        self.max_frames = max_frames
        self.show = show

        self.loop: Optional[FrameLoop] = None
        self.result: Optional[VOPerfResult] = None

    @classmethod
    def from_config(
        cls,
        config: Union[str, Path, HarnessConfig],
        output_prefix: Union[str, Path, None] = "",
        max_frames: int = 1000,
        show: bool = False,
    ) -> "VOPerfBenchmark":
        """Build the frame source and engine described by a config file."""
        if not isinstance(config, HarnessConfig):
            config = load_config(config)

        source = create_frame_source(config.dataset)
        params = config.algorithm
        engine = get_odometry_engine(
            params.engine, source.calibration, source.image_size, params
        )
        logger.info(
            f"Dataset '{config.dataset.type}' with {len(source)} frames of "
            f"{source.image_size[0]}x{source.image_size[1]}, engine '{engine.get_name()}'"
        )
        return cls(source, engine, config, output_prefix, max_frames, show)

    def run(self) -> VOPerfResult:
        params = self.config.algorithm
        display = OpenCVDisplay() if self.show else None

        self.loop = FrameLoop(
            self.source,
            self.engine,
            params,
            max_frames=self.max_frames,
            cancel=display,
        )
        try:
            stats = self.loop.run()
        finally:
            if display is not None:
                display.close()

        written = ResultWriter(self.output_prefix).write(
            self.loop.trajectory, stats.iterations, stats.time_ms
        )

        timing = compute_timing_stats(stats.time_ms)
        convergence = compute_convergence_stats(stats.iterations, params.max_iterations)

        self.result = VOPerfResult(
            engine=self.engine.get_name(),
            dataset=self.config.dataset.type,
            num_frames=stats.frames_processed,
            stop_reason=stats.stop_reason.value,
            total_time=stats.total_time,
            fps=stats.rate_hz,
            avg_latency_ms=timing['avg_latency_ms'],
            min_latency_ms=timing['min_latency_ms'],
            max_latency_ms=timing['max_latency_ms'],
            p95_latency_ms=timing['p95_latency_ms'],
            p99_latency_ms=timing['p99_latency_ms'],
            mean_iterations=convergence['mean_iterations'],
            max_iterations_seen=convergence['max_iterations_seen'],
            budget_hits=convergence['budget_hits'],
            keyframes=stats.keyframes,
            error=str(stats.error) if stats.error is not None else None,
            files_written=[str(p) for p in written],
        )
        self._add_accuracy(self.result)
        return self.result

    def _add_accuracy(self, result: VOPerfResult) -> None:
        ground_truth = self.source.load_ground_truth()
        trajectory = self.loop.trajectory
        if ground_truth is None or len(trajectory) == 0:
            return
        if len(ground_truth) < len(trajectory):
            logger.warning(
                f"Ground truth has {len(ground_truth)} poses for {len(trajectory)} frames, "
                "skipping accuracy"
            )
            return

        # Express ground truth relative to the first processed frame
        gt = np.asarray(ground_truth)[:len(trajectory)]
        gt = np.linalg.inv(gt[0]) @ gt
        metrics = compute_trajectory_metrics(trajectory.poses(), gt)
        result.ate_rmse = metrics['ate_rmse']
        result.rpe_trans_rmse = metrics['rpe_trans_rmse']
        result.rpe_rot_rmse = metrics['rpe_rot_rmse']

    def save_results(self, filepath: Union[str, Path]) -> None:
        """Save the run summary to JSON."""
        if self.result is None:
            raise RuntimeError("run() has not been called")
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.result.to_dict(), f, indent=2)
        logger.info(f"Results saved to {filepath}")

    def print_table(self) -> None:
        r = self.result
        if r is None:
            print("No results to display")
            return

        print("\n" + "=" * 72)
        print("VO PERFORMANCE RESULTS")
        print("=" * 72)
        print(f"{'Engine':<24} {r.engine}")
        print(f"{'Dataset':<24} {r.dataset}")
        print(f"{'Frames':<24} {r.num_frames} ({r.stop_reason})")
        print(f"{'Total time':<24} {r.total_time:.3f} s")
        print(f"{'Rate':<24} {r.fps:.2f} Hz")
        print(f"{'Latency avg/p95/max':<24} "
              f"{r.avg_latency_ms:.2f} / {r.p95_latency_ms:.2f} / {r.max_latency_ms:.2f} ms")
        print(f"{'Iterations mean/max':<24} {r.mean_iterations:.1f} / {r.max_iterations_seen}")
        print(f"{'Iteration budget hits':<24} {r.budget_hits}")
        print(f"{'Keyframes':<24} {r.keyframes}")
        if not np.isnan(r.ate_rmse):
            print(f"{'ATE RMSE':<24} {r.ate_rmse:.4f} m")
            print(f"{'RPE trans / rot':<24} {r.rpe_trans_rmse:.4f} m / {r.rpe_rot_rmse:.3f} deg")
        if r.error:
            print(f"{'Error':<24} {r.error}")
        print("=" * 72)
