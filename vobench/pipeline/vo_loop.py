"""
Frame Loop
==========

The control loop of the harness. It ties together:

- A frame source (FrameSource implementations)
- A stateful odometry engine (BaseOdometryEngine implementations)
- An optional cancellation check, polled once per frame (e.g. OpenCVDisplay)

For every frame it times the single engine call, records the optimizer
iteration count at `max_test_level`, warns when the iteration budget was
exhausted, prints a one-line progress report and appends the pose to the
trajectory. It stops after `max_frames` frames, when the source runs dry,
when the cancellation check fires or when the engine raises.

Example usage:
    loop = FrameLoop(source, engine, params, max_frames=1000,
                     cancel=OpenCVDisplay())
    stats = loop.run()
    ResultWriter("run1").write(loop.trajectory, stats.iterations, stats.time_ms)
"""

import logging
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, TextIO

import cv2

from ..config import AlgorithmParameters
from ..evaluation.trajectory import Trajectory
from ..pose.base import BaseOdometryEngine, Result
from .frames import FrameSource, StereoFrame

logger = logging.getLogger(__name__)

# Returns True to stop the run before the given frame is processed
CancellationCheck = Callable[[StereoFrame], bool]


class StopReason(Enum):
    FRAME_LIMIT = "frame_limit"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"
    ENGINE_FAILURE = "engine_failure"


@dataclass
class RunStats:
    """
    Running aggregates of one harness run.

    `iterations` and `time_ms` hold one entry per processed frame, in
    processing order, and always have the same length as the trajectory.
    """
    total_time: float = 0.0
    iterations: List[int] = field(default_factory=list)
    time_ms: List[float] = field(default_factory=list)
    max_iteration_frames: List[int] = field(default_factory=list)
    keyframes: int = 0
    stop_reason: Optional[StopReason] = None
    error: Optional[BaseException] = None

    @property
    def frames_processed(self) -> int:
        return len(self.time_ms)

    @property
    def rate_hz(self) -> float:
        return processing_rate(self.frames_processed, self.total_time)

    @property
    def succeeded(self) -> bool:
        return self.stop_reason is not None and self.stop_reason != StopReason.ENGINE_FAILURE


def processing_rate(num_frames: int, total_time: float) -> float:
    """Average frames per second, 0.0 while no time has been accumulated."""
    if total_time <= 0.0:
        return 0.0
    return num_frames / total_time


def format_progress(
    frame_index: int,
    time_ms: float,
    rate_hz: float,
    iterations: int,
    reason_label: str,
    num_points: int,
) -> str:
    return (
        f"Frame {frame_index:05d} {time_ms:6.2f} ms @ {rate_hz:5.2f} Hz "
        f"{iterations:03d} iters {reason_label:>20s} num_points {num_points:<8d}"
    )


class OpenCVDisplay:
    """
    Shows each frame's image in an OpenCV window and polls the keyboard.

    Used as the loop's cancellation check: returns True when `abort_key`
    was pressed during the bounded wait. Other keys are ignored.

    Args:
        window_name: Name of the OpenCV window
        wait_ms: How long to wait for a key press per frame
        abort_key: Key that stops the run
    """

    def __init__(self, window_name: str = "image", wait_ms: int = 5, abort_key: str = "q"):
        self.window_name = window_name
        self.wait_ms = wait_ms
        self.abort_key = abort_key

    def __call__(self, frame: StereoFrame) -> bool:
        cv2.imshow(self.window_name, frame.image)
        key = 0xFF & cv2.waitKey(self.wait_ms)
        return key == ord(self.abort_key)

    def close(self) -> None:
        cv2.destroyWindow(self.window_name)


class FrameLoop:
    """
    Sequences frames from a source through an odometry engine.

    Args:
        source: FrameSource to pull frames from, index 0 upwards
        engine: Odometry engine, owned by the loop for the whole run

        params: Algorithm parameters. `max_test_level` selects the pyramid
            level whose iteration count is reported; `max_iterations` is the
            budget that triggers the convergence warning.

        max_frames: Upper bound on processed frames

        cancel: Optional cancellation check called with each frame before it
            is processed. None = headless, never cancelled.

        progress: Print the overwritten one-line progress report

        stream: Where progress goes. Defaults to sys.stdout at call time.

    Attributes:
        trajectory: Poses of all processed frames
        stats: Running aggregates
    """

    def __init__(
        self,
        source: FrameSource,
        engine: BaseOdometryEngine,
        params: AlgorithmParameters,
        max_frames: int = 1000,
        cancel: Optional[CancellationCheck] = None,
        progress: bool = True,
        stream: Optional[TextIO] = None,
    ):
        if max_frames < 0:
            raise ValueError(f"max_frames must be >= 0, got {max_frames}")

        self.source = source
        self.engine = engine
        self.params = params
        self.max_frames = max_frames
        self.cancel = cancel
        self.progress = progress
        self._stream = stream
        self._line_open = False

        self.trajectory = Trajectory()
        self.stats = RunStats()

        self._on_frame_callbacks: List[Callable[[int, Result, float], None]] = []

    def add_frame_callback(self, callback: Callable[[int, Result, float], None]) -> None:
        """Register callback(frame_index, result, time_ms) invoked after each processed frame."""
        self._on_frame_callbacks.append(callback)

    def _print(self, text: str, end: str = "\n") -> None:
        if self.progress:
            print(text, end=end, file=self._stream or sys.stdout, flush=True)
            self._line_open = end == "\r"

    def _end_line(self) -> None:
        if self._line_open:
            self._print("")

    def run(self) -> RunStats:
        """Process frames until a stop condition is met. Returns the run statistics."""
        stop_reason = StopReason.FRAME_LIMIT

        for f_i in range(self.max_frames):
            frame = self.source.get_frame(f_i)
            if frame is None:
                self._end_line()
                logger.info("no more data")
                stop_reason = StopReason.EXHAUSTED
                break

            if self.cancel is not None and self.cancel(frame):
                self._end_line()
                logger.info(f"Aborted by user at frame {f_i}")
                stop_reason = StopReason.ABORTED
                break

            if self.step(f_i, frame) is None:
                stop_reason = StopReason.ENGINE_FAILURE
                break

            del frame

        self.stats.stop_reason = stop_reason
        self._end_line()
        logger.info("done")
        return self.stats

    def step(self, frame_index: int, frame: StereoFrame) -> Optional[Result]:
        """
        Process one frame and update the aggregates.

        Returns:
            The engine result, or None if the engine failed. A failure leaves
            the aggregates untouched and is recorded in `stats.error`.
        """
        level = self.params.max_test_level

        t_start = time.perf_counter()
        try:
            result = self.engine.process_frame(frame.image, frame.disparity)
        except Exception as e:
            self._end_line()
            logger.error(f"Engine failed at frame {frame_index}: {e}", exc_info=True)
            self.stats.error = e
            return None
        elapsed = time.perf_counter() - t_start

        if len(result.optimizer_statistics) <= level:
            self._end_line()
            e = ValueError(
                f"Engine returned {len(result.optimizer_statistics)} optimizer levels, "
                f"max_test_level is {level}"
            )
            logger.error(f"Engine failed at frame {frame_index}: {e}")
            self.stats.error = e
            return None

        time_ms = elapsed * 1000.0
        self.stats.total_time += elapsed
        self.stats.time_ms.append(time_ms)

        num_iters = int(result.optimizer_statistics[level].num_iterations)
        if num_iters == self.params.max_iterations:
            self._end_line()
            logger.warning(f"max iterations reached at frame {frame_index}")
            self.stats.max_iteration_frames.append(frame_index)

        self._print(
            format_progress(
                frame_index,
                time_ms,
                processing_rate(self.stats.frames_processed, self.stats.total_time),
                num_iters,
                result.key_framing_reason.label,
                result.num_points,
            ),
            end="\r",
        )

        self.trajectory.push_back(result.pose)
        self.stats.iterations.append(num_iters)
        if result.is_keyframe:
            self.stats.keyframes += 1

        for callback in self._on_frame_callbacks:
            callback(frame_index, result, time_ms)

        return result
