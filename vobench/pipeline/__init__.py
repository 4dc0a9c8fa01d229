# Frame pipeline for the VO harness
# =================================
#
# This package provides the orchestration layer:
# - Stereo frame handling (data classes, sources, disparity)
# - The frame loop that drives an odometry engine and records statistics

from .frames import (
    StereoFrame,
    FrameSource,
    StereoPairSource,
    KittiStereoSource,
    TsukubaStereoSource,
    StereoFolderSource,
    create_frame_source,
)
from .disparity import StereoDisparityEstimator
from .vo_loop import FrameLoop, RunStats, StopReason, OpenCVDisplay, format_progress, processing_rate

__all__ = [
    "StereoFrame",
    "FrameSource",
    "StereoPairSource",
    "KittiStereoSource",
    "TsukubaStereoSource",
    "StereoFolderSource",
    "create_frame_source",
    "StereoDisparityEstimator",
    "FrameLoop",
    "RunStats",
    "StopReason",
    "OpenCVDisplay",
    "format_progress",
    "processing_rate",
]
