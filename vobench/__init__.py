# vobench - Stereo Visual Odometry Performance Harness
# ===================================================
#
# Feeds stereo frames (image + disparity) through a keyframe-based VO engine,
# records per-frame timing and optimizer convergence, accumulates the
# estimated trajectory and writes plain-text results for offline analysis.

__version__ = "0.1.0"
