"""
Benchmark Visualizations
========================

- vo_plots: camera path and per-frame statistics of a harness run
"""

from .vo_plots import plot_camera_path, plot_frame_statistics

__all__ = ['plot_camera_path', 'plot_frame_statistics']
