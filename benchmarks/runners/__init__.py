"""
Benchmark Runners
=================

- VOPerfBenchmark: runs the frame loop once and summarizes timing and convergence
"""

from .vo_perf import VOPerfBenchmark, VOPerfResult

__all__ = ['VOPerfBenchmark', 'VOPerfResult']
