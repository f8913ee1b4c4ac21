"""Performance monitoring module for the sensing loop."""

from .metrics import PerformanceMonitor, PerformanceStats, LoopMetrics

__all__ = ["PerformanceMonitor", "PerformanceStats", "LoopMetrics"]
