"""Performance metrics and monitoring for the sensing loop."""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional, Deque
import numpy as np

from ..core.config import Config
from ..core.types import (
    Busy,
    Distance,
    RangeResult,
    SensorStats,
    UpdateOutcome,
)

logger = logging.getLogger(__name__)


@dataclass
class LoopMetrics:
    """Metrics for a single loop iteration."""
    timestamp: float
    dt_ms: float
    loop_time_ms: float
    iteration: int


@dataclass
class PerformanceStats:
    """Aggregated performance statistics."""
    mean_dt_ms: float
    std_dt_ms: float
    max_dt_ms: float
    mean_loop_time_ms: float
    max_loop_time_ms: float
    effective_rate_hz: float
    dropped_samples: int
    total_iterations: int
    updates_skipped: int
    ranges_ok: int
    ranges_busy: int
    ranges_timed_out: int


class PerformanceMonitor:
    """Monitors the heading update loop and range outcomes.

    Tracks timing statistics, dropped samples, skipped filter updates
    and range results, and logs a periodic summary.
    """

    def __init__(self, config: Config):
        """Initialize performance monitor.

        Args:
            config: System configuration with monitoring settings.
        """
        self._mon_cfg = config.monitoring

        window = self._mon_cfg.window_size
        self._dt_history: Deque[float] = deque(maxlen=window)
        self._loop_time_history: Deque[float] = deque(maxlen=window)

        self._counters = SensorStats()
        self._iteration = 0
        self._dropped_samples = 0
        self._last_log_time = time.time()
        self._last_timestamp: Optional[float] = None
        self._loop_start_time: Optional[float] = None

        self._target_dt_ms = 1000.0 / self._mon_cfg.target_hz
        self._jitter_threshold = self._mon_cfg.jitter_warning_ms

    def start_iteration(self) -> None:
        """Mark the start of a heading update."""
        self._loop_start_time = time.perf_counter()

    def end_iteration(self, timestamp: float, outcome: Optional[UpdateOutcome] = None) -> LoopMetrics:
        """Mark the end of a heading update and compute metrics.

        Args:
            timestamp: Sample time in seconds.
            outcome: Result of the filter update, if any.

        Returns:
            Metrics for this iteration.
        """
        now = time.perf_counter()
        loop_time_ms = 0.0

        if self._loop_start_time is not None:
            loop_time_ms = (now - self._loop_start_time) * 1000

        dt_ms = 0.0
        if self._last_timestamp is not None:
            dt_ms = (timestamp - self._last_timestamp) * 1000
            self._dt_history.append(dt_ms)

            expected_samples = int(dt_ms / self._target_dt_ms + 0.5)
            if expected_samples > 1:
                self._dropped_samples += expected_samples - 1

        self._loop_time_history.append(loop_time_ms)
        self._last_timestamp = timestamp
        self._iteration += 1

        self._counters.samples_read += 1
        if outcome is UpdateOutcome.APPLIED:
            self._counters.updates_applied += 1
        elif outcome is not None:
            self._counters.updates_skipped += 1

        if dt_ms > self._target_dt_ms + self._jitter_threshold:
            logger.debug(
                "High jitter: dt=%.2f ms (target=%.2f ms)",
                dt_ms, self._target_dt_ms
            )

        self._maybe_log_stats()

        return LoopMetrics(
            timestamp=timestamp,
            dt_ms=dt_ms,
            loop_time_ms=loop_time_ms,
            iteration=self._iteration,
        )

    def record_range(self, result: RangeResult) -> None:
        """Count a range measurement outcome."""
        if isinstance(result, Distance):
            self._counters.ranges_ok += 1
        elif isinstance(result, Busy):
            self._counters.ranges_busy += 1
        else:
            self._counters.ranges_timed_out += 1

    def _maybe_log_stats(self) -> None:
        """Log statistics periodically."""
        now = time.time()
        interval = self._mon_cfg.log_interval_s

        if now - self._last_log_time >= interval:
            stats = self.get_stats()
            logger.info(
                "Performance: rate=%.1f Hz, dt=%.2f+/-%.2f ms, "
                "loop=%.3f ms, dropped=%d, skipped=%d, ranges ok/busy/timeout=%d/%d/%d",
                stats.effective_rate_hz,
                stats.mean_dt_ms,
                stats.std_dt_ms,
                stats.mean_loop_time_ms,
                stats.dropped_samples,
                stats.updates_skipped,
                stats.ranges_ok,
                stats.ranges_busy,
                stats.ranges_timed_out,
            )
            self._last_log_time = now

    def get_stats(self) -> PerformanceStats:
        """Get aggregated performance statistics.

        Returns:
            PerformanceStats with current metrics.
        """
        counters = self._counters
        if not self._dt_history:
            return PerformanceStats(
                mean_dt_ms=0.0,
                std_dt_ms=0.0,
                max_dt_ms=0.0,
                mean_loop_time_ms=0.0,
                max_loop_time_ms=0.0,
                effective_rate_hz=0.0,
                dropped_samples=0,
                total_iterations=self._iteration,
                updates_skipped=counters.updates_skipped,
                ranges_ok=counters.ranges_ok,
                ranges_busy=counters.ranges_busy,
                ranges_timed_out=counters.ranges_timed_out,
            )

        dt_array = np.array(self._dt_history)
        loop_array = np.array(self._loop_time_history)

        mean_dt = float(np.mean(dt_array))
        effective_rate = 1000.0 / mean_dt if mean_dt > 0 else 0.0

        return PerformanceStats(
            mean_dt_ms=mean_dt,
            std_dt_ms=float(np.std(dt_array)),
            max_dt_ms=float(np.max(dt_array)),
            mean_loop_time_ms=float(np.mean(loop_array)),
            max_loop_time_ms=float(np.max(loop_array)),
            effective_rate_hz=effective_rate,
            dropped_samples=self._dropped_samples,
            total_iterations=self._iteration,
            updates_skipped=counters.updates_skipped,
            ranges_ok=counters.ranges_ok,
            ranges_busy=counters.ranges_busy,
            ranges_timed_out=counters.ranges_timed_out,
        )

    @property
    def counters(self) -> SensorStats:
        """Raw outcome counters."""
        return self._counters

    def reset(self) -> None:
        """Reset all metrics."""
        self._dt_history.clear()
        self._loop_time_history.clear()
        self._counters = SensorStats()
        self._iteration = 0
        self._dropped_samples = 0
        self._last_timestamp = None
        self._loop_start_time = None
