"""Heading tracker driving the EKF from a magnetometer port.

Wraps the HeadingEstimator with sample polling, calibration and health
reporting. Bus failures propagate to the caller unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.clock import MonotonicClock
from ..core.config import Config
from ..core.errors import SensorIoError
from ..core.ports import Clock, MagnetometerPort
from ..core.types import CalibratedField, HeadingEstimate, SensorStats, UpdateOutcome
from ..core.validation import validate_dt
from .calibration import FieldCalibrator
from .heading_ekf import HeadingEstimator

logger = logging.getLogger(__name__)


@dataclass
class TrackerHealth:
    """Heading tracker health metrics."""
    update_count: int
    total_skips: int
    consecutive_skips: int
    heading_uncertainty: float
    seconds_since_update: float
    is_stale: bool
    dt_warnings: int


class HeadingTracker:
    """Polls a magnetometer and keeps a heading estimate current.

    The tracker owns the magnetometer port and the estimator; it must be
    driven from a single call site.
    """

    def __init__(
        self,
        magnetometer: MagnetometerPort,
        config: Config,
        clock: Optional[Clock] = None,
    ):
        """Initialize tracker.

        Args:
            magnetometer: Raw sample source.
            config: System configuration.
            clock: Monotonic clock shared with the estimator.
        """
        self._magnetometer = magnetometer
        self._config = config
        self._clock = clock if clock is not None else MonotonicClock()
        self._calibrator = FieldCalibrator(config.calibration)
        self._estimator: Optional[HeadingEstimator] = None
        self._stats = SensorStats()
        self._last_field: Optional[CalibratedField] = None
        self._last_dt: Optional[float] = None
        self._dt_warnings = 0

    def initialize(self, timeout_s: Optional[float] = None) -> HeadingEstimate:
        """Create the estimator from the first available sample.

        Args:
            timeout_s: Maximum time to wait for a sample. Defaults to
                ``loop.init_timeout_s``.

        Returns:
            Initial state estimate.

        Raises:
            SensorIoError: If no sample becomes ready in time.
            BusError: If reading the sensor fails.
        """
        if timeout_s is None:
            timeout_s = self._config.loop.init_timeout_s
        idle_us = int(self._config.loop.idle_sleep_s * 1_000_000)

        deadline = self._clock.now_s() + timeout_s
        while not self._magnetometer.sample_ready():
            if self._clock.now_s() > deadline:
                raise SensorIoError(f"No magnetometer sample within {timeout_s:.2f}s")
            self._clock.delay_us(idle_us)

        field = self._read_field()
        self._estimator = HeadingEstimator(field, self._config.ekf, self._clock)

        state = self._estimator.state
        logger.info(
            "Heading filter initialized: heading=%.1f deg, magnitude=%.0f nT",
            state.heading_deg, state.field_magnitude,
        )
        return state

    def poll(self) -> Optional[HeadingEstimate]:
        """Process a sample if one is ready.

        Returns:
            Updated estimate, or None if no sample was ready.

        Raises:
            RuntimeError: If the tracker is not initialized.
            BusError: If reading the sensor fails.
        """
        if self._estimator is None:
            raise RuntimeError("Heading tracker not initialized")

        if not self._magnetometer.sample_ready():
            return None

        field = self._read_field()
        dt = self._clock.now_s() - self._estimator.last_update_time
        self._check_dt(dt)
        estimate = self._estimator.predict_and_update(field, dt)

        if self._estimator.last_outcome is UpdateOutcome.APPLIED:
            self._stats.updates_applied += 1
        else:
            self._stats.updates_skipped += 1

        return estimate

    def _check_dt(self, dt: float) -> None:
        """Validate the step the estimator is about to predict over.

        The estimator clamps bad steps itself; problems are only logged
        and counted here.
        """
        self._last_dt = dt
        validation = validate_dt(dt, self._config)
        if validation.is_valid and not validation.warnings:
            return

        self._dt_warnings += 1
        for error in validation.errors:
            logger.warning("Invalid dt: %s", error)
        for warning in validation.warnings:
            logger.warning("Suspicious dt: %s", warning)

    def _read_field(self) -> CalibratedField:
        """Read and calibrate one sample."""
        raw = self._magnetometer.read_raw_field()
        field = self._calibrator.calibrate(raw)
        self._stats.samples_read += 1
        self._last_field = field
        return field

    @property
    def is_initialized(self) -> bool:
        """Whether the estimator has been created."""
        return self._estimator is not None

    @property
    def estimator(self) -> HeadingEstimator:
        """Underlying estimator.

        Raises:
            RuntimeError: If the tracker is not initialized.
        """
        if self._estimator is None:
            raise RuntimeError("Heading tracker not initialized")
        return self._estimator

    @property
    def last_field(self) -> Optional[CalibratedField]:
        """Most recent calibrated sample."""
        return self._last_field

    @property
    def last_dt(self) -> Optional[float]:
        """Time step used by the most recent prediction."""
        return self._last_dt

    @property
    def stats(self) -> SensorStats:
        """Sample and update counters."""
        return self._stats

    @property
    def health(self) -> TrackerHealth:
        """Get tracker health metrics."""
        est = self.estimator
        return TrackerHealth(
            update_count=est.update_count,
            total_skips=est.total_skips,
            consecutive_skips=est.consecutive_skips,
            heading_uncertainty=est.heading_uncertainty,
            seconds_since_update=est.seconds_since_update,
            is_stale=est.is_stale,
            dt_warnings=self._dt_warnings,
        )
