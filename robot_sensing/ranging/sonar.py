"""Pulse-echo ultrasonic ranging with bounded blocking time.

The measurement busy-waits on the echo line against an injected
monotonic clock. Worst-case blocking is bounded by
settle + pulse + max_sensor_delay + max_echo_time, plus one polling
granularity per wait.
"""

import logging
from enum import Enum
from typing import Optional

from ..core.clock import MonotonicClock
from ..core.config import RangingConfig
from ..core.ports import Clock, InputPin, OutputPin
from ..core.types import Busy, Distance, RangeResult, TimedOut, TimeoutStage

logger = logging.getLogger(__name__)


class RangePhase(Enum):
    """Phases of a single measurement."""
    IDLE = "idle"
    TRIGGER_SENT = "trigger_sent"
    WAITING_FOR_ECHO_RISE = "waiting_for_echo_rise"
    WAITING_FOR_ECHO_FALL = "waiting_for_echo_fall"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    BUSY = "busy"


def echo_to_centimeters(echo_us: int, roundtrip_divisor_us: int) -> int:
    """Convert echo high time to distance, rounding to nearest cm.

    Args:
        echo_us: Echo pulse width in microseconds.
        roundtrip_divisor_us: Round-trip time per centimeter.

    Returns:
        Distance in centimeters.
    """
    return (echo_us + roundtrip_divisor_us // 2) // roundtrip_divisor_us


class RangeFinder:
    """Synchronous ranging on a trigger/echo pin pair.

    Owns its pins for its lifetime; only one measurement runs at a time.
    """

    def __init__(
        self,
        trigger: OutputPin,
        echo: InputPin,
        config: Optional[RangingConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize range finder.

        Args:
            trigger: Output line driving the sensor trigger input.
            echo: Input line reading the sensor echo output.
            config: Timing constants.
            clock: Monotonic clock and delay source.
        """
        self._trigger = trigger
        self._echo = echo
        self._config = config if config is not None else RangingConfig()
        self._clock = clock if clock is not None else MonotonicClock()
        self._phase = RangePhase.IDLE
        self._last_echo_us: Optional[int] = None

    def measure_distance(self) -> RangeResult:
        """Trigger a ping and time its echo.

        Returns:
            Distance on success, Busy if the previous echo has not
            cleared, or TimedOut naming the phase that expired.
        """
        cfg = self._config
        clock = self._clock
        self._phase = RangePhase.IDLE
        self._last_echo_us = None

        self._trigger.set(False)
        clock.delay_us(cfg.settle_us)
        self._trigger.set(True)
        clock.delay_us(cfg.pulse_us)
        self._trigger.set(False)
        self._phase = RangePhase.TRIGGER_SENT

        if self._echo.is_high():
            self._phase = RangePhase.BUSY
            logger.debug("Echo line still high from previous ping")
            return Busy()

        self._phase = RangePhase.WAITING_FOR_ECHO_RISE
        wait_start = clock.now_us()
        if not self._wait_for_echo(True, wait_start, cfg.max_sensor_delay_us):
            self._phase = RangePhase.TIMED_OUT
            logger.debug("No echo within %d us", cfg.max_sensor_delay_us)
            return TimedOut(TimeoutStage.ECHO_START)

        self._phase = RangePhase.WAITING_FOR_ECHO_FALL
        echo_start = clock.now_us()
        max_echo_us = cfg.max_echo_time_us
        if not self._wait_for_echo(False, echo_start, max_echo_us):
            self._phase = RangePhase.TIMED_OUT
            logger.debug("Echo longer than %d us, nothing in range", max_echo_us)
            return TimedOut(TimeoutStage.ECHO_END)
        echo_end = clock.now_us()

        self._last_echo_us = echo_end - echo_start
        self._phase = RangePhase.RESOLVED
        return Distance(echo_to_centimeters(self._last_echo_us, cfg.roundtrip_divisor_us))

    def _wait_for_echo(self, level: bool, start_us: int, limit_us: int) -> bool:
        """Poll the echo line until it reads ``level``.

        Gives up as soon as the next poll would land past ``limit_us``
        after ``start_us``, estimating the poll cost from the last step, so
        a timeout overruns the limit by at most one polling granularity.

        Returns:
            True if the level was reached, False on timeout.
        """
        previous = start_us
        while self._echo.is_high() != level:
            now = self._clock.now_us()
            if now + (now - previous) - start_us > limit_us:
                return False
            previous = now
        return True

    @property
    def last_phase(self) -> RangePhase:
        """Last phase reached by the most recent measurement."""
        return self._phase

    @property
    def last_echo_us(self) -> Optional[int]:
        """Echo width of the last resolved measurement."""
        return self._last_echo_us

    @property
    def max_blocking_us(self) -> int:
        """Upper bound on the time spent in measure_distance.

        Excludes polling cost: each of the two echo waits may exceed its
        limit by one polling granularity.
        """
        cfg = self._config
        return cfg.settle_us + cfg.pulse_us + cfg.max_sensor_delay_us + cfg.max_echo_time_us
