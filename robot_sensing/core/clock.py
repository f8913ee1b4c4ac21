"""Monotonic clocks for timing-sensitive sensor access."""

import time


class MonotonicClock:
    """Clock backed by ``time.perf_counter_ns``.

    Delays busy-wait instead of sleeping: ``time.sleep`` cannot
    resolve the few microseconds a trigger pulse needs.
    """

    def now_us(self) -> int:
        """Current time in microseconds."""
        return time.perf_counter_ns() // 1000

    def now_s(self) -> float:
        """Current time in seconds."""
        return time.perf_counter()

    def delay_us(self, us: int) -> None:
        """Spin for at least ``us`` microseconds."""
        if us <= 0:
            return
        deadline = time.perf_counter_ns() + us * 1000
        while time.perf_counter_ns() < deadline:
            pass


class SimulatedClock:
    """Deterministic clock for tests and mock hardware.

    Every reading advances time by ``granularity_us`` to model the cost
    of one poll, so busy-wait loops make progress without real time
    passing.
    """

    def __init__(self, start_us: int = 0, granularity_us: int = 1):
        """Initialize simulated clock.

        Args:
            start_us: Initial time in microseconds.
            granularity_us: Time consumed by each call to ``now_us``.
        """
        if granularity_us < 0:
            raise ValueError("granularity_us must be non-negative")
        self._time_us = start_us
        self.granularity_us = granularity_us

    def now_us(self) -> int:
        """Advance by one polling granularity and return the time."""
        self._time_us += self.granularity_us
        return self._time_us

    def now_s(self) -> float:
        """Current time in seconds (does not advance)."""
        return self._time_us / 1_000_000

    def delay_us(self, us: int) -> None:
        """Advance time by ``us`` microseconds."""
        if us > 0:
            self._time_us += us

    def advance_s(self, seconds: float) -> None:
        """Advance time by ``seconds``."""
        self._time_us += int(round(seconds * 1_000_000))

    def peek_us(self) -> int:
        """Current time without advancing."""
        return self._time_us
