"""Protocols for the hardware collaborators consumed by the core."""

from typing import Protocol

from .types import RawFieldSample


class MagnetometerPort(Protocol):
    """Source of raw two-axis magnetometer samples."""

    def sample_ready(self) -> bool:
        """Whether a new sample is available."""
        ...

    def read_raw_field(self) -> RawFieldSample:
        """Read the latest raw sample."""
        ...


class OutputPin(Protocol):
    """Digital output line."""

    def set(self, level: bool) -> None:
        """Drive the line high (True) or low (False)."""
        ...


class InputPin(Protocol):
    """Digital input line."""

    def is_high(self) -> bool:
        """Whether the line currently reads high."""
        ...


class Clock(Protocol):
    """Monotonic time source with microsecond resolution."""

    def now_us(self) -> int:
        """Current time in microseconds."""
        ...

    def now_s(self) -> float:
        """Current time in seconds."""
        ...

    def delay_us(self, us: int) -> None:
        """Block for at least ``us`` microseconds."""
        ...
