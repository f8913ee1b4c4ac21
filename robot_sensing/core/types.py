"""Data types for heading estimation and ranging."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union
import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class RawFieldSample:
    """Raw two-axis magnetometer reading in sensor counts.

    Values are the signed 16-bit register contents; the y axis
    is not used by the heading estimator.
    """
    x: int
    z: int


@dataclass(frozen=True)
class CalibratedField:
    """Magnetic field after fixed-point scale and offset correction.

    Units: nT (nanotesla).
    """
    x: int
    z: int

    def to_array(self) -> NDArray[np.float64]:
        """Measurement vector [x, z]."""
        return np.array([self.x, self.z], dtype=np.float64)

    @property
    def magnitude(self) -> float:
        """Magnitude of the two-axis field."""
        return float(np.hypot(self.x, self.z))

    @property
    def heading(self) -> float:
        """Heading implied by the field alone, atan2(x, z)."""
        return float(np.arctan2(self.x, self.z))


class UpdateOutcome(Enum):
    """Result of a single EKF measurement update."""
    APPLIED = "applied"
    SKIPPED_SINGULAR = "skipped_singular"
    REJECTED_NONFINITE = "rejected_nonfinite"


@dataclass(frozen=True)
class HeadingEstimate:
    """Snapshot of the heading filter state.

    Angles are in radians, rate in rad/s, field terms in nT.
    """
    heading_angle: float
    angular_rate: float
    field_magnitude: float
    x_bias: float
    z_bias: float
    x_scale: float
    z_scale: float

    @classmethod
    def from_array(cls, arr: NDArray[np.float64]) -> "HeadingEstimate":
        """Create from a 7-element state vector."""
        return cls(
            heading_angle=float(arr[0]),
            angular_rate=float(arr[1]),
            field_magnitude=float(arr[2]),
            x_bias=float(arr[3]),
            z_bias=float(arr[4]),
            x_scale=float(arr[5]),
            z_scale=float(arr[6]),
        )

    def to_array(self) -> NDArray[np.float64]:
        """Convert to a 7-element state vector."""
        return np.array([
            self.heading_angle, self.angular_rate, self.field_magnitude,
            self.x_bias, self.z_bias, self.x_scale, self.z_scale,
        ], dtype=np.float64)

    @property
    def heading_deg(self) -> float:
        """Heading in degrees."""
        return float(np.rad2deg(self.heading_angle))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "heading_deg": self.heading_deg,
            "angular_rate": self.angular_rate,
            "field_magnitude": self.field_magnitude,
            "x_bias": self.x_bias,
            "z_bias": self.z_bias,
            "x_scale": self.x_scale,
            "z_scale": self.z_scale,
        }


class TimeoutStage(Enum):
    """Phase of a range measurement that ran out of time."""
    ECHO_START = "waiting_for_echo_start"
    ECHO_END = "measuring_echo"


@dataclass(frozen=True)
class Distance:
    """Resolved range measurement."""
    centimeters: int


@dataclass(frozen=True)
class Busy:
    """The previous echo had not cleared when the trigger was sent."""


@dataclass(frozen=True)
class TimedOut:
    """No usable echo within the allowed time."""
    stage: TimeoutStage


RangeResult = Union[Distance, Busy, TimedOut]


def range_result_to_dict(result: RangeResult) -> dict:
    """Flatten a range result for JSON output."""
    if isinstance(result, Distance):
        return {"range_status": "ok", "range_cm": result.centimeters}
    if isinstance(result, Busy):
        return {"range_status": "busy", "range_cm": None}
    return {"range_status": "timeout", "range_cm": None,
            "timeout_stage": result.stage.value}


@dataclass
class ValidationResult:
    """Result of input or state validation."""
    is_valid: bool
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add validation error."""
        self.is_valid = False
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        """Add validation warning."""
        self.warnings.append(message)


@dataclass
class SensorStats:
    """Counters for sensor traffic and range outcomes."""
    samples_read: int = 0
    updates_applied: int = 0
    updates_skipped: int = 0
    ranges_ok: int = 0
    ranges_busy: int = 0
    ranges_timed_out: int = 0

    @property
    def skip_rate(self) -> float:
        """Fraction of samples whose update was skipped."""
        if self.samples_read == 0:
            return 0.0
        return self.updates_skipped / self.samples_read

    @property
    def range_success_rate(self) -> float:
        """Fraction of range measurements that resolved to a distance."""
        total = self.ranges_ok + self.ranges_busy + self.ranges_timed_out
        if total == 0:
            return 0.0
        return self.ranges_ok / total
