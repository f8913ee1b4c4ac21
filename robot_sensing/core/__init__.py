"""Core module for heading estimation and ranging."""

from .types import (
    RawFieldSample,
    CalibratedField,
    HeadingEstimate,
    UpdateOutcome,
    Distance,
    Busy,
    TimedOut,
    TimeoutStage,
    RangeResult,
    ValidationResult,
    SensorStats,
)
from .errors import SensorIoError, BusError, GpioError
from .clock import MonotonicClock, SimulatedClock
from .validation import CovarianceValidator, validate_dt
from .config import Config, load_config

__all__ = [
    "RawFieldSample",
    "CalibratedField",
    "HeadingEstimate",
    "UpdateOutcome",
    "Distance",
    "Busy",
    "TimedOut",
    "TimeoutStage",
    "RangeResult",
    "ValidationResult",
    "SensorStats",
    "SensorIoError",
    "BusError",
    "GpioError",
    "MonotonicClock",
    "SimulatedClock",
    "CovarianceValidator",
    "validate_dt",
    "Config",
    "load_config",
]
