"""Heading estimation from a two-axis magnetometer."""

from .calibration import FieldCalibrator, trunc_div
from .heading_ekf import HeadingEstimator, wrap_angle
from .tracker import HeadingTracker, TrackerHealth

__all__ = [
    "FieldCalibrator",
    "trunc_div",
    "HeadingEstimator",
    "wrap_angle",
    "HeadingTracker",
    "TrackerHealth",
]
