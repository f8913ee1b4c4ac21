"""Ultrasonic ranging."""

from .sonar import RangeFinder, RangePhase, echo_to_centimeters

__all__ = ["RangeFinder", "RangePhase", "echo_to_centimeters"]
