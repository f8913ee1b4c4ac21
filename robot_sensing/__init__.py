"""Magnetometer heading estimation and ultrasonic ranging for a small robot."""

__version__ = "0.1.0"
