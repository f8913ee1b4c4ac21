"""Exceptions raised at the hardware boundary."""


class SensorIoError(Exception):
    """Base exception for sensor I/O failures."""
    pass


class BusError(SensorIoError):
    """I2C transaction with a sensor failed."""
    pass


class GpioError(SensorIoError):
    """GPIO daemon unavailable or pin access failed."""
    pass
