"""Hardware access for the magnetometer and the ultrasonic sensor."""

from .lsm303agr import Lsm303agr, MockMagnetometer, decode_field
from .gpio import PigpioInputPin, PigpioOutputPin, SimulatedSonar, open_pigpio

__all__ = [
    "Lsm303agr",
    "MockMagnetometer",
    "decode_field",
    "PigpioInputPin",
    "PigpioOutputPin",
    "SimulatedSonar",
    "open_pigpio",
]
