"""I2C driver for the LSM303AGR magnetometer.

Only the x and z axes are used; the sensor is mounted so that the
horizontal field lies in the x/z plane.
"""

import logging
import struct
from typing import Optional

import numpy as np
from smbus2 import SMBus

from ..core.clock import MonotonicClock
from ..core.config import BusConfig, CalibrationConfig
from ..core.errors import BusError
from ..core.ports import Clock
from ..core.types import RawFieldSample

logger = logging.getLogger(__name__)

CFG_REG_A_M = 0x60
CFG_REG_B_M = 0x61
STATUS_REG_M = 0x67
OUT_BASE_REG_M = 0x68
AUTO_INCREMENT = 0x80

# Continuous mode, high resolution, 100 Hz output data rate
CFG_A_CONTINUOUS_100HZ = 0b00001100
# Low-pass filter enabled
CFG_B_LPF = 0b00000001
# x, y and z data available
STATUS_ZYXDA = 0b00001000

INT16_MIN = -32768
INT16_MAX = 32767


def decode_field(data: bytes) -> RawFieldSample:
    """Decode the six output registers into an x/z sample.

    Args:
        data: OUTX_L, OUTX_H, OUTY_L, OUTY_H, OUTZ_L, OUTZ_H.

    Returns:
        Raw sample with signed 16-bit x and z.
    """
    x, _y, z = struct.unpack("<hhh", bytes(data))
    return RawFieldSample(x=x, z=z)


class Lsm303agr:
    """LSM303AGR magnetometer on an SMBus.

    The bus handle is owned by this instance for its lifetime.
    """

    def __init__(self, bus: SMBus, address: int = 0x1E):
        """Configure the magnetometer.

        Args:
            bus: Open SMBus handle.
            address: 7-bit I2C address.

        Raises:
            BusError: If the configuration writes fail.
        """
        self._bus = bus
        self._address = address
        try:
            bus.write_byte_data(address, CFG_REG_A_M, CFG_A_CONTINUOUS_100HZ)
            bus.write_byte_data(address, CFG_REG_B_M, CFG_B_LPF)
        except OSError as e:
            raise BusError(f"Failed to configure magnetometer at 0x{address:02X}: {e}") from e
        logger.info("LSM303AGR magnetometer configured at 0x%02X", address)

    @classmethod
    def open(cls, config: BusConfig) -> "Lsm303agr":
        """Open the configured bus and set up the sensor.

        Raises:
            BusError: If the bus cannot be opened or the sensor configured.
        """
        try:
            bus = SMBus(config.i2c_bus)
        except OSError as e:
            raise BusError(f"Failed to open I2C bus {config.i2c_bus}: {e}") from e
        return cls(bus, config.magnetometer_address)

    def sample_ready(self) -> bool:
        """Whether a new x/y/z sample is available.

        Raises:
            BusError: If the status read fails.
        """
        try:
            status = self._bus.read_byte_data(self._address, STATUS_REG_M)
        except OSError as e:
            raise BusError(f"Failed to read magnetometer status: {e}") from e
        return status & STATUS_ZYXDA == STATUS_ZYXDA

    def read_raw_field(self) -> RawFieldSample:
        """Read the latest raw x/z sample.

        Raises:
            BusError: If the data read fails.
        """
        try:
            data = self._bus.read_i2c_block_data(
                self._address, OUT_BASE_REG_M | AUTO_INCREMENT, 6
            )
        except OSError as e:
            raise BusError(f"Failed to read magnetometer data: {e}") from e
        return decode_field(bytes(data))

    def close(self) -> None:
        """Release the bus."""
        self._bus.close()
        logger.info("Magnetometer bus closed")

    def __enter__(self) -> "Lsm303agr":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


class MockMagnetometer:
    """Mock magnetometer for testing.

    Generates raw counts for a robot turning at a constant rate in a
    horizontal field, inverted through the calibration constants so that
    calibration recovers the synthetic field (plus injected bias, scale
    and noise).
    """

    def __init__(
        self,
        calibration: CalibrationConfig,
        clock: Optional[Clock] = None,
        magnitude_nt: float = 30000.0,
        rate_rad_s: float = 0.3,
        initial_heading: float = 0.0,
        bias_nt: tuple = (0.0, 0.0),
        scale: tuple = (1.0, 1.0),
        noise_nt: float = 0.0,
        sample_period_s: float = 0.01,
        seed: Optional[int] = None,
    ):
        """Initialize mock magnetometer.

        Args:
            calibration: Constants the consumer will calibrate with.
            clock: Time source for heading and data-ready timing.
            magnitude_nt: Horizontal field magnitude.
            rate_rad_s: Turn rate.
            initial_heading: Heading at construction time.
            bias_nt: Residual (x, z) bias after calibration.
            scale: Residual (x, z) scale after calibration.
            noise_nt: Gaussian noise standard deviation.
            sample_period_s: Interval between ready samples.
            seed: Random seed for the noise.
        """
        self._cal = calibration
        self._clock = clock if clock is not None else MonotonicClock()
        self.magnitude_nt = magnitude_nt
        self.rate_rad_s = rate_rad_s
        self.bias_nt = bias_nt
        self.scale = scale
        self.noise_nt = noise_nt
        self.sample_period_s = sample_period_s
        self._rng = np.random.default_rng(seed)

        self._start_s = self._clock.now_s()
        self._initial_heading = initial_heading
        self._next_ready_s = self._start_s
        self.samples_read = 0

    def true_heading(self) -> float:
        """Ground-truth heading at the current clock time."""
        elapsed = self._clock.now_s() - self._start_s
        return self._initial_heading + self.rate_rad_s * elapsed

    def sample_ready(self) -> bool:
        """Ready once per sample period."""
        return self._clock.now_s() >= self._next_ready_s

    def read_raw_field(self) -> RawFieldSample:
        """Synthesize raw counts for the current heading."""
        heading = self.true_heading()
        noise = self._rng.normal(0.0, self.noise_nt, 2) if self.noise_nt > 0 else np.zeros(2)
        fx = self.magnitude_nt * np.sin(heading) * self.scale[0] + self.bias_nt[0] + noise[0]
        fz = self.magnitude_nt * np.cos(heading) * self.scale[1] + self.bias_nt[1] + noise[1]

        self._next_ready_s = self._clock.now_s() + self.sample_period_s
        self.samples_read += 1
        return RawFieldSample(
            x=self._to_counts(fx, self._cal.x_offset, self._cal.x_scale_num),
            z=self._to_counts(fz, self._cal.z_offset, self._cal.z_scale_num),
        )

    def _to_counts(self, field_nt: float, offset: int, scale_num: int) -> int:
        """Invert the fixed-point calibration for one axis."""
        scaled = field_nt * self._cal.scale_den / scale_num + offset
        counts = int(round(scaled / self._cal.raw_to_nanotesla))
        return max(INT16_MIN, min(INT16_MAX, counts))

    def close(self) -> None:
        """Nothing to release."""
        logger.info("Mock magnetometer closed")
