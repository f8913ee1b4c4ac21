"""Fixed-point hard and soft iron correction for raw magnetometer counts.

Integer arithmetic is kept so results match previously recorded
calibration constants bit for bit. Division truncates toward zero.
"""

from ..core.config import CalibrationConfig
from ..core.types import CalibratedField, RawFieldSample


def trunc_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero.

    Python's ``//`` floors, which differs from truncation for negative
    quotients.
    """
    if denominator == 0:
        raise ZeroDivisionError("denominator must be non-zero")
    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient


class FieldCalibrator:
    """Converts raw counts to a calibrated field in nT."""

    def __init__(self, config: CalibrationConfig):
        """Initialize calibrator.

        Args:
            config: Calibration constants.
        """
        self._cfg = config

    def calibrate(self, sample: RawFieldSample) -> CalibratedField:
        """Apply unit conversion, hard-iron offset and soft-iron scale.

        Args:
            sample: Raw register values.

        Returns:
            Calibrated field in nT.
        """
        cfg = self._cfg
        scaled_x = sample.x * cfg.raw_to_nanotesla
        scaled_z = sample.z * cfg.raw_to_nanotesla

        x = trunc_div((scaled_x - cfg.x_offset) * cfg.x_scale_num, cfg.scale_den)
        z = trunc_div((scaled_z - cfg.z_offset) * cfg.z_scale_num, cfg.scale_den)
        return CalibratedField(x=x, z=z)

    @property
    def config(self) -> CalibrationConfig:
        """Calibration constants in use."""
        return self._cfg
