"""Configuration management for heading estimation and ranging."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import os

import yaml

CONFIG_ENV_VAR = "ROBOT_SENSING_CONFIG"


@dataclass
class BusConfig:
    """I2C bus configuration for the magnetometer."""
    i2c_bus: int = 1
    magnetometer_address: int = 0x1E


@dataclass
class CalibrationConfig:
    """Fixed-point hard/soft iron calibration constants.

    Raw counts are multiplied by ``raw_to_nanotesla`` (1.5 mGauss per
    count, 100 nT per mGauss), the hard-iron offset is subtracted and the
    result is scaled by ``*_scale_num / scale_den``.
    """
    raw_to_nanotesla: int = 150
    x_offset: int = 77325
    z_offset: int = -11700
    x_scale_num: int = 9636
    z_scale_num: int = 11700
    scale_den: int = 10000


@dataclass
class EkfConfig:
    """Heading EKF tuning.

    Diagonal entries are ordered as the state vector:
    heading, angular_rate, magnitude, x_bias, z_bias, x_scale, z_scale.
    """
    initial_covariance: List[float] = field(
        default_factory=lambda: [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0]
    )
    process_noise: List[float] = field(
        default_factory=lambda: [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0]
    )
    measurement_noise: List[float] = field(default_factory=lambda: [1.0, 1.0])
    wrap_heading: bool = True
    innovation_floor: float = 1e-12
    covariance_ceiling: List[float] = field(
        default_factory=lambda: [1e2, 1e2, 1e10, 1e10, 1e10, 1e2, 1e2]
    )
    max_update_age_s: float = 1.0


@dataclass
class RangingConfig:
    """Ultrasonic ranging configuration (HC-SR04 style sensor)."""
    trigger_gpio: int = 13
    echo_gpio: int = 6
    settle_us: int = 2
    pulse_us: int = 10
    roundtrip_divisor_us: int = 58
    max_sensor_delay_us: int = 5800
    max_sensor_distance_cm: int = 500

    @property
    def max_echo_time_us(self) -> int:
        """Longest echo accepted before declaring no object in range."""
        return (
            self.max_sensor_distance_cm * self.roundtrip_divisor_us
            + self.roundtrip_divisor_us // 2
        )


@dataclass
class LoopConfig:
    """Host loop timing."""
    range_interval_s: float = 0.1
    emit_rate_hz: int = 10
    init_timeout_s: float = 2.0
    idle_sleep_s: float = 0.001


@dataclass
class MonitoringConfig:
    """Performance monitoring configuration."""
    target_hz: int = 100
    jitter_warning_ms: float = 5.0
    window_size: int = 1000
    log_interval_s: float = 10.0


@dataclass
class Config:
    """Complete configuration for the sensing subsystem."""
    bus: BusConfig = field(default_factory=BusConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    ekf: EkfConfig = field(default_factory=EkfConfig)
    ranging: RangingConfig = field(default_factory=RangingConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file. If None, the
            ``ROBOT_SENSING_CONFIG`` environment variable is consulted,
            then the packaged ``config/default.yaml``.

    Returns:
        Configuration object with all settings.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValueError: If a section has the wrong shape.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            config_path = env_path
        else:
            default_path = Path(__file__).parent.parent / "config" / "default.yaml"
            if default_path.exists():
                config_path = str(default_path)
            else:
                return Config()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return Config()

    return _build_config(data)


def _build_config(data: dict) -> Config:
    """Build Config object from dictionary."""
    ekf = EkfConfig(**data.get("ekf", {}))
    _check_length("ekf.initial_covariance", ekf.initial_covariance, 7)
    _check_length("ekf.process_noise", ekf.process_noise, 7)
    _check_length("ekf.measurement_noise", ekf.measurement_noise, 2)
    _check_length("ekf.covariance_ceiling", ekf.covariance_ceiling, 7)

    return Config(
        bus=BusConfig(**data.get("bus", {})),
        calibration=CalibrationConfig(**data.get("calibration", {})),
        ekf=ekf,
        ranging=RangingConfig(**data.get("ranging", {})),
        loop=LoopConfig(**data.get("loop", {})),
        monitoring=MonitoringConfig(**data.get("monitoring", {})),
    )


def _check_length(name: str, values: List[float], expected: int) -> None:
    """Reject diagonal lists of the wrong size."""
    if len(values) != expected:
        raise ValueError(f"{name} must have {expected} entries, got {len(values)}")
