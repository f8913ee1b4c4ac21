"""Pytest fixtures for heading estimation and ranging tests."""

import pytest
import numpy as np

from robot_sensing.core.clock import SimulatedClock
from robot_sensing.core.config import Config, EkfConfig
from robot_sensing.core.types import CalibratedField
from robot_sensing.communication.gpio import SimulatedSonar


@pytest.fixture
def config() -> Config:
    """Create default configuration for tests."""
    return Config()


@pytest.fixture
def clock() -> SimulatedClock:
    """Simulated clock with 1 us polling granularity."""
    return SimulatedClock()


@pytest.fixture
def sonar(clock) -> SimulatedSonar:
    """Simulated ultrasonic sensor sharing the test clock."""
    return SimulatedSonar(clock)


@pytest.fixture
def sample_field() -> CalibratedField:
    """Calibrated field for a robot heading roughly 30 degrees.

    30000 nT horizontal magnitude.
    """
    heading = np.deg2rad(30)
    return CalibratedField(
        x=int(round(30000 * np.sin(heading))),
        z=int(round(30000 * np.cos(heading))),
    )


@pytest.fixture
def convergence_config() -> EkfConfig:
    """Tuning for a stationary robot with a poor initial guess.

    From one orientation a heading error is indistinguishable from bias
    and scale error, so those priors are held tight and only heading and
    magnitude are left free.
    """
    return EkfConfig(
        initial_covariance=[0.5, 0.1, 1e4, 1e2, 1e2, 1e-8, 1e-8],
        process_noise=[1e-4, 1e-4, 1.0, 1e-4, 1e-4, 1e-14, 1e-14],
        measurement_noise=[2500.0, 2500.0],
    )


@pytest.fixture
def tracking_config() -> EkfConfig:
    """Tuning for a rotating robot with unknown bias and scale."""
    return EkfConfig(
        initial_covariance=[0.1, 1.0, 1e6, 1e7, 1e7, 1e-2, 1e-2],
        process_noise=[1e-8, 1e-6, 1e-2, 1e-2, 1e-2, 1e-12, 1e-12],
        measurement_noise=[2500.0, 2500.0],
    )
