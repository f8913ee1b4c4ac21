"""Tests for the self-calibrating heading EKF."""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from robot_sensing.core.clock import SimulatedClock
from robot_sensing.core.config import EkfConfig
from robot_sensing.core.types import CalibratedField, UpdateOutcome
from robot_sensing.core.validation import CovarianceValidator
from robot_sensing.fusion.heading_ekf import (
    HEADING,
    MAGNITUDE,
    RATE,
    STATE_SIZE,
    X_BIAS,
    Z_BIAS,
    HeadingEstimator,
    wrap_angle,
)


def field_at(heading, magnitude=30000.0, bias=(0.0, 0.0), scale=(1.0, 1.0), noise=(0.0, 0.0)):
    """Synthesize a calibrated field for a given heading."""
    return CalibratedField(
        x=int(round(magnitude * np.sin(heading) * scale[0] + bias[0] + noise[0])),
        z=int(round(magnitude * np.cos(heading) * scale[1] + bias[1] + noise[1])),
    )


def zero_config():
    """Tuning with every covariance zero, so S is singular."""
    return EkfConfig(
        initial_covariance=[0.0] * STATE_SIZE,
        process_noise=[0.0] * STATE_SIZE,
        measurement_noise=[0.0, 0.0],
    )


class TestWrapAngle:
    """Tests for heading wrapping."""

    def test_within_range_unchanged(self):
        """Angles already in range are untouched."""
        assert wrap_angle(1.0) == pytest.approx(1.0)
        assert wrap_angle(-1.0) == pytest.approx(-1.0)

    def test_wraps_positive(self):
        """Angles past pi wrap to negative."""
        assert wrap_angle(np.pi + 0.1) == pytest.approx(-np.pi + 0.1)

    def test_half_open_interval(self):
        """pi maps to -pi."""
        assert wrap_angle(np.pi) == pytest.approx(-np.pi)

    def test_multiple_turns(self):
        """Several full turns are removed."""
        assert wrap_angle(6 * np.pi + 0.5) == pytest.approx(0.5)


class TestInitialization:
    """Tests for filter construction."""

    def test_initial_state(self, sample_field):
        """State starts from the sample with zero bias and unit scale."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        state = est.state

        assert state.heading_angle == pytest.approx(np.arctan2(sample_field.x, sample_field.z))
        assert state.field_magnitude == pytest.approx(np.hypot(sample_field.x, sample_field.z))
        assert state.angular_rate == 0.0
        assert state.x_bias == 0.0
        assert state.z_bias == 0.0
        assert state.x_scale == 1.0
        assert state.z_scale == 1.0

    def test_default_covariance_identity(self, sample_field):
        """Default tuning uses identity matrices."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())

        assert_array_equal(est.covariance, np.eye(STATE_SIZE))
        assert_array_equal(est.Q, np.eye(STATE_SIZE))
        assert_array_equal(est.R, np.eye(2))

    def test_idempotent(self, sample_field, tracking_config):
        """Two filters from the same sample start identical."""
        a = HeadingEstimator(sample_field, tracking_config, SimulatedClock())
        b = HeadingEstimator(sample_field, tracking_config, SimulatedClock())

        assert_array_equal(a.state_vector, b.state_vector)
        assert_array_equal(a.covariance, b.covariance)

    def test_accessors_return_copies(self, sample_field):
        """Mutating returned arrays does not affect the filter."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        est.state_vector[HEADING] = 99.0
        est.covariance[0, 0] = 99.0

        assert est.heading != 99.0
        assert est.covariance[0, 0] == 1.0


class TestPredict:
    """Tests for the prediction step."""

    def test_heading_advances_by_rate(self, sample_field):
        """Heading integrates angular rate."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        h0 = est.heading
        est.x[RATE] = 0.5

        est.predict(0.1)

        assert est.heading == pytest.approx(h0 + 0.05)
        assert est.x[RATE] == 0.5

    def test_covariance_grows(self, sample_field):
        """P = F P F^T + Q."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        est.predict(0.1)

        F = np.eye(STATE_SIZE)
        F[HEADING, RATE] = 0.1
        expected = F @ np.eye(STATE_SIZE) @ F.T + np.eye(STATE_SIZE)
        assert_allclose(est.covariance, expected)

    def test_negative_dt_clamped(self, sample_field):
        """Negative dt is treated as zero."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        h0 = est.heading
        est.x[RATE] = 1.0

        est.predict(-1.0)

        assert est.heading == pytest.approx(h0)
        assert_allclose(est.covariance, 2.0 * np.eye(STATE_SIZE))

    def test_non_finite_dt_clamped(self, sample_field):
        """NaN dt does not poison the state."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        est.x[RATE] = 1.0

        est.predict(float("nan"))

        assert np.isfinite(est.state_vector).all()
        assert np.isfinite(est.covariance).all()

    def test_refreshes_last_update_time(self, sample_field):
        """Every predict records the clock time."""
        clock = SimulatedClock()
        est = HeadingEstimator(sample_field, clock=clock)
        clock.advance_s(0.25)

        est.predict(0.0)

        assert est.last_update_time == pytest.approx(0.25)

    def test_heading_wrapped(self, sample_field):
        """Heading wraps into [-pi, pi) after predict."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        est.x[HEADING] = 3.1
        est.x[RATE] = 1.0

        est.predict(0.1)

        assert est.heading == pytest.approx(3.2 - 2 * np.pi)

    def test_heading_unwrapped_when_disabled(self, sample_field):
        """Wrapping can be turned off."""
        est = HeadingEstimator(sample_field, EkfConfig(wrap_heading=False), SimulatedClock())
        est.x[HEADING] = 3.1
        est.x[RATE] = 1.0

        est.predict(0.1)

        assert est.heading == pytest.approx(3.2)


class TestCovarianceCeiling:
    """Tests for bounding covariance growth."""

    def test_variance_capped(self, sample_field):
        """A variance over its ceiling is scaled back to the ceiling."""
        config = EkfConfig(process_noise=[1e3, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0])
        est = HeadingEstimator(sample_field, config, SimulatedClock())

        est.predict(0.01)

        assert est.covariance[HEADING, HEADING] == pytest.approx(100.0)
        assert est.covariance[MAGNITUDE, MAGNITUDE] == pytest.approx(2.0)

    def test_capped_covariance_stays_psd(self, sample_field):
        """Congruence scaling keeps P positive semi-definite."""
        config = EkfConfig(process_noise=[1e3, 1e3, 1.0, 1.0, 1.0, 1e3, 1e3])
        est = HeadingEstimator(sample_field, config, SimulatedClock())
        validator = CovarianceValidator()

        for _ in range(50):
            est.predict(1.0)
            assert validator.is_psd(est.covariance)
            assert np.all(np.diag(est.covariance) <= np.array(config.covariance_ceiling) * (1 + 1e-12))


class TestUpdate:
    """Tests for the measurement update."""

    def test_consistent_sample_changes_nothing(self, sample_field):
        """Zero innovation leaves the state untouched."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        x0 = est.state_vector

        outcome = est.update(sample_field)

        assert outcome is UpdateOutcome.APPLIED
        assert_allclose(est.state_vector, x0, atol=1e-9)
        assert est.update_count == 1

    def test_covariance_shrinks(self, sample_field):
        """Applied updates reduce heading uncertainty."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        before = est.heading_uncertainty

        est.update(sample_field)

        assert est.heading_uncertainty < before

    def test_non_finite_rejected(self, sample_field):
        """NaN measurements are rejected without touching the state."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        x0 = est.state_vector
        P0 = est.covariance

        outcome = est.update(CalibratedField(x=float("nan"), z=1000))

        assert outcome is UpdateOutcome.REJECTED_NONFINITE
        assert_array_equal(est.state_vector, x0)
        assert_array_equal(est.covariance, P0)
        assert est.update_count == 0

    def test_singular_innovation_skipped(self, sample_field):
        """A singular S keeps the predicted state and counts the skip."""
        est = HeadingEstimator(sample_field, zero_config(), SimulatedClock())
        x0 = est.state_vector
        other = field_at(2.0)

        first = est.predict_and_update(other, dt=0.01)
        outcome = est.last_outcome
        est.predict_and_update(other, dt=0.01)

        assert outcome is UpdateOutcome.SKIPPED_SINGULAR
        assert_allclose(first.to_array(), x0)
        assert_allclose(est.state_vector, x0)
        assert est.consecutive_skips == 2
        assert est.total_skips == 2
        assert est.update_count == 0

    def test_skip_counter_resets_on_update(self, sample_field):
        """The consecutive counter resets once an update is applied."""
        est = HeadingEstimator(sample_field, zero_config(), SimulatedClock())
        est.update(sample_field)
        est.update(sample_field)

        est.R = np.eye(2)
        outcome = est.update(sample_field)

        assert outcome is UpdateOutcome.APPLIED
        assert est.consecutive_skips == 0
        assert est.total_skips == 2

    def test_heading_wrapped_after_update(self):
        """Update keeps heading in [-pi, pi) across the discontinuity."""
        est = HeadingEstimator(field_at(np.pi - 0.01), clock=SimulatedClock())

        for _ in range(20):
            est.predict_and_update(field_at(-np.pi + 0.05), dt=0.01)

        assert -np.pi <= est.heading < np.pi
        assert abs(wrap_angle(est.heading - (-np.pi + 0.05))) < 0.01


class TestPredictAndUpdate:
    """Tests for the combined cycle."""

    def test_dt_from_clock(self, sample_field):
        """Omitted dt is measured with the injected clock."""
        clock = SimulatedClock()
        config = EkfConfig(
            initial_covariance=[0.0] * STATE_SIZE,
            process_noise=[0.0] * STATE_SIZE,
            measurement_noise=[1.0, 1.0],
        )
        est = HeadingEstimator(sample_field, config, clock)
        h0 = est.heading
        est.x[RATE] = 0.4
        clock.advance_s(0.5)

        estimate = est.predict_and_update(sample_field)

        # Zero covariance gives zero gain, so only the prediction moves heading
        assert est.last_outcome is UpdateOutcome.APPLIED
        assert estimate.heading_angle == pytest.approx(h0 + 0.2)

    def test_returns_current_state(self, sample_field):
        """Returned estimate matches the filter state."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        estimate = est.predict_and_update(field_at(0.6), dt=0.01)

        assert_array_equal(estimate.to_array(), est.state_vector)


class TestStaleness:
    """Tests for update staleness tracking."""

    def test_stale_without_updates(self, sample_field):
        """No applied update for too long marks the filter stale."""
        clock = SimulatedClock()
        est = HeadingEstimator(sample_field, EkfConfig(max_update_age_s=1.0), clock)
        assert not est.is_stale

        clock.advance_s(1.5)

        assert est.is_stale
        assert est.seconds_since_update == pytest.approx(1.5)

    def test_fresh_after_update(self, sample_field):
        """An applied update clears staleness."""
        clock = SimulatedClock()
        est = HeadingEstimator(sample_field, EkfConfig(max_update_age_s=1.0), clock)
        clock.advance_s(1.5)

        est.predict_and_update(sample_field, dt=0.01)

        assert not est.is_stale

    def test_skips_do_not_refresh(self, sample_field):
        """Skipped updates leave the filter stale."""
        clock = SimulatedClock()
        config = zero_config()
        config.max_update_age_s = 1.0
        est = HeadingEstimator(sample_field, config, clock)
        clock.advance_s(1.5)

        est.predict_and_update(field_at(1.0), dt=0.01)

        assert est.last_outcome is UpdateOutcome.SKIPPED_SINGULAR
        assert est.is_stale


class TestCovariancePsd:
    """Covariance stays positive semi-definite."""

    def test_random_sequence(self, tracking_config):
        """Random headings and time steps keep P PSD after every step."""
        rng = np.random.default_rng(3)
        est = HeadingEstimator(field_at(0.2), tracking_config, SimulatedClock())

        for _ in range(500):
            dt = rng.uniform(0.0, 0.05)
            est.predict(dt)
            P = est.covariance
            scale = max(np.max(np.abs(P)), 1.0)
            assert np.min(np.linalg.eigvalsh(P)) >= -1e-9 * scale

            est.update(field_at(rng.uniform(-np.pi, np.pi), noise=rng.normal(0.0, 50.0, 2)))
            P = est.covariance
            scale = max(np.max(np.abs(P)), 1.0)
            assert np.min(np.linalg.eigvalsh(P)) >= -1e-9 * scale
            assert_allclose(P, P.T)


class TestConvergence:
    """Stationary convergence and rotation recovery."""

    def test_stationary_fixed_point(self, sample_field):
        """Feeding the initial sample holds heading and zero bias."""
        est = HeadingEstimator(sample_field, clock=SimulatedClock())
        expected = np.arctan2(sample_field.x, sample_field.z)

        for _ in range(100):
            est.predict_and_update(sample_field, dt=0.01)

        assert est.heading == pytest.approx(expected, abs=1e-6)
        assert abs(est.x[X_BIAS]) < 1e-3
        assert abs(est.x[Z_BIAS]) < 1e-3

    def test_stationary_convergence(self, convergence_config):
        """A wrong initial heading converges to the observed one."""
        truth = 1.0
        est = HeadingEstimator(field_at(truth - 0.3), convergence_config, SimulatedClock())
        sample = field_at(truth)

        # A single orientation cannot separate heading from bias and scale;
        # the tight calibration priors in the fixture pin those down
        for _ in range(300):
            est.predict_and_update(sample, dt=0.01)

        assert abs(wrap_angle(est.heading - np.arctan2(sample.x, sample.z))) < 0.02
        assert abs(est.x[X_BIAS]) < 100
        assert abs(est.x[Z_BIAS]) < 100

    def test_rotation_recovery(self, tracking_config):
        """Heading, bias and scale are recovered while turning."""
        rng = np.random.default_rng(7)
        rate = 0.5
        dt = 0.02
        steps = 4000
        magnitude = 30000.0
        bias = (2000.0, -1500.0)
        scale = (1.05, 0.95)

        est = HeadingEstimator(
            field_at(0.0, magnitude, bias, scale), tracking_config, SimulatedClock()
        )

        errors = []
        for k in range(1, steps + 1):
            truth = rate * k * dt
            sample = field_at(truth, magnitude, bias, scale, rng.normal(0.0, 50.0, 2))
            est.predict_and_update(sample, dt=dt)
            if k > steps // 2:
                errors.append(wrap_angle(est.heading - truth))

        rms = float(np.sqrt(np.mean(np.square(errors))))
        state = est.state

        assert rms < 0.05
        assert state.angular_rate == pytest.approx(rate, abs=0.02)
        assert state.x_bias == pytest.approx(bias[0], abs=600)
        assert state.z_bias == pytest.approx(bias[1], abs=600)
        # Magnitude and scale are only identifiable as products
        assert state.x_scale / state.z_scale == pytest.approx(scale[0] / scale[1], abs=0.05)
        assert state.field_magnitude * state.x_scale == pytest.approx(magnitude * scale[0], rel=0.05)
        assert state.field_magnitude * state.z_scale == pytest.approx(magnitude * scale[1], rel=0.05)
