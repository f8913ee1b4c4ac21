"""Self-calibrating heading EKF for a two-axis magnetometer.

State vector: [heading, angular_rate, magnitude, x_bias, z_bias,
x_scale, z_scale] (7 dimensions)

The filter estimates the heading together with the hard-iron bias and
soft-iron scale of each axis, so calibration keeps improving while the
robot turns.
"""

import logging
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.clock import MonotonicClock
from ..core.config import EkfConfig
from ..core.ports import Clock
from ..core.types import CalibratedField, HeadingEstimate, UpdateOutcome

logger = logging.getLogger(__name__)

STATE_SIZE = 7
HEADING, RATE, MAGNITUDE, X_BIAS, Z_BIAS, X_SCALE, Z_SCALE = range(STATE_SIZE)


def wrap_angle(angle: float) -> float:
    """Wrap angle into [-pi, pi)."""
    return (angle + np.pi) % (2.0 * np.pi) - np.pi


class HeadingEstimator:
    """EKF over heading, rate, field magnitude and per-axis calibration.

    Process model:
    - Heading: advances by angular_rate * dt
    - Everything else: random walk

    Measurement model:
    - x = magnitude * sin(heading) * x_scale + x_bias
    - z = magnitude * cos(heading) * z_scale + z_bias

    The transition is linear, so F is both the transition matrix and its
    Jacobian. The measurement is nonlinear and is linearized around the
    predicted state on every update.
    """

    def __init__(
        self,
        initial_field: CalibratedField,
        config: Optional[EkfConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the filter from one observed sample.

        Args:
            initial_field: First calibrated field reading.
            config: Filter tuning. Defaults to identity covariances.
            clock: Monotonic clock used to time predictions.
        """
        self._config = config if config is not None else EkfConfig()
        self._clock = clock if clock is not None else MonotonicClock()

        x = float(initial_field.x)
        z = float(initial_field.z)

        # State vector: [heading, rate, magnitude, bx, bz, sx, sz]
        self.x = np.array([
            np.arctan2(x, z),
            0.0,
            np.sqrt(x * x + z * z),
            0.0, 0.0,
            1.0, 1.0,
        ], dtype=np.float64)

        self.P = np.diag(np.asarray(self._config.initial_covariance, dtype=np.float64))
        self.Q = np.diag(np.asarray(self._config.process_noise, dtype=np.float64))
        self.R = np.diag(np.asarray(self._config.measurement_noise, dtype=np.float64))
        self._ceiling = np.asarray(self._config.covariance_ceiling, dtype=np.float64)

        self.last_update_time = self._clock.now_s()
        self._last_applied_time = self.last_update_time

        # Statistics
        self.update_count = 0
        self.consecutive_skips = 0
        self.total_skips = 0
        self.last_outcome: Optional[UpdateOutcome] = None

    def predict(self, dt: float) -> None:
        """Prediction step.

        Args:
            dt: Time since the previous prediction in seconds. Negative
                or non-finite values are treated as zero.
        """
        if not np.isfinite(dt) or dt < 0:
            dt = 0.0

        F = np.eye(STATE_SIZE)
        F[HEADING, RATE] = dt

        self.x = F @ self.x
        self.P = F @ self.P @ F.T + self.Q
        self.P = 0.5 * (self.P + self.P.T)
        self._apply_covariance_ceiling()

        if self._config.wrap_heading:
            self.x[HEADING] = wrap_angle(self.x[HEADING])

        self.last_update_time = self._clock.now_s()

    def update(self, field: CalibratedField) -> UpdateOutcome:
        """Measurement update step.

        A numerically singular innovation covariance skips the update and
        keeps the predicted state.

        Args:
            field: Calibrated field reading in nT.

        Returns:
            Whether the update was applied, skipped or rejected.
        """
        z = field.to_array()
        if not np.isfinite(z).all():
            logger.warning("Rejected non-finite field sample: %s", z)
            self.last_outcome = UpdateOutcome.REJECTED_NONFINITE
            return self.last_outcome

        h, H = self._measurement(self.x)

        # Innovation covariance: S = H @ P @ H.T + R
        S = H @ self.P @ H.T + self.R
        S = 0.5 * (S + S.T)

        K = self._kalman_gain(H, S)
        if K is None:
            return self._skip_update()

        y = z - h
        self.x = self.x + K @ y

        # Joseph form: P = (I - KH) P (I - KH)^T + K R K^T
        I_KH = np.eye(STATE_SIZE) - K @ H
        self.P = I_KH @ self.P @ I_KH.T + K @ self.R @ K.T
        self.P = 0.5 * (self.P + self.P.T)

        if self._config.wrap_heading:
            self.x[HEADING] = wrap_angle(self.x[HEADING])

        if self.consecutive_skips:
            logger.info("Heading update resumed after %d skipped cycles",
                        self.consecutive_skips)
        self.consecutive_skips = 0
        self.update_count += 1
        self._last_applied_time = self._clock.now_s()
        self.last_outcome = UpdateOutcome.APPLIED
        return self.last_outcome

    def predict_and_update(
        self,
        field: CalibratedField,
        dt: Optional[float] = None,
    ) -> HeadingEstimate:
        """Run one predict/update cycle for a new sample.

        Args:
            field: Calibrated field reading in nT.
            dt: Elapsed time in seconds. If None, measured with the clock
                since the last prediction.

        Returns:
            Updated state estimate.
        """
        if dt is None:
            dt = self._clock.now_s() - self.last_update_time
        self.predict(dt)
        self.update(field)
        return self.state

    def _measurement(
        self,
        x: NDArray[np.float64],
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Predicted measurement and its 2x7 Jacobian."""
        heading = x[HEADING]
        magnitude = x[MAGNITUDE]
        x_scale = x[X_SCALE]
        z_scale = x[Z_SCALE]
        sin_h = np.sin(heading)
        cos_h = np.cos(heading)

        h = np.array([
            magnitude * sin_h * x_scale + x[X_BIAS],
            magnitude * cos_h * z_scale + x[Z_BIAS],
        ])

        H = np.zeros((2, STATE_SIZE))
        H[0, HEADING] = magnitude * cos_h * x_scale
        H[1, HEADING] = -magnitude * sin_h * z_scale
        # Angular rate does not enter the measurement
        H[0, MAGNITUDE] = sin_h * x_scale
        H[1, MAGNITUDE] = cos_h * z_scale
        H[0, X_BIAS] = 1.0
        H[1, Z_BIAS] = 1.0
        H[0, X_SCALE] = magnitude * sin_h
        H[1, Z_SCALE] = magnitude * cos_h

        return h, H

    def _kalman_gain(
        self,
        H: NDArray[np.float64],
        S: NDArray[np.float64],
    ) -> Optional[NDArray[np.float64]]:
        """Kalman gain P H^T S^-1 via Cholesky, or None if S is singular."""
        if not np.isfinite(S).all():
            return None
        if np.min(np.diag(S)) < self._config.innovation_floor:
            return None

        try:
            L = np.linalg.cholesky(S)
        except np.linalg.LinAlgError:
            return None

        # K^T = S^-1 H P = L^-T L^-1 H P
        HP = H @ self.P
        K = np.linalg.solve(L.T, np.linalg.solve(L, HP)).T

        if not np.isfinite(K).all():
            return None
        return K

    def _skip_update(self) -> UpdateOutcome:
        """Keep the predicted state and count the skipped cycle."""
        self.consecutive_skips += 1
        self.total_skips += 1
        if self.consecutive_skips == 1:
            logger.warning("Singular innovation covariance, skipping heading update")
        else:
            logger.debug("Heading update skipped (%d consecutive)", self.consecutive_skips)
        self.last_outcome = UpdateOutcome.SKIPPED_SINGULAR
        return self.last_outcome

    def _apply_covariance_ceiling(self) -> None:
        """Bound variances while keeping P positive semi-definite.

        Rows and columns whose variance exceeds the ceiling are scaled by
        D P D with D diagonal, which preserves correlations.
        """
        variances = np.diag(self.P)
        over = variances > self._ceiling
        if not over.any():
            return

        factors = np.ones(STATE_SIZE)
        factors[over] = np.sqrt(self._ceiling[over] / variances[over])
        self.P = self.P * np.outer(factors, factors)
        logger.debug("Covariance ceiling applied to states %s", np.flatnonzero(over).tolist())

    @property
    def state(self) -> HeadingEstimate:
        """Current state estimate."""
        return HeadingEstimate.from_array(self.x)

    @property
    def state_vector(self) -> NDArray[np.float64]:
        """Copy of the 7-element state vector."""
        return self.x.copy()

    @property
    def covariance(self) -> NDArray[np.float64]:
        """Copy of the state covariance matrix."""
        return self.P.copy()

    @property
    def heading(self) -> float:
        """Current heading estimate in radians."""
        return float(self.x[HEADING])

    @property
    def heading_uncertainty(self) -> float:
        """Standard deviation of the heading estimate in radians."""
        return float(np.sqrt(max(self.P[HEADING, HEADING], 0.0)))

    @property
    def seconds_since_update(self) -> float:
        """Time since the last applied measurement update."""
        return self._clock.now_s() - self._last_applied_time

    @property
    def is_stale(self) -> bool:
        """Whether no measurement has been applied for too long."""
        return self.seconds_since_update > self._config.max_update_age_s
