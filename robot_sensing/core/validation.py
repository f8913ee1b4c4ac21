"""Input and state validation for the heading filter."""

import numpy as np
from numpy.typing import NDArray

from .types import ValidationResult
from .config import Config


class CovarianceValidator:
    """Checks that a covariance matrix is a valid uncertainty estimate."""

    def __init__(self, symmetry_tol: float = 1e-9, eigen_tol: float = 1e-9):
        """Initialize validator.

        Args:
            symmetry_tol: Allowed relative asymmetry.
            eigen_tol: Allowed negative eigenvalue, relative to the largest.
        """
        self.symmetry_tol = symmetry_tol
        self.eigen_tol = eigen_tol

    def validate(self, P: NDArray[np.float64]) -> ValidationResult:
        """Validate covariance matrix.

        Args:
            P: Square covariance matrix.

        Returns:
            ValidationResult with status and any issues.
        """
        result = ValidationResult(is_valid=True)

        if P.ndim != 2 or P.shape[0] != P.shape[1]:
            result.add_error(f"Covariance is not square: shape={P.shape}")
            return result

        if not np.isfinite(P).all():
            result.add_error("Covariance contains non-finite values")
            return result

        scale = max(float(np.max(np.abs(P))), 1.0)
        asymmetry = float(np.max(np.abs(P - P.T)))
        if asymmetry > self.symmetry_tol * scale:
            result.add_error(f"Covariance not symmetric: max asymmetry={asymmetry:.3e}")

        min_eig = float(np.min(np.linalg.eigvalsh(0.5 * (P + P.T))))
        if min_eig < -self.eigen_tol * scale:
            result.add_error(f"Covariance not positive semi-definite: min eigenvalue={min_eig:.3e}")

        return result

    def is_psd(self, P: NDArray[np.float64]) -> bool:
        """Simple boolean PSD check."""
        return self.validate(P).is_valid


def validate_dt(dt: float, config: Config) -> ValidationResult:
    """Validate time step for a filter prediction.

    Negative steps are reported as warnings because the filter clamps
    them to zero rather than rejecting the cycle.

    Args:
        dt: Time step in seconds.
        config: System configuration.

    Returns:
        ValidationResult with status.
    """
    result = ValidationResult(is_valid=True)
    max_dt = config.ekf.max_update_age_s

    if not np.isfinite(dt):
        result.add_error(f"Non-finite dt: {dt}")
    elif dt < 0:
        result.add_warning(f"Negative dt clamped to zero: {dt*1000:.3f}ms")
    elif dt > max_dt:
        result.add_warning(f"dt too large: {dt*1000:.2f}ms")

    return result
