"""
Accuracy of a position estimate derived from its covariance.

For a Gaussian estimate, the probability that the error along a principal
axis lies within k standard deviations is

    confidence = 2·Φ(k) - 1

where Φ is the standard normal CDF. The accuracy along each principal axis is
k·sqrt(λ_i), with λ_i the eigenvalues of the covariance matrix.

Example:
    >>> acc = Accuracy(np.diag([4.0, 1.0]))
    >>> acc.smallest_accuracy, acc.largest_accuracy
    (2.0, 4.0)
    >>> round(acc.confidence, 4)
    0.9545
"""

from typing import Optional

import numpy as np
from scipy import stats

DEFAULT_STANDARD_DEVIATION_FACTOR = 2.0


def confidence_to_factor(confidence: float) -> float:
    """Number of standard deviations matching a two-sided confidence."""
    if not 0.0 <= confidence < 1.0:
        raise ValueError(f"confidence must be in [0, 1), got {confidence}")
    return float(stats.norm.ppf((confidence + 1.0) / 2.0))


def factor_to_confidence(factor: float) -> float:
    """Two-sided confidence of an interval of ``factor`` standard deviations."""
    if factor < 0:
        raise ValueError(f"standard deviation factor must be non-negative, got {factor}")
    return float(2.0 * stats.norm.cdf(factor) - 1.0)


class Accuracy:
    """
    Accuracy of a 2D or 3D position estimate.

    Args:
        covariance: Covariance of the estimate (d × d), or None when unknown.
        confidence: Optional confidence in [0, 1). Overrides
            ``standard_deviation_factor`` when given.
        standard_deviation_factor: Number of standard deviations used to
            express accuracy (2.0 by default, ~95.45% confidence).

    Raises:
        ValueError: If the covariance is not a symmetric 2x2 or 3x3 matrix.
    """

    def __init__(
        self,
        covariance: Optional[np.ndarray] = None,
        confidence: Optional[float] = None,
        standard_deviation_factor: float = DEFAULT_STANDARD_DEVIATION_FACTOR,
    ):
        self._covariance: Optional[np.ndarray] = None
        self._eigenvalues: Optional[np.ndarray] = None
        self.covariance = covariance

        if confidence is not None:
            self.confidence = confidence
        else:
            self.standard_deviation_factor = standard_deviation_factor

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @covariance.setter
    def covariance(self, value: Optional[np.ndarray]) -> None:
        if value is None:
            self._covariance = None
            self._eigenvalues = None
            return

        value = np.asarray(value, dtype=float)
        if value.ndim != 2 or value.shape[0] != value.shape[1] or value.shape[0] not in (2, 3):
            raise ValueError(f"covariance must be 2x2 or 3x3, got shape {value.shape}")
        if not np.allclose(value, value.T, atol=1e-12, rtol=1e-9):
            raise ValueError("covariance must be symmetric")

        # Clip tiny negative eigenvalues from round-off
        self._eigenvalues = np.clip(np.linalg.eigvalsh(value), 0.0, None)
        self._covariance = value

    @property
    def dimension(self) -> Optional[int]:
        return None if self._covariance is None else self._covariance.shape[0]

    @property
    def standard_deviation_factor(self) -> float:
        return self._factor

    @standard_deviation_factor.setter
    def standard_deviation_factor(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"standard_deviation_factor must be positive, got {value}")
        self._factor = float(value)

    @property
    def confidence(self) -> float:
        return factor_to_confidence(self._factor)

    @confidence.setter
    def confidence(self, value: float) -> None:
        if not 0.0 < value < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {value}")
        self._factor = confidence_to_factor(value)

    @property
    def smallest_accuracy(self) -> float:
        """Accuracy along the best-determined axis (meters), inf if unknown."""
        if self._eigenvalues is None:
            return np.inf
        return float(self._factor * np.sqrt(np.min(self._eigenvalues)))

    @property
    def largest_accuracy(self) -> float:
        """Accuracy along the worst-determined axis (meters), inf if unknown."""
        if self._eigenvalues is None:
            return np.inf
        return float(self._factor * np.sqrt(np.max(self._eigenvalues)))

    @property
    def average_accuracy(self) -> float:
        """Mean accuracy over the principal axes (meters), inf if unknown."""
        if self._eigenvalues is None:
            return np.inf
        return float(self._factor * np.mean(np.sqrt(self._eigenvalues)))
