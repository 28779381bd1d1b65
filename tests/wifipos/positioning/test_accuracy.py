"""
Unit tests for covariance-based accuracy figures.
"""

import numpy as np
import pytest

from wifipos.positioning.accuracy import (
    DEFAULT_STANDARD_DEVIATION_FACTOR,
    Accuracy,
    confidence_to_factor,
    factor_to_confidence,
)


class TestConfidenceConversion:
    """Test confidence / standard deviation factor conversion."""

    def test_known_values(self):
        assert factor_to_confidence(1.0) == pytest.approx(0.6827, abs=1e-4)
        assert factor_to_confidence(2.0) == pytest.approx(0.9545, abs=1e-4)
        assert confidence_to_factor(0.95) == pytest.approx(1.96, abs=1e-3)

    def test_inverse(self):
        for factor in [0.5, 1.0, 2.0, 3.0]:
            assert confidence_to_factor(factor_to_confidence(factor)) == pytest.approx(factor)

    def test_invalid(self):
        with pytest.raises(ValueError):
            confidence_to_factor(1.0)
        with pytest.raises(ValueError):
            factor_to_confidence(-1.0)


class TestAccuracy:
    """Test Accuracy container."""

    def test_unknown_covariance(self):
        acc = Accuracy()

        assert acc.covariance is None
        assert acc.dimension is None
        assert acc.smallest_accuracy == np.inf
        assert acc.largest_accuracy == np.inf
        assert acc.average_accuracy == np.inf
        assert acc.standard_deviation_factor == DEFAULT_STANDARD_DEVIATION_FACTOR

    def test_diagonal_covariance(self):
        acc = Accuracy(np.diag([4.0, 1.0]))

        assert acc.dimension == 2
        assert acc.smallest_accuracy == pytest.approx(2.0)
        assert acc.largest_accuracy == pytest.approx(4.0)
        assert acc.average_accuracy == pytest.approx(3.0)

    def test_rotated_covariance_uses_principal_axes(self):
        theta = np.deg2rad(30.0)
        R = np.array([[np.cos(theta), -np.sin(theta)], [np.sin(theta), np.cos(theta)]])
        cov = R @ np.diag([9.0, 1.0]) @ R.T

        acc = Accuracy(cov, standard_deviation_factor=1.0)

        assert acc.smallest_accuracy == pytest.approx(1.0)
        assert acc.largest_accuracy == pytest.approx(3.0)

    def test_confidence_overrides_factor(self):
        acc = Accuracy(np.eye(3), confidence=0.95, standard_deviation_factor=5.0)

        assert acc.confidence == pytest.approx(0.95)
        assert acc.average_accuracy == pytest.approx(1.96, abs=1e-3)

    def test_invalid_covariance(self):
        with pytest.raises(ValueError, match="2x2 or 3x3"):
            Accuracy(np.eye(4))
        with pytest.raises(ValueError, match="symmetric"):
            Accuracy(np.array([[1.0, 0.5], [0.0, 1.0]]))

    def test_invalid_confidence(self):
        acc = Accuracy(np.eye(2))
        with pytest.raises(ValueError):
            acc.confidence = 1.0
        assert acc.standard_deviation_factor == DEFAULT_STANDARD_DEVIATION_FACTOR
