"""
Unit tests for conversion of fingerprint readings into lateration inputs.
"""

import numpy as np
import pytest

from wifipos.positioning.distances import (
    FALLBACK_DISTANCE_STANDARD_DEVIATION,
    build_lateration_inputs,
    position_standard_deviation,
    ranging_distance,
    rssi_distance,
)
from wifipos.rf.path_loss import received_power
from wifipos.sources.types import Fingerprint, RadioSource, Reading

FREQUENCY = 2.4e9


class TestSingleReadingDistances:
    """Test distance hypotheses of single readings."""

    def test_ranging_without_uncertainty(self):
        ap = RadioSource("ap", FREQUENCY, position=(0.0, 0.0))
        distance, std = ranging_distance(Reading.ranging(ap, 4.0))

        assert distance == 4.0
        assert std is None

    def test_ranging_combines_uncertainties(self):
        ap = RadioSource("ap", FREQUENCY, position=(0.0, 0.0))
        reading = Reading.ranging(ap, 4.0, distance_standard_deviation=0.3)

        _, std = ranging_distance(reading, position_std=0.4)
        assert std == pytest.approx(0.5)

    def test_rssi_distance(self):
        ap = RadioSource("ap", FREQUENCY, position=(0.0, 0.0), transmitted_power=-40.0)
        rssi = received_power(-40.0, 6.0, FREQUENCY)

        distance, std = rssi_distance(Reading.rssi_only(ap, rssi))
        assert distance == pytest.approx(6.0)
        assert std is None

        distance, std = rssi_distance(Reading.rssi_only(ap, rssi), position_std=0.2)
        assert std == pytest.approx(0.2)

    def test_rssi_distance_requires_power(self):
        ap = RadioSource("ap", FREQUENCY, position=(0.0, 0.0))
        with pytest.raises(ValueError, match="transmitted power"):
            rssi_distance(Reading.rssi_only(ap, -60.0))

    def test_position_standard_deviation(self):
        ap = RadioSource(
            "ap", FREQUENCY, position=(0.0, 0.0), position_covariance=np.diag([4.0, 0.0])
        )
        assert position_standard_deviation(ap) == pytest.approx(np.sqrt(2.0))
        assert position_standard_deviation(RadioSource("b", FREQUENCY, position=(0, 0))) is None


class TestBuildLaterationInputs:
    """Test fingerprint to lateration input conversion."""

    def setup_method(self):
        self.true_pos = np.array([2.0, 3.0])
        self.sources = [
            RadioSource(
                f"ap{i}", FREQUENCY, position=p, transmitted_power=-40.0
            )
            for i, p in enumerate([(0.0, 0.0), (10.0, 0.0), (0.0, 10.0)])
        ]
        self.distances = [
            float(np.linalg.norm(self.true_pos - s.position)) for s in self.sources
        ]

    def test_ranging_readings(self):
        fp = Fingerprint([Reading.ranging(s, d) for s, d in zip(self.sources, self.distances)])

        inputs = build_lateration_inputs(self.sources, fp, 2)

        assert len(inputs) == 3
        np.testing.assert_array_equal(inputs.positions, [s.position for s in self.sources])
        np.testing.assert_allclose(inputs.distances, self.distances)
        np.testing.assert_array_equal(
            inputs.standard_deviations, np.full(3, FALLBACK_DISTANCE_STANDARD_DEVIATION)
        )
        np.testing.assert_array_equal(inputs.quality_scores, np.zeros(3))

    def test_ranging_and_rssi_yields_two_hypotheses(self):
        ap = self.sources[0]
        rssi = received_power(-40.0, self.distances[0], FREQUENCY)
        fp = Fingerprint([Reading.ranging_and_rssi(ap, self.distances[0], rssi)])

        inputs = build_lateration_inputs(self.sources, fp, 2)

        assert len(inputs) == 2
        np.testing.assert_allclose(inputs.distances, [self.distances[0]] * 2)
        np.testing.assert_array_equal(inputs.positions, [ap.position, ap.position])

    def test_ranging_and_rssi_without_power(self):
        ap = RadioSource("bare", FREQUENCY, position=(1.0, 1.0))
        fp = Fingerprint([Reading.ranging_and_rssi(ap, 5.0, -60.0)])

        inputs = build_lateration_inputs([ap], fp, 2)

        np.testing.assert_array_equal(inputs.distances, [5.0])

    def test_skipped_readings(self):
        unknown = RadioSource("unknown", FREQUENCY, position=(5.0, 5.0))
        unlocated = RadioSource("unlocated", FREQUENCY, transmitted_power=-40.0)
        in_3d = RadioSource("ap3d", FREQUENCY, position=(0.0, 0.0, 1.0))
        no_power = RadioSource("nopower", FREQUENCY, position=(1.0, 2.0))
        sources = [unlocated, in_3d, no_power, self.sources[0]]
        fp = Fingerprint(
            [
                Reading.ranging(unknown, 1.0),
                Reading.ranging(unlocated, 1.0),
                Reading.ranging(in_3d, 1.0),
                Reading.rssi_only(no_power, -50.0),
                Reading.ranging(self.sources[0], 7.0),
            ]
        )

        inputs = build_lateration_inputs(sources, fp, 2)

        np.testing.assert_array_equal(inputs.distances, [7.0])
        assert inputs.positions.shape == (1, 2)

    def test_empty_inputs_have_consistent_shapes(self):
        inputs = build_lateration_inputs(self.sources, Fingerprint(), 3)

        assert len(inputs) == 0
        assert inputs.positions.shape == (0, 3)

    def test_quality_scores_are_summed(self):
        fp = Fingerprint(
            [
                Reading.ranging(self.sources[2], 1.0),
                Reading.ranging(self.sources[0], 1.0),
            ]
        )

        inputs = build_lateration_inputs(
            self.sources, fp, 2, source_quality_scores=[10.0, 20.0, 30.0],
            reading_quality_scores=[0.5, 0.25],
        )

        np.testing.assert_allclose(inputs.quality_scores, [30.5, 10.25])

    def test_position_covariance_switch(self):
        ap = RadioSource(
            "ap", FREQUENCY, position=(0.0, 0.0), position_covariance=np.eye(2) * 0.09
        )
        fp = Fingerprint([Reading.ranging(ap, 2.0, distance_standard_deviation=0.4)])

        with_cov = build_lateration_inputs([ap], fp, 2)
        without_cov = build_lateration_inputs([ap], fp, 2, use_position_covariance=False)

        assert with_cov.standard_deviations[0] == pytest.approx(0.5)
        assert without_cov.standard_deviations[0] == pytest.approx(0.4)

    def test_rssi_uses_located_source_parameters(self):
        """Test that power data comes from the matching source in ``sources``."""
        located = RadioSource("ap", FREQUENCY, position=(0.0, 0.0), transmitted_power=-30.0)
        reported = RadioSource("ap", FREQUENCY)
        rssi = received_power(-30.0, 8.0, FREQUENCY)
        fp = Fingerprint([Reading.rssi_only(reported, rssi, rssi_standard_deviation=1.0)])

        inputs = build_lateration_inputs([located], fp, 2)

        assert inputs.distances[0] == pytest.approx(8.0)
        assert inputs.standard_deviations[0] > FALLBACK_DISTANCE_STANDARD_DEVIATION

    def test_score_length_mismatch(self):
        fp = Fingerprint([Reading.ranging(self.sources[0], 1.0)])
        with pytest.raises(ValueError, match="reading_quality_scores"):
            build_lateration_inputs(self.sources, fp, 2, reading_quality_scores=[1.0, 2.0])
        with pytest.raises(ValueError, match="source_quality_scores"):
            build_lateration_inputs(self.sources, fp, 2, source_quality_scores=[1.0])

    def test_invalid_fallback(self):
        with pytest.raises(ValueError, match="fallback"):
            build_lateration_inputs(
                self.sources, Fingerprint(), 2, fallback_distance_standard_deviation=0.0
            )
