"""Unit tests for wifipos.sources.types module.

Tests RadioSource, Reading and Fingerprint validation and behaviour.

Author: Navigation Engineer
Date: 2024
"""

import numpy as np
import pytest

from wifipos.sources.types import Fingerprint, RadioSource, Reading, ReadingType


class TestRadioSource:
    """Test suite for RadioSource dataclass."""

    def test_located_source_with_power(self):
        """Test creating a located source with power information."""
        source = RadioSource(
            identifier="bssid-1",
            frequency=2.4e9,
            position=[1.0, 2.0],
            transmitted_power=-40.0,
        )

        assert source.is_located
        assert source.has_power
        assert source.dimension == 2
        np.testing.assert_array_equal(source.position, [1.0, 2.0])
        assert source.path_loss_exponent == 2.0

    def test_unlocated_source(self):
        """Test a source without position or power."""
        source = RadioSource("bssid-1", 5.0e9)

        assert not source.is_located
        assert not source.has_power
        assert source.dimension is None

    def test_position_is_read_only(self):
        """Test that the stored position cannot be modified in place."""
        source = RadioSource("ap", 2.4e9, position=np.array([1.0, 2.0, 3.0]))

        with pytest.raises(ValueError):
            source.position[0] = 5.0

    def test_equality_uses_identifier(self):
        """Test that sources with the same identifier are equal."""
        a = RadioSource("ap", 2.4e9, position=(0.0, 0.0))
        b = RadioSource("ap", 2.4e9)
        c = RadioSource("other", 2.4e9, position=(0.0, 0.0))

        assert a == b
        assert hash(a) == hash(b)
        assert a != c
        assert len({a, b, c}) == 2

    def test_invalid_frequency(self):
        """Test that non-positive frequency raises an error."""
        with pytest.raises(ValueError, match="frequency must be positive"):
            RadioSource("ap", 0.0)

    def test_invalid_identifier(self):
        """Test that empty identifier raises an error."""
        with pytest.raises(ValueError, match="identifier"):
            RadioSource("", 2.4e9)

    def test_invalid_position_dimension(self):
        """Test that positions must have 2 or 3 coordinates."""
        with pytest.raises(ValueError, match="2 or 3 coordinates"):
            RadioSource("ap", 2.4e9, position=[1.0, 2.0, 3.0, 4.0])

    def test_covariance_shape_must_match_position(self):
        """Test covariance validation."""
        with pytest.raises(ValueError, match="position_covariance shape"):
            RadioSource("ap", 2.4e9, position=[0.0, 0.0], position_covariance=np.eye(3))

    def test_covariance_requires_position(self):
        """Test that a covariance without a position is rejected."""
        with pytest.raises(ValueError, match="requires a position"):
            RadioSource("ap", 2.4e9, position_covariance=np.eye(2))

    def test_negative_standard_deviation(self):
        """Test that negative standard deviations are rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            RadioSource("ap", 2.4e9, transmitted_power_standard_deviation=-1.0)


class TestReading:
    """Test suite for Reading tagged union."""

    def setup_method(self):
        self.source = RadioSource("ap", 2.4e9, position=(0.0, 0.0), transmitted_power=-40.0)

    def test_ranging_reading(self):
        """Test ranging constructor."""
        reading = Reading.ranging(self.source, 5.0, distance_standard_deviation=0.1)

        assert reading.reading_type is ReadingType.RANGING
        assert reading.distance == 5.0
        assert reading.rssi is None
        assert reading.distance_standard_deviation == 0.1
        assert reading.number_of_measurements == 1

    def test_rssi_reading(self):
        """Test RSSI constructor."""
        reading = Reading.rssi_only(self.source, -70.0, rssi_standard_deviation=2.0)

        assert reading.reading_type is ReadingType.RSSI
        assert reading.rssi == -70.0
        assert reading.distance is None

    def test_ranging_and_rssi_reading(self):
        """Test combined constructor."""
        reading = Reading.ranging_and_rssi(self.source, 5.0, -70.0)

        assert reading.reading_type is ReadingType.RANGING_AND_RSSI
        assert reading.distance == 5.0
        assert reading.rssi == -70.0

    def test_ranging_requires_distance(self):
        """Test that a ranging reading without distance is rejected."""
        with pytest.raises(ValueError, match="requires a distance"):
            Reading(ReadingType.RANGING, self.source)

    def test_rssi_requires_rssi(self):
        """Test that an RSSI reading without RSSI value is rejected."""
        with pytest.raises(ValueError, match="requires an RSSI"):
            Reading(ReadingType.RSSI, self.source)

    def test_rssi_cannot_carry_distance(self):
        """Test tag consistency for RSSI readings."""
        with pytest.raises(ValueError, match="cannot carry a distance"):
            Reading(ReadingType.RSSI, self.source, distance=1.0, rssi=-50.0)

    def test_negative_distance(self):
        """Test that negative distances are rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            Reading.ranging(self.source, -1.0)

    def test_source_type_checked(self):
        """Test that the source must be a RadioSource."""
        with pytest.raises(TypeError):
            Reading(ReadingType.RANGING, "ap", distance=1.0)

    def test_type_priority_order(self):
        """Test sort precedence of reading types."""
        assert (
            ReadingType.RANGING.priority
            < ReadingType.RANGING_AND_RSSI.priority
            < ReadingType.RSSI.priority
        )
        assert ReadingType.RANGING_AND_RSSI.has_distance
        assert ReadingType.RANGING_AND_RSSI.has_rssi
        assert not ReadingType.RSSI.has_distance
        assert not ReadingType.RANGING.has_rssi


class TestFingerprint:
    """Test suite for Fingerprint."""

    def test_fingerprint_collections(self):
        """Test length, iteration and per-source lookup."""
        ap1 = RadioSource("ap1", 2.4e9, position=(0.0, 0.0))
        ap2 = RadioSource("ap2", 2.4e9, position=(5.0, 0.0))
        readings = [
            Reading.ranging(ap1, 1.0),
            Reading.rssi_only(ap2, -60.0),
            Reading.ranging(ap1, 1.1),
        ]

        fp = Fingerprint(readings)

        assert len(fp) == 3
        assert list(fp) == readings
        assert isinstance(fp.readings, tuple)
        assert fp.readings_of(ap1) == (readings[0], readings[2])
        assert fp.readings_of_type(ReadingType.RSSI) == (readings[1],)
        assert fp.sources == [ap1, ap2]

    def test_empty_fingerprint(self):
        """Test default construction."""
        assert len(Fingerprint()) == 0

    def test_invalid_reading(self):
        """Test that non-reading entries are rejected."""
        with pytest.raises(TypeError):
            Fingerprint([1.0])
