"""Data types for radio sources, readings and fingerprints.

A radio source (typically a Wi-Fi access point) is identified by a string such
as its BSSID. Sources that are used for positioning must be *located*, and RSSI
readings can only be converted to distances when the source also carries its
transmitted power and path-loss exponent.

Readings are modelled as a closed tagged union: a single immutable ``Reading``
type whose ``reading_type`` tag determines which measured quantities are
present (distance, RSSI or both).

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np


DEFAULT_PATH_LOSS_EXPONENT = 2.0  # free space


class ReadingType(Enum):
    """Kind of measurement carried by a reading.

    The enumeration order is also the sorting precedence used when readings of
    the same source are ranked: ranging first, then ranging with RSSI, then RSSI.
    """

    RANGING = "ranging"
    RANGING_AND_RSSI = "ranging_and_rssi"
    RSSI = "rssi"

    @property
    def priority(self) -> int:
        """Sort precedence (lower comes first)."""
        return _READING_TYPE_PRIORITY[self]

    @property
    def has_distance(self) -> bool:
        return self is not ReadingType.RSSI

    @property
    def has_rssi(self) -> bool:
        return self is not ReadingType.RANGING


_READING_TYPE_PRIORITY = {
    ReadingType.RANGING: 0,
    ReadingType.RANGING_AND_RSSI: 1,
    ReadingType.RSSI: 2,
}


def _check_optional_std(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if not isinstance(value, (float, int)):
        raise TypeError(f"{name} must be numeric, got {type(value)}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass(frozen=True, eq=False)
class RadioSource:
    """Radio source (e.g. Wi-Fi access point or beacon).

    Equality and hashing only consider ``identifier``, so readings can be matched
    to sources regardless of which object instance they reference.

    Attributes:
        identifier: Unique identifier of the source (e.g. BSSID).
        frequency: Carrier frequency in Hz.
        position: Optional source position, 2 or 3 coordinates in meters.
        transmitted_power: Optional transmitted power in dBm.
        path_loss_exponent: Path-loss exponent n (2.0 for free space).
        position_covariance: Optional (d x d) covariance of the position (m²).
        transmitted_power_standard_deviation: Optional std of transmitted power (dB).
        path_loss_exponent_standard_deviation: Optional std of the exponent.

    Example:
        >>> ap = RadioSource(
        ...     identifier="bssid-1",
        ...     frequency=2.4e9,
        ...     position=(1.0, 2.0),
        ...     transmitted_power=-40.0,
        ... )
        >>> ap.is_located, ap.has_power, ap.dimension
        (True, True, 2)
    """

    identifier: str
    frequency: float
    position: Optional[np.ndarray] = None
    transmitted_power: Optional[float] = None
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_standard_deviation: Optional[float] = None
    path_loss_exponent_standard_deviation: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate and freeze array attributes."""
        if not isinstance(self.identifier, str) or not self.identifier:
            raise ValueError(f"identifier must be a non-empty string, got {self.identifier!r}")
        if not isinstance(self.frequency, (float, int)):
            raise TypeError(f"frequency must be numeric, got {type(self.frequency)}")
        if self.frequency <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")
        if self.path_loss_exponent <= 0:
            raise ValueError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )
        _check_optional_std(
            "transmitted_power_standard_deviation", self.transmitted_power_standard_deviation
        )
        _check_optional_std(
            "path_loss_exponent_standard_deviation", self.path_loss_exponent_standard_deviation
        )

        if self.position is not None:
            position = np.array(self.position, dtype=float)
            if position.ndim != 1 or position.size not in (2, 3):
                raise ValueError(
                    f"position must have 2 or 3 coordinates, got shape {position.shape}"
                )
            position.setflags(write=False)
            object.__setattr__(self, "position", position)

        if self.position_covariance is not None:
            if self.position is None:
                raise ValueError("position_covariance requires a position")
            cov = np.array(self.position_covariance, dtype=float)
            d = self.position.size
            if cov.shape != (d, d):
                raise ValueError(
                    f"position_covariance shape {cov.shape} must be ({d}, {d})"
                )
            cov.setflags(write=False)
            object.__setattr__(self, "position_covariance", cov)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RadioSource):
            return NotImplemented
        return self.identifier == other.identifier

    def __hash__(self) -> int:
        return hash(self.identifier)

    @property
    def is_located(self) -> bool:
        return self.position is not None

    @property
    def has_power(self) -> bool:
        """True when RSSI readings of this source can be converted to distances."""
        return self.transmitted_power is not None

    @property
    def dimension(self) -> Optional[int]:
        return None if self.position is None else self.position.size


@dataclass(frozen=True, eq=False)
class Reading:
    """Measurement of a radio source taken at an unknown position.

    Prefer the ``ranging``, ``rssi`` and ``ranging_and_rssi`` constructors; the
    ``reading_type`` tag determines which of the fields below are set.

    Attributes:
        reading_type: Kind of reading.
        source: Radio source the reading refers to.
        distance: Measured distance in meters (ranging readings).
        rssi: Received signal strength in dBm (RSSI readings).
        distance_standard_deviation: Optional std of the distance (m).
        rssi_standard_deviation: Optional std of the RSSI (dB).
        number_of_measurements: Number of attempted ranging measurements
            averaged into the distance (informative only).
    """

    reading_type: ReadingType
    source: RadioSource
    distance: Optional[float] = None
    rssi: Optional[float] = None
    distance_standard_deviation: Optional[float] = None
    rssi_standard_deviation: Optional[float] = None
    number_of_measurements: int = 1

    def __post_init__(self) -> None:
        """Check that the fields required by the reading type are present."""
        if not isinstance(self.reading_type, ReadingType):
            raise TypeError(f"reading_type must be a ReadingType, got {type(self.reading_type)}")
        if not isinstance(self.source, RadioSource):
            raise TypeError(f"source must be a RadioSource, got {type(self.source)}")

        if self.reading_type.has_distance:
            if self.distance is None:
                raise ValueError(f"{self.reading_type.name} reading requires a distance")
            if self.distance < 0:
                raise ValueError(f"distance must be non-negative, got {self.distance}")
        elif self.distance is not None:
            raise ValueError("RSSI reading cannot carry a distance")

        if self.reading_type.has_rssi:
            if self.rssi is None:
                raise ValueError(f"{self.reading_type.name} reading requires an RSSI value")
        elif self.rssi is not None:
            raise ValueError("RANGING reading cannot carry an RSSI value")

        _check_optional_std("distance_standard_deviation", self.distance_standard_deviation)
        _check_optional_std("rssi_standard_deviation", self.rssi_standard_deviation)
        if self.number_of_measurements < 1:
            raise ValueError(
                f"number_of_measurements must be at least 1, got {self.number_of_measurements}"
            )

    @classmethod
    def ranging(
        cls,
        source: RadioSource,
        distance: float,
        distance_standard_deviation: Optional[float] = None,
        number_of_measurements: int = 1,
    ) -> "Reading":
        """Create a ranging (e.g. Wi-Fi RTT) reading."""
        return cls(
            ReadingType.RANGING,
            source,
            distance=distance,
            distance_standard_deviation=distance_standard_deviation,
            number_of_measurements=number_of_measurements,
        )

    @classmethod
    def rssi_only(
        cls,
        source: RadioSource,
        rssi: float,
        rssi_standard_deviation: Optional[float] = None,
    ) -> "Reading":
        """Create an RSSI reading."""
        return cls(
            ReadingType.RSSI,
            source,
            rssi=rssi,
            rssi_standard_deviation=rssi_standard_deviation,
        )

    @classmethod
    def ranging_and_rssi(
        cls,
        source: RadioSource,
        distance: float,
        rssi: float,
        distance_standard_deviation: Optional[float] = None,
        rssi_standard_deviation: Optional[float] = None,
        number_of_measurements: int = 1,
    ) -> "Reading":
        """Create a reading carrying both a ranging distance and an RSSI value."""
        return cls(
            ReadingType.RANGING_AND_RSSI,
            source,
            distance=distance,
            rssi=rssi,
            distance_standard_deviation=distance_standard_deviation,
            rssi_standard_deviation=rssi_standard_deviation,
            number_of_measurements=number_of_measurements,
        )


@dataclass(frozen=True)
class Fingerprint:
    """Readings captured at one unknown position.

    Attributes:
        readings: Readings in capture order.

    Example:
        >>> ap = RadioSource("ap", 2.4e9, position=(0.0, 0.0))
        >>> fp = Fingerprint([Reading.ranging(ap, 3.0)])
        >>> len(fp)
        1
    """

    readings: Tuple[Reading, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        readings = tuple(self.readings)
        for reading in readings:
            if not isinstance(reading, Reading):
                raise TypeError(f"Fingerprint readings must be Reading, got {type(reading)}")
        object.__setattr__(self, "readings", readings)

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.readings)

    def readings_of(self, source: RadioSource) -> Tuple[Reading, ...]:
        """Readings that refer to ``source``, in capture order."""
        return tuple(r for r in self.readings if r.source == source)

    def readings_of_type(self, reading_type: ReadingType) -> Tuple[Reading, ...]:
        return tuple(r for r in self.readings if r.reading_type is reading_type)

    @property
    def sources(self) -> Sequence[RadioSource]:
        """Distinct sources referenced by the readings, in first-seen order."""
        return list(dict.fromkeys(r.source for r in self.readings))
