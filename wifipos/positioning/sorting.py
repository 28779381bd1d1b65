"""Quality-based ordering of radio sources and their readings.

Sources are ranked by descending source quality score. The readings of each
source are grouped by reading type (ranging, then ranging with RSSI, then
RSSI) and ranked by descending reading quality score inside each group. All
sorts are stable, so entries with equal scores keep their input order.

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from wifipos.sources.types import Fingerprint, RadioSource, Reading


@dataclass
class ReadingWithQualityScore:
    """A reading together with its quality score."""

    reading: Reading
    quality_score: float


@dataclass
class SourceWithReadings:
    """A radio source, its quality score and its sorted readings."""

    source: RadioSource
    quality_score: float
    readings: List[ReadingWithQualityScore] = field(default_factory=list)


class ReadingSorter:
    """
    Sorts radio sources and fingerprint readings by quality.

    Args:
        sources: Radio sources to rank.
        fingerprint: Fingerprint containing the readings.
        source_quality_scores: One score per source, higher is better.
        reading_quality_scores: One score per fingerprint reading (same order
            as ``fingerprint.readings``), higher is better.

    Raises:
        ValueError: If a score sequence does not match the size of its
            collection.

    Example:
        >>> ap1 = RadioSource("ap1", 2.4e9, position=(0.0, 0.0))
        >>> ap2 = RadioSource("ap2", 2.4e9, position=(5.0, 0.0))
        >>> fp = Fingerprint([Reading.ranging(ap1, 1.0), Reading.ranging(ap2, 4.0)])
        >>> sorter = ReadingSorter([ap1, ap2], fp, [0.1, 0.9], [0.5, 0.5])
        >>> sorter.sort()
        >>> [s.source.identifier for s in sorter.sorted_sources_and_readings]
        ['ap2', 'ap1']
    """

    def __init__(
        self,
        sources: Sequence[RadioSource],
        fingerprint: Fingerprint,
        source_quality_scores: Sequence[float],
        reading_quality_scores: Sequence[float],
    ):
        if sources is None or fingerprint is None:
            raise ValueError("sources and fingerprint are required")
        if source_quality_scores is None or reading_quality_scores is None:
            raise ValueError("quality scores are required")
        if len(source_quality_scores) != len(sources):
            raise ValueError(
                f"source_quality_scores length ({len(source_quality_scores)}) must match "
                f"number of sources ({len(sources)})"
            )
        if len(reading_quality_scores) != len(fingerprint.readings):
            raise ValueError(
                f"reading_quality_scores length ({len(reading_quality_scores)}) must match "
                f"number of fingerprint readings ({len(fingerprint.readings)})"
            )

        self._sources = sources
        self._fingerprint = fingerprint
        self._source_quality_scores = source_quality_scores
        self._reading_quality_scores = reading_quality_scores
        self._sorted: Optional[List[SourceWithReadings]] = None

    @property
    def sources(self) -> Sequence[RadioSource]:
        return self._sources

    @property
    def fingerprint(self) -> Fingerprint:
        return self._fingerprint

    @property
    def source_quality_scores(self) -> Sequence[float]:
        return self._source_quality_scores

    @property
    def reading_quality_scores(self) -> Sequence[float]:
        return self._reading_quality_scores

    @property
    def sorted_sources_and_readings(self) -> Optional[List[SourceWithReadings]]:
        """Result of the last ``sort()`` call, or None if not sorted yet."""
        return self._sorted

    def sort(self) -> None:
        """Sort sources and readings; the result is cached in
        ``sorted_sources_and_readings``."""
        # Bucket readings per source, keeping fingerprint order
        buckets: Dict[RadioSource, SourceWithReadings] = {}
        ordered: List[SourceWithReadings] = []
        for source, score in zip(self._sources, self._source_quality_scores):
            if source in buckets:
                continue
            entry = SourceWithReadings(source=source, quality_score=float(score))
            buckets[source] = entry
            ordered.append(entry)

        for reading, score in zip(self._fingerprint.readings, self._reading_quality_scores):
            entry = buckets.get(reading.source)
            if entry is None:
                continue
            entry.readings.append(ReadingWithQualityScore(reading, float(score)))

        for entry in ordered:
            entry.readings.sort(
                key=lambda r: (r.reading.reading_type.priority, -r.quality_score)
            )
        ordered.sort(key=lambda e: -e.quality_score)

        self._sorted = ordered
