"""Conversion of fingerprint readings into lateration inputs.

Each reading of a located source yields one or two distance hypotheses:

    RANGING            measured distance
    RSSI               distance from the inverted path-loss model
    RANGING_AND_RSSI   measured distance, then (when the source has power
                       information) the RSSI-derived distance

The standard deviation of each hypothesis combines the reading uncertainty
with, optionally, the uncertainty of the source position. Hypotheses without
any known uncertainty use a fallback standard deviation.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from wifipos.lateration.nonlinear import DEFAULT_DISTANCE_STANDARD_DEVIATION
from wifipos.rf.path_loss import rssi_distance_and_variance
from wifipos.sources.types import Fingerprint, RadioSource, Reading, ReadingType

# Standard deviation used when a distance hypothesis has no known uncertainty
FALLBACK_DISTANCE_STANDARD_DEVIATION = DEFAULT_DISTANCE_STANDARD_DEVIATION


@dataclass
class LaterationInputs:
    """Arrays fed to a lateration solver.

    Attributes:
        positions: Source position of each hypothesis (N × d).
        distances: Distance hypotheses (N,).
        standard_deviations: Distance standard deviations (N,).
        quality_scores: Reading score + source score of each hypothesis (N,).
    """

    positions: np.ndarray
    distances: np.ndarray
    standard_deviations: np.ndarray
    quality_scores: np.ndarray

    def __len__(self) -> int:
        return len(self.distances)


def position_standard_deviation(source: RadioSource) -> Optional[float]:
    """
    Scalar standard deviation summarising a source position covariance.

    Computed as sqrt of the mean singular value of the covariance matrix.

    Returns:
        Standard deviation in meters, or None if the source has no covariance.
    """
    if source.position_covariance is None:
        return None
    singular_values = np.linalg.svd(source.position_covariance, compute_uv=False)
    return float(math.sqrt(np.mean(singular_values)))


def ranging_distance(
    reading: Reading,
    position_std: Optional[float] = None,
) -> Tuple[float, Optional[float]]:
    """
    Distance hypothesis of a ranging measurement.

    Returns:
        Tuple (distance, std); std is None when neither the reading nor the
        source position has a known uncertainty.
    """
    distance = max(float(reading.distance), 0.0)
    distance_std = reading.distance_standard_deviation
    if position_std is None and distance_std is None:
        return distance, None
    variance = (position_std or 0.0) ** 2 + (distance_std or 0.0) ** 2
    return distance, math.sqrt(variance)


def rssi_distance(
    reading: Reading,
    position_std: Optional[float] = None,
    source: Optional[RadioSource] = None,
) -> Tuple[float, Optional[float]]:
    """
    Distance hypothesis of an RSSI measurement.

    Power parameters are taken from ``source`` when given (e.g. the located
    source matching the reading), otherwise from the reading source.

    Raises:
        ValueError: If the reading source has no transmitted power.
    """
    source = reading.source if source is None else source
    if not source.has_power:
        raise ValueError(f"Source {source.identifier} has no transmitted power")

    distance, variance = rssi_distance_and_variance(
        reading.rssi,
        source.transmitted_power,
        source.frequency,
        source.path_loss_exponent,
        transmitted_power_std=source.transmitted_power_standard_deviation,
        rssi_std=reading.rssi_standard_deviation,
        path_loss_exponent_std=source.path_loss_exponent_standard_deviation,
    )
    if position_std is not None:
        variance = (variance or 0.0) + position_std**2
    return distance, None if variance is None else math.sqrt(variance)


def build_lateration_inputs(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    dimension: int,
    source_quality_scores: Optional[Sequence[float]] = None,
    reading_quality_scores: Optional[Sequence[float]] = None,
    use_position_covariance: bool = True,
    fallback_distance_standard_deviation: float = FALLBACK_DISTANCE_STANDARD_DEVIATION,
) -> LaterationInputs:
    """
    Build positions, distances, standard deviations and quality scores.

    Readings are processed in fingerprint order. A reading is skipped when its
    source is not in ``sources``, is not located with ``dimension``
    coordinates, or (for RSSI) has no transmitted power.

    Args:
        sources: Known radio sources.
        fingerprint: Fingerprint with the readings.
        dimension: Position dimension (2 or 3).
        source_quality_scores: Optional score per source (defaults to 0).
        reading_quality_scores: Optional score per fingerprint reading (defaults to 0).
        use_position_covariance: If True, add the source position uncertainty to
            the distance uncertainty.
        fallback_distance_standard_deviation: Standard deviation for hypotheses
            without known uncertainty.

    Returns:
        LaterationInputs with one row per distance hypothesis.

    Example:
        >>> ap = RadioSource("ap", 2.4e9, position=(0.0, 0.0), transmitted_power=20.0)
        >>> fp = Fingerprint([Reading.ranging_and_rssi(ap, 10.0, -40.05)])
        >>> inputs = build_lateration_inputs([ap], fp, dimension=2)
        >>> len(inputs)
        2
    """
    if fallback_distance_standard_deviation <= 0:
        raise ValueError(
            "fallback_distance_standard_deviation must be positive, "
            f"got {fallback_distance_standard_deviation}"
        )
    if source_quality_scores is not None and len(source_quality_scores) != len(sources):
        raise ValueError("source_quality_scores length must match number of sources")
    if reading_quality_scores is not None and len(reading_quality_scores) != len(fingerprint):
        raise ValueError("reading_quality_scores length must match number of readings")

    index_of = {}
    for i, source in enumerate(sources):
        index_of.setdefault(source, i)

    positions: List[np.ndarray] = []
    distances: List[float] = []
    stds: List[float] = []
    scores: List[float] = []

    for reading_index, reading in enumerate(fingerprint.readings):
        source_index = index_of.get(reading.source)
        if source_index is None:
            continue
        source = sources[source_index]
        if not source.is_located or source.dimension != dimension:
            continue

        score = 0.0
        if reading_quality_scores is not None:
            score += float(reading_quality_scores[reading_index])
        if source_quality_scores is not None:
            score += float(source_quality_scores[source_index])

        position_std = position_standard_deviation(source) if use_position_covariance else None

        hypotheses = []
        if reading.reading_type in (ReadingType.RANGING, ReadingType.RANGING_AND_RSSI):
            hypotheses.append(ranging_distance(reading, position_std))
        if reading.reading_type in (ReadingType.RSSI, ReadingType.RANGING_AND_RSSI):
            if source.has_power:
                hypotheses.append(rssi_distance(reading, position_std, source))

        for distance, std in hypotheses:
            positions.append(source.position)
            distances.append(distance)
            stds.append(fallback_distance_standard_deviation if std is None or std <= 0 else std)
            scores.append(score)

    return LaterationInputs(
        positions=np.array(positions, dtype=float).reshape(-1, dimension),
        distances=np.array(distances, dtype=float),
        standard_deviations=np.array(stds, dtype=float),
        quality_scores=np.array(scores, dtype=float),
    )
