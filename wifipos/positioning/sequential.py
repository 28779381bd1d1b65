"""
Sequential robust position estimation mixing RSSI and ranging readings.

RSSI readings are plentiful but give coarse distances; ranging (RTT) readings
are accurate but fewer. The sequential estimator runs two robust stages:

    1. RSSI stage: a robust estimate using only the RSSI part of the readings.
    2. Ranging stage: a robust estimate using only the ranging part of the
       readings, whose non-linear preliminary solves start at the RSSI
       position.

A stage runs only when the fingerprint has enough readings of its kind (3 in
2D, 4 in 3D). Readings carrying both a distance and an RSSI value contribute
to both stages. When the RSSI stage fails the ranging stage starts from the
configured initial position instead; when there is no ranging stage the RSSI
position is the result.

Typical use:

    >>> estimator = SequentialRobustPositionEstimator2D(sources, fingerprint)
    >>> estimator.ranging_threshold = 0.1
    >>> position = estimator.estimate()
"""

from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from wifipos.errors import NotReadyError, RobustEstimatorError
from wifipos.lateration.base import Lockable, min_required_positions
from wifipos.lateration.robust import (
    DEFAULT_ROBUST_METHOD,
    InliersData,
    RobustEstimatorMethod,
)
from wifipos.positioning.accuracy import DEFAULT_STANDARD_DEVIATION_FACTOR, Accuracy
from wifipos.positioning.estimator import (
    RobustPositionEstimator,
    RobustPositionEstimatorListener,
)
from wifipos.positioning.sorting import ReadingSorter
from wifipos.sources.types import Fingerprint, RadioSource, Reading, ReadingType

DEFAULT_READINGS_EVENLY_DISTRIBUTED = True


class SequentialRobustPositionEstimatorListener:
    """Receives events from a sequential robust position estimator.

    Progress runs from 0 to 0.5 during the RSSI stage and from 0.5 to 1 during
    the ranging stage when both stages run.
    """

    def on_estimate_start(self, estimator: "SequentialRobustPositionEstimator") -> None:
        pass

    def on_estimate_end(self, estimator: "SequentialRobustPositionEstimator") -> None:
        pass

    def on_estimate_progress_change(
        self, estimator: "SequentialRobustPositionEstimator", progress: float
    ) -> None:
        pass


class _StageProgressForwarder(RobustPositionEstimatorListener):
    """Maps the progress of one stage into the overall progress."""

    def __init__(self, estimator: "SequentialRobustPositionEstimator"):
        self._estimator = estimator
        self.offset = 0.0
        self.scale = 1.0

    def on_estimate_progress_change(self, stage, progress: float) -> None:
        listener = self._estimator.listener
        if listener is not None:
            listener.on_estimate_progress_change(
                self._estimator, self.offset + self.scale * progress
            )


def _stage_option(stage: str, name: str, doc: str) -> property:
    """Property delegating to one stage estimator, guarded by the sequential lock."""

    def getter(self):
        return getattr(getattr(self, stage), name)

    def setter(self, value):
        self._check_not_locked()
        setattr(getattr(self, stage), name, value)

    return property(getter, setter, doc=doc)


def split_fingerprint(
    fingerprint: Fingerprint,
    reading_quality_scores: Optional[Sequence[float]] = None,
) -> Tuple[Fingerprint, List[float], Fingerprint, List[float]]:
    """
    Split a fingerprint into its ranging part and its RSSI part.

    Readings of type RANGING_AND_RSSI are converted into one ranging reading
    and one RSSI reading, both keeping the quality score of the original.

    Args:
        fingerprint: Fingerprint to split.
        reading_quality_scores: Optional score per fingerprint reading.

    Returns:
        Tuple (ranging fingerprint, ranging scores, RSSI fingerprint, RSSI scores).
        Scores default to 0 when none are given.
    """
    ranging: List[Reading] = []
    ranging_scores: List[float] = []
    rssi: List[Reading] = []
    rssi_scores: List[float] = []

    for i, reading in enumerate(fingerprint.readings):
        score = 0.0 if reading_quality_scores is None else float(reading_quality_scores[i])
        if reading.reading_type is ReadingType.RANGING:
            ranging.append(reading)
            ranging_scores.append(score)
        elif reading.reading_type is ReadingType.RSSI:
            rssi.append(reading)
            rssi_scores.append(score)
        else:
            ranging.append(
                Reading.ranging(
                    reading.source,
                    reading.distance,
                    distance_standard_deviation=reading.distance_standard_deviation,
                    number_of_measurements=reading.number_of_measurements,
                )
            )
            ranging_scores.append(score)
            rssi.append(
                Reading.rssi_only(
                    reading.source,
                    reading.rssi,
                    rssi_standard_deviation=reading.rssi_standard_deviation,
                )
            )
            rssi_scores.append(score)

    return Fingerprint(ranging), ranging_scores, Fingerprint(rssi), rssi_scores


def distribute_readings_evenly(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    source_quality_scores: Sequence[float],
    reading_quality_scores: Sequence[float],
) -> Tuple[Fingerprint, List[float]]:
    """
    Reorder readings so that consecutive readings belong to different sources.

    Sources are ranked by quality and readings inside each source by type and
    quality (see ReadingSorter). The result takes the best reading of every
    source in source order, then the second best of every source, and so on.
    Readings of unknown sources are dropped.

    Returns:
        Tuple (reordered fingerprint, reading scores). Scores decrease strictly
        with the position in the new order, so that progressive sampling draws
        readings of many different sources first.

    Example:
        >>> ap1 = RadioSource("ap1", 2.4e9, position=(0.0, 0.0))
        >>> ap2 = RadioSource("ap2", 2.4e9, position=(5.0, 0.0))
        >>> fp = Fingerprint([Reading.ranging(ap1, 1.0), Reading.ranging(ap1, 1.1),
        ...                   Reading.ranging(ap2, 4.0)])
        >>> even, scores = distribute_readings_evenly([ap1, ap2], fp, [0.9, 0.1], [0, 0, 0])
        >>> [r.source.identifier for r in even]
        ['ap1', 'ap2', 'ap1']
        >>> scores
        [3.0, 2.0, 1.0]
    """
    sorter = ReadingSorter(sources, fingerprint, source_quality_scores, reading_quality_scores)
    sorter.sort()
    groups = [entry.readings for entry in sorter.sorted_sources_and_readings]

    ordered: List[Reading] = []
    depth = max((len(g) for g in groups), default=0)
    for rank in range(depth):
        for group in groups:
            if rank < len(group):
                ordered.append(group[rank].reading)

    n = len(ordered)
    return Fingerprint(ordered), [float(n - i) for i in range(n)]


class SequentialRobustPositionEstimator(Lockable):
    """
    Two-stage robust 2D/3D position estimator (RSSI first, then ranging).

    Args:
        dimension: Number of position coordinates (2 or 3).
        sources: Located radio sources (at least dimension + 1).
        fingerprint: Fingerprint mixing ranging, RSSI and combined readings.
        source_quality_scores: One quality score per source.
        fingerprint_reading_quality_scores: One quality score per fingerprint
            reading.
        ranging_method: Robust method of the ranging stage. Defaults to PROMedS.
        rssi_method: Robust method of the RSSI stage. Defaults to PROMedS.
        listener: Optional SequentialRobustPositionEstimatorListener.
        random_state: Seed or numpy Generator shared by both stages.

    Raises:
        ValueError: If any supplied input is invalid.
    """

    def __init__(
        self,
        dimension: int,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        fingerprint_reading_quality_scores: Optional[Sequence[float]] = None,
        ranging_method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        rssi_method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        listener: Optional[SequentialRobustPositionEstimatorListener] = None,
        random_state: Union[None, int, np.random.Generator] = None,
    ):
        super().__init__()
        if dimension not in (2, 3):
            raise ValueError(f"dimension must be 2 or 3, got {dimension}")
        self._dimension = dimension
        self._min_required = min_required_positions(dimension)

        rng = np.random.default_rng(random_state)
        self._rssi_progress = _StageProgressForwarder(self)
        self._ranging_progress = _StageProgressForwarder(self)
        self._rssi_stage = RobustPositionEstimator(
            dimension, method=rssi_method, listener=self._rssi_progress, random_state=rng
        )
        self._ranging_stage = RobustPositionEstimator(
            dimension, method=ranging_method, listener=self._ranging_progress, random_state=rng
        )

        self._sources: Optional[Sequence[RadioSource]] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._source_quality_scores: Optional[np.ndarray] = None
        self._reading_quality_scores: Optional[np.ndarray] = None
        self._listener = listener
        self._initial_position: Optional[np.ndarray] = None
        self._progress_delta = self._ranging_stage.progress_delta
        self._ranging_evenly_distributed = DEFAULT_READINGS_EVENLY_DISTRIBUTED
        self._rssi_evenly_distributed = DEFAULT_READINGS_EVENLY_DISTRIBUTED
        self._num_ranging_readings = 0
        self._num_rssi_readings = 0
        self._result_stage: Optional[RobustPositionEstimator] = None

        if sources is not None:
            self.sources = sources
        if fingerprint is not None:
            self.fingerprint = fingerprint
        if source_quality_scores is not None:
            self.source_quality_scores = source_quality_scores
        if fingerprint_reading_quality_scores is not None:
            self.fingerprint_reading_quality_scores = fingerprint_reading_quality_scores

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def min_required_sources(self) -> int:
        """Minimum number of sources and of readings per stage (3 in 2D, 4 in 3D)."""
        return self._min_required

    @property
    def ranging_method(self) -> RobustEstimatorMethod:
        return self._ranging_stage.method

    @property
    def rssi_method(self) -> RobustEstimatorMethod:
        return self._rssi_stage.method

    @property
    def sources(self) -> Optional[Sequence[RadioSource]]:
        return self._sources

    @sources.setter
    def sources(self, value: Sequence[RadioSource]) -> None:
        self._check_not_locked()
        if value is None:
            raise ValueError("sources cannot be None")
        if len(value) < self._min_required:
            raise ValueError(
                f"At least {self._min_required} sources are required, got {len(value)}"
            )
        for source in value:
            if not isinstance(source, RadioSource):
                raise TypeError(f"sources must contain RadioSource, got {type(source)}")
        self._sources = value

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, value: Fingerprint) -> None:
        self._check_not_locked()
        if value is None:
            raise ValueError("fingerprint cannot be None")
        if not isinstance(value, Fingerprint):
            raise TypeError(f"fingerprint must be a Fingerprint, got {type(value)}")
        self._fingerprint = value
        self._num_ranging_readings = sum(1 for r in value if r.reading_type.has_distance)
        self._num_rssi_readings = sum(1 for r in value if r.reading_type.has_rssi)

    @property
    def source_quality_scores(self) -> Optional[np.ndarray]:
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, value: Sequence[float]) -> None:
        self._check_not_locked()
        self._source_quality_scores = self._validate_scores(value, "source_quality_scores")

    @property
    def fingerprint_reading_quality_scores(self) -> Optional[np.ndarray]:
        return self._reading_quality_scores

    @fingerprint_reading_quality_scores.setter
    def fingerprint_reading_quality_scores(self, value: Sequence[float]) -> None:
        self._check_not_locked()
        self._reading_quality_scores = self._validate_scores(
            value, "fingerprint_reading_quality_scores"
        )

    @property
    def listener(self) -> Optional[SequentialRobustPositionEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, value: Optional[SequentialRobustPositionEstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = value

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        """Starting point used by the RSSI stage, and by the ranging stage when
        no RSSI position is available. Only relevant when the linear solver of
        a stage is disabled."""
        return self._initial_position

    @initial_position.setter
    def initial_position(self, value: Optional[Sequence]) -> None:
        self._check_not_locked()
        if value is None:
            self._initial_position = None
            return
        value = np.array(value, dtype=float)
        if value.shape != (self._dimension,):
            raise ValueError(
                f"initial_position must have shape ({self._dimension},), got {value.shape}"
            )
        self._initial_position = value

    @property
    def progress_delta(self) -> float:
        """Minimum change of the overall progress between two notifications."""
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_locked()
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {value}")
        self._progress_delta = float(value)

    @property
    def result_refined(self) -> bool:
        """Whether the result of each stage is refined on its inliers."""
        return self._ranging_stage.result_refined

    @result_refined.setter
    def result_refined(self, value: bool) -> None:
        self._check_not_locked()
        self._ranging_stage.result_refined = value
        self._rssi_stage.result_refined = value

    @property
    def covariance_kept(self) -> bool:
        return self._ranging_stage.covariance_kept

    @covariance_kept.setter
    def covariance_kept(self, value: bool) -> None:
        self._check_not_locked()
        self._ranging_stage.covariance_kept = value
        self._rssi_stage.covariance_kept = value

    @property
    def ranging_readings_evenly_distributed(self) -> bool:
        """Whether ranging readings are interleaved across sources before sampling."""
        return self._ranging_evenly_distributed

    @ranging_readings_evenly_distributed.setter
    def ranging_readings_evenly_distributed(self, value: bool) -> None:
        self._check_not_locked()
        self._ranging_evenly_distributed = bool(value)

    @property
    def rssi_readings_evenly_distributed(self) -> bool:
        """Whether RSSI readings are interleaved across sources before sampling."""
        return self._rssi_evenly_distributed

    @rssi_readings_evenly_distributed.setter
    def rssi_readings_evenly_distributed(self, value: bool) -> None:
        self._check_not_locked()
        self._rssi_evenly_distributed = bool(value)

    # ------------------------------------------------------------------
    # Per-stage options
    # ------------------------------------------------------------------

    ranging_threshold = _stage_option(
        "_ranging_stage", "threshold", "Inlier or stop threshold of the ranging stage (m)."
    )
    ranging_confidence = _stage_option(
        "_ranging_stage", "confidence", "Confidence of the ranging stage."
    )
    ranging_max_iterations = _stage_option(
        "_ranging_stage", "max_iterations", "Maximum iterations of the ranging stage."
    )
    ranging_fallback_distance_standard_deviation = _stage_option(
        "_ranging_stage",
        "fallback_distance_standard_deviation",
        "Standard deviation of ranging distances without known uncertainty (m).",
    )
    ranging_radio_source_position_covariance_used = _stage_option(
        "_ranging_stage",
        "radio_source_position_covariance_used",
        "Whether source position covariance is added to ranging distance uncertainty.",
    )
    ranging_linear_solver_used = _stage_option(
        "_ranging_stage", "linear_solver_used", "Whether the ranging stage uses a linear solver."
    )
    ranging_homogeneous_linear_solver_used = _stage_option(
        "_ranging_stage",
        "homogeneous_linear_solver_used",
        "Whether the ranging stage uses the homogeneous linear solver.",
    )
    ranging_preliminary_solutions_refined = _stage_option(
        "_ranging_stage",
        "preliminary_solutions_refined",
        "Whether the ranging stage refines its preliminary solutions.",
    )

    rssi_threshold = _stage_option(
        "_rssi_stage", "threshold", "Inlier or stop threshold of the RSSI stage (m)."
    )
    rssi_confidence = _stage_option("_rssi_stage", "confidence", "Confidence of the RSSI stage.")
    rssi_max_iterations = _stage_option(
        "_rssi_stage", "max_iterations", "Maximum iterations of the RSSI stage."
    )
    rssi_fallback_distance_standard_deviation = _stage_option(
        "_rssi_stage",
        "fallback_distance_standard_deviation",
        "Standard deviation of RSSI distances without known uncertainty (m).",
    )
    rssi_radio_source_position_covariance_used = _stage_option(
        "_rssi_stage",
        "radio_source_position_covariance_used",
        "Whether source position covariance is added to RSSI distance uncertainty.",
    )
    rssi_linear_solver_used = _stage_option(
        "_rssi_stage", "linear_solver_used", "Whether the RSSI stage uses a linear solver."
    )
    rssi_homogeneous_linear_solver_used = _stage_option(
        "_rssi_stage",
        "homogeneous_linear_solver_used",
        "Whether the RSSI stage uses the homogeneous linear solver.",
    )
    rssi_preliminary_solutions_refined = _stage_option(
        "_rssi_stage",
        "preliminary_solutions_refined",
        "Whether the RSSI stage refines its preliminary solutions.",
    )

    # ------------------------------------------------------------------
    # Stages and results
    # ------------------------------------------------------------------

    @property
    def num_ranging_readings(self) -> int:
        """Number of fingerprint readings carrying a distance."""
        return self._num_ranging_readings

    @property
    def num_rssi_readings(self) -> int:
        """Number of fingerprint readings carrying an RSSI value."""
        return self._num_rssi_readings

    @property
    def ranging_stage_available(self) -> bool:
        return self._num_ranging_readings >= self._min_required

    @property
    def rssi_stage_available(self) -> bool:
        return self._num_rssi_readings >= self._min_required

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return None if self._result_stage is None else self._result_stage.estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return None if self._result_stage is None else self._result_stage.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return None if self._result_stage is None else self._result_stage.inliers_data

    @property
    def positions(self) -> Optional[np.ndarray]:
        """Source positions used by the stage that produced the result."""
        return None if self._result_stage is None else self._result_stage.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._result_stage is None else self._result_stage.distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        if self._result_stage is None:
            return None
        return self._result_stage.distance_standard_deviations

    def accuracy(
        self,
        confidence: Optional[float] = None,
        standard_deviation_factor: float = DEFAULT_STANDARD_DEVIATION_FACTOR,
    ) -> Accuracy:
        """Accuracy of the last estimate (infinite when no covariance is kept)."""
        return Accuracy(
            self.covariance,
            confidence=confidence,
            standard_deviation_factor=standard_deviation_factor,
        )

    @property
    def is_ready(self) -> bool:
        if self._sources is None or self._fingerprint is None:
            return False
        if not (self.ranging_stage_available or self.rssi_stage_available):
            return False
        if self._needs_scores():
            return self._scores_match()
        return True

    def estimate(self) -> np.ndarray:
        """
        Estimate the position of the fingerprint in up to two stages.

        Returns:
            Estimated position, shape (dimension,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If the inputs do not allow any stage to run.
            RobustEstimatorError: If the last stage that ran found no solution.
        """
        with self._locked():
            self._result_stage = None
            if not self.is_ready:
                raise NotReadyError(
                    "Estimator is not ready: sources, a fingerprint with enough ranging or "
                    "RSSI readings and (for PROSAC/PROMedS) quality scores must be set"
                )

            ranging_fp, ranging_scores, rssi_fp, rssi_scores = split_fingerprint(
                self._fingerprint, self._reading_quality_scores
            )
            run_rssi = self.rssi_stage_available and self._setup_stage(
                self._rssi_stage, rssi_fp, rssi_scores, self._rssi_evenly_distributed
            )
            run_ranging = self.ranging_stage_available and self._setup_stage(
                self._ranging_stage, ranging_fp, ranging_scores, self._ranging_evenly_distributed
            )
            if not (run_rssi or run_ranging):
                raise NotReadyError("No stage has enough usable readings")

            both = run_rssi and run_ranging
            scale = 0.5 if both else 1.0
            self._rssi_progress.scale = scale
            self._ranging_progress.scale = scale
            self._ranging_progress.offset = 0.5 if both else 0.0
            stage_delta = min(1.0, self._progress_delta / scale)
            self._rssi_stage.progress_delta = stage_delta
            self._ranging_stage.progress_delta = stage_delta

            if self._listener is not None:
                self._listener.on_estimate_start(self)

            coarse_position = self._initial_position
            if run_rssi:
                self._rssi_stage.initial_position = self._initial_position
                try:
                    coarse_position = self._rssi_stage.estimate()
                    self._result_stage = self._rssi_stage
                except RobustEstimatorError:
                    if not run_ranging:
                        raise
                    coarse_position = None

            if run_ranging:
                self._ranging_stage.initial_position = (
                    coarse_position if coarse_position is not None else self._initial_position
                )
                self._result_stage = None
                result = self._ranging_stage.estimate()
                self._result_stage = self._ranging_stage
            else:
                result = coarse_position

            if self._listener is not None:
                self._listener.on_estimate_end(self)
            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_scores(self, value: Sequence[float], name: str) -> np.ndarray:
        if value is None:
            raise ValueError(f"{name} cannot be None")
        scores = np.array(value, dtype=float)
        if scores.ndim != 1 or len(scores) < self._min_required:
            raise ValueError(
                f"{name} must be a 1D array with at least {self._min_required} elements"
            )
        return scores

    def _needs_scores(self) -> bool:
        return (
            self.ranging_stage_available and self.ranging_method.uses_quality_scores
        ) or (self.rssi_stage_available and self.rssi_method.uses_quality_scores)

    def _scores_match(self) -> bool:
        return (
            self._source_quality_scores is not None
            and self._reading_quality_scores is not None
            and len(self._source_quality_scores) == len(self._sources)
            and len(self._reading_quality_scores) == len(self._fingerprint)
        )

    def _setup_stage(
        self,
        stage: RobustPositionEstimator,
        fingerprint: Fingerprint,
        reading_scores: List[float],
        evenly_distributed: bool,
    ) -> bool:
        """Push sources, readings and scores into a stage; False if it cannot run."""
        has_scores = self._scores_match()
        source_scores = (
            self._source_quality_scores if has_scores else np.zeros(len(self._sources))
        )
        if evenly_distributed:
            fingerprint, reading_scores = distribute_readings_evenly(
                self._sources, fingerprint, source_scores, reading_scores
            )
            # Rank-based reading scores alone define the sampling order
            source_scores = np.zeros(len(self._sources))

        stage.sources = self._sources
        stage.fingerprint = fingerprint
        if stage.method.uses_quality_scores and len(fingerprint) >= self._min_required:
            stage.source_quality_scores = source_scores
            stage.fingerprint_reading_quality_scores = reading_scores
        return stage.is_ready


class SequentialRobustPositionEstimator2D(SequentialRobustPositionEstimator):
    """Sequential robust position estimator for 2D positions."""

    def __init__(self, *args, **kwargs):
        super().__init__(2, *args, **kwargs)


class SequentialRobustPositionEstimator3D(SequentialRobustPositionEstimator):
    """Sequential robust position estimator for 3D positions."""

    def __init__(self, *args, **kwargs):
        super().__init__(3, *args, **kwargs)
