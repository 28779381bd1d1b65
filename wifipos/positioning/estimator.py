"""
Robust position estimation from radio-source fingerprints.

A RobustPositionEstimator converts the readings of a fingerprint into
distance hypotheses to known radio sources and solves the position with a
robust lateration solver, so that a fraction of corrupted readings (multipath,
wrong source positions, bad RSSI calibration) does not spoil the estimate.

Typical use:

    >>> estimator = create(RobustEstimatorMethod.RANSAC, dimension=2)
    >>> estimator.sources = sources
    >>> estimator.fingerprint = fingerprint
    >>> position = estimator.estimate()
    >>> estimator.accuracy().average_accuracy

PROSAC and PROMedS additionally need one quality score per source and one per
fingerprint reading; readings with higher combined score are sampled first.

Estimators are single-threaded and not re-entrant: while ``estimate()`` runs,
including inside listener callbacks, every setter and ``estimate()`` itself
raise LockedError.
"""

from typing import Optional, Sequence, Union

import numpy as np

from wifipos.errors import NotReadyError
from wifipos.lateration.base import Lockable, min_required_positions
from wifipos.lateration.robust import (
    DEFAULT_ROBUST_METHOD,
    InliersData,
    RobustEstimatorMethod,
    RobustLaterationSolver,
    RobustLaterationSolverListener,
)
from wifipos.positioning.accuracy import DEFAULT_STANDARD_DEVIATION_FACTOR, Accuracy
from wifipos.positioning.distances import (
    FALLBACK_DISTANCE_STANDARD_DEVIATION,
    LaterationInputs,
    build_lateration_inputs,
)
from wifipos.sources.types import Fingerprint, RadioSource

DEFAULT_RADIO_SOURCE_POSITION_COVARIANCE_USED = True


class RobustPositionEstimatorListener:
    """Receives events from a robust position estimator.

    Callbacks are invoked synchronously while the estimator is locked.
    """

    def on_estimate_start(self, estimator: "RobustPositionEstimator") -> None:
        pass

    def on_estimate_end(self, estimator: "RobustPositionEstimator") -> None:
        pass

    def on_estimate_next_iteration(
        self, estimator: "RobustPositionEstimator", iteration: int
    ) -> None:
        pass

    def on_estimate_progress_change(
        self, estimator: "RobustPositionEstimator", progress: float
    ) -> None:
        pass


class _SolverEventForwarder(RobustLaterationSolverListener):
    """Forwards solver events to the estimator listener."""

    def __init__(self, estimator: "RobustPositionEstimator"):
        self._estimator = estimator

    def on_solve_start(self, solver) -> None:
        if self._estimator.listener is not None:
            self._estimator.listener.on_estimate_start(self._estimator)

    def on_solve_end(self, solver) -> None:
        if self._estimator.listener is not None:
            self._estimator.listener.on_estimate_end(self._estimator)

    def on_solve_next_iteration(self, solver, iteration: int) -> None:
        if self._estimator.listener is not None:
            self._estimator.listener.on_estimate_next_iteration(self._estimator, iteration)

    def on_solve_progress_change(self, solver, progress: float) -> None:
        if self._estimator.listener is not None:
            self._estimator.listener.on_estimate_progress_change(self._estimator, progress)


def _solver_option(name: str, doc: str) -> property:
    """Property delegating to the robust solver, guarded by the estimator lock."""

    def getter(self):
        return getattr(self._solver, name)

    def setter(self, value):
        self._check_not_locked()
        setattr(self._solver, name, value)

    return property(getter, setter, doc=doc)


class RobustPositionEstimator(Lockable):
    """
    Robust 2D/3D position estimator.

    Args:
        dimension: Number of position coordinates (2 or 3).
        sources: Located radio sources (at least dimension + 1).
        fingerprint: Fingerprint with readings of the sources.
        source_quality_scores: One quality score per source (PROSAC/PROMedS).
        fingerprint_reading_quality_scores: One quality score per fingerprint
            reading (PROSAC/PROMedS).
        method: Robust estimation method. Defaults to PROMedS.
        listener: Optional RobustPositionEstimatorListener.
        random_state: Seed or numpy Generator for subset sampling.

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
        method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        listener: Optional[RobustPositionEstimatorListener] = None,
        random_state: Union[None, int, np.random.Generator] = None,
    ):
        super().__init__()
        self._dimension = dimension
        self._min_required = min_required_positions(dimension)
        self._solver = RobustLaterationSolver(
            dimension,
            method=method,
            listener=_SolverEventForwarder(self),
            random_state=random_state,
        )

        self._sources: Optional[Sequence[RadioSource]] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._source_quality_scores: Optional[np.ndarray] = None
        self._reading_quality_scores: Optional[np.ndarray] = None
        self._listener = listener
        self._position_covariance_used = DEFAULT_RADIO_SOURCE_POSITION_COVARIANCE_USED
        self._fallback_std = FALLBACK_DISTANCE_STANDARD_DEVIATION
        self._inputs: Optional[LaterationInputs] = None

        if sources is not None:
            self.sources = sources
        if fingerprint is not None:
            self.fingerprint = fingerprint
        if source_quality_scores is not None:
            self.source_quality_scores = source_quality_scores
        if fingerprint_reading_quality_scores is not None:
            self.fingerprint_reading_quality_scores = fingerprint_reading_quality_scores

    @classmethod
    def create(
        cls,
        method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        **kwargs,
    ) -> "RobustPositionEstimator":
        """Create an estimator of this class using ``method``."""
        return cls(method=method, **kwargs)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._solver.method

    @property
    def min_required_sources(self) -> int:
        """Minimum number of sources (3 in 2D, 4 in 3D)."""
        return self._min_required

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
        self._build_inputs()

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
        self._build_inputs()

    @property
    def source_quality_scores(self) -> Optional[np.ndarray]:
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, value: Sequence[float]) -> None:
        self._check_not_locked()
        self._source_quality_scores = self._validate_scores(value, "source_quality_scores")
        self._build_inputs()

    @property
    def fingerprint_reading_quality_scores(self) -> Optional[np.ndarray]:
        return self._reading_quality_scores

    @fingerprint_reading_quality_scores.setter
    def fingerprint_reading_quality_scores(self, value: Sequence[float]) -> None:
        self._check_not_locked()
        self._reading_quality_scores = self._validate_scores(
            value, "fingerprint_reading_quality_scores"
        )
        self._build_inputs()

    @property
    def listener(self) -> Optional[RobustPositionEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, value: Optional[RobustPositionEstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = value

    @property
    def radio_source_position_covariance_used(self) -> bool:
        """Whether source position covariance is added to distance uncertainty."""
        return self._position_covariance_used

    @radio_source_position_covariance_used.setter
    def radio_source_position_covariance_used(self, value: bool) -> None:
        self._check_not_locked()
        self._position_covariance_used = bool(value)
        self._build_inputs()

    @property
    def fallback_distance_standard_deviation(self) -> float:
        """Standard deviation of distances with no known uncertainty (m)."""
        return self._fallback_std

    @fallback_distance_standard_deviation.setter
    def fallback_distance_standard_deviation(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0:
            raise ValueError(f"fallback_distance_standard_deviation must be positive, got {value}")
        self._fallback_std = float(value)
        self._build_inputs()

    # ------------------------------------------------------------------
    # Robust solver options
    # ------------------------------------------------------------------

    threshold = _solver_option(
        "threshold",
        "Inlier threshold (RANSAC, MSAC, PROSAC) or stop threshold (LMedS, PROMedS) in meters.",
    )
    confidence = _solver_option("confidence", "Confidence of the result, in [0, 1].")
    max_iterations = _solver_option("max_iterations", "Maximum number of robust iterations.")
    progress_delta = _solver_option(
        "progress_delta", "Minimum progress change between progress notifications."
    )
    result_refined = _solver_option(
        "result_refined", "Whether the robust result is refined on its inliers."
    )
    covariance_kept = _solver_option(
        "covariance_kept", "Whether the covariance of the refined result is kept."
    )
    linear_solver_used = _solver_option(
        "linear_solver_used", "Whether a linear solver provides preliminary solutions."
    )
    homogeneous_linear_solver_used = _solver_option(
        "homogeneous_linear_solver_used",
        "Whether the homogeneous (instead of inhomogeneous) linear solver is used.",
    )
    preliminary_solutions_refined = _solver_option(
        "preliminary_solutions_refined",
        "Whether preliminary subset solutions are refined non-linearly.",
    )
    preliminary_subset_size = _solver_option(
        "preliminary_subset_size", "Number of measurements per robust subset."
    )
    initial_position = _solver_option(
        "initial_position",
        "Starting point of non-linear preliminary solves when the linear solver is disabled.",
    )

    # ------------------------------------------------------------------
    # Derived inputs and results
    # ------------------------------------------------------------------

    @property
    def positions(self) -> Optional[np.ndarray]:
        """Source position of each distance hypothesis (N × dimension)."""
        return None if self._inputs is None else self._inputs.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._inputs is None else self._inputs.distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return None if self._inputs is None else self._inputs.standard_deviations

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Combined (reading + source) quality score of each distance hypothesis."""
        return None if self._inputs is None else self._inputs.quality_scores

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._solver.estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._solver.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._solver.inliers_data

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
        if self._inputs is None or len(self._inputs) < self._min_required:
            return False
        if len(self._inputs) < self._solver.preliminary_subset_size:
            return False
        if self.method.uses_quality_scores:
            return self._scores_match_sources() and self._scores_match_readings()
        return True

    def estimate(self) -> np.ndarray:
        """
        Estimate the position of the fingerprint.

        Returns:
            Estimated position, shape (dimension,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If sources, fingerprint (and quality scores for
                PROSAC/PROMedS) are insufficient.
            RobustEstimatorError: If the robust solver found no solution.
        """
        with self._locked():
            if not self.is_ready:
                raise NotReadyError(
                    "Estimator is not ready: sources, fingerprint and (for PROSAC/PROMedS) "
                    "quality scores must be set"
                )

            self._solver.set_positions_distances_and_standard_deviations(
                self._inputs.positions,
                self._inputs.distances,
                self._inputs.standard_deviations,
            )
            if self.method.uses_quality_scores:
                self._solver.quality_scores = self._inputs.quality_scores

            return self._solver.solve()

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

    def _scores_match_sources(self) -> bool:
        return (
            self._source_quality_scores is not None
            and self._sources is not None
            and len(self._source_quality_scores) == len(self._sources)
        )

    def _scores_match_readings(self) -> bool:
        return (
            self._reading_quality_scores is not None
            and self._fingerprint is not None
            and len(self._reading_quality_scores) == len(self._fingerprint)
        )

    def _build_inputs(self) -> None:
        """Rebuild lateration inputs after any change of sources, fingerprint or scores."""
        if (
            self._sources is None
            or self._fingerprint is None
            or len(self._sources) < self._min_required
            or len(self._fingerprint) < self._min_required
        ):
            self._inputs = None
            return

        self._inputs = build_lateration_inputs(
            self._sources,
            self._fingerprint,
            self._dimension,
            source_quality_scores=(
                self._source_quality_scores if self._scores_match_sources() else None
            ),
            reading_quality_scores=(
                self._reading_quality_scores if self._scores_match_readings() else None
            ),
            use_position_covariance=self._position_covariance_used,
            fallback_distance_standard_deviation=self._fallback_std,
        )


class RobustPositionEstimator2D(RobustPositionEstimator):
    """Robust position estimator for 2D positions."""

    def __init__(self, *args, **kwargs):
        super().__init__(2, *args, **kwargs)


class RobustPositionEstimator3D(RobustPositionEstimator):
    """Robust position estimator for 3D positions."""

    def __init__(self, *args, **kwargs):
        super().__init__(3, *args, **kwargs)


def create(
    method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
    dimension: int = 2,
    **kwargs,
) -> RobustPositionEstimator:
    """
    Create a robust position estimator.

    Args:
        method: Robust estimation method. Defaults to PROMedS.
        dimension: 2 or 3.
        **kwargs: Forwarded to the estimator constructor (sources, fingerprint,
            quality scores, listener, random_state).

    Returns:
        RobustPositionEstimator2D or RobustPositionEstimator3D using ``method``.

    Raises:
        ValueError: If dimension is not 2 or 3.
    """
    if dimension == 2:
        return RobustPositionEstimator2D(method=method, **kwargs)
    if dimension == 3:
        return RobustPositionEstimator3D(method=method, **kwargs)
    raise ValueError(f"dimension must be 2 or 3, got {dimension}")
