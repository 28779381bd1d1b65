"""
Robust lateration with RANSAC-family estimators.

A robust solver repeatedly draws minimal subsets of (position, distance)
pairs, solves each subset, scores the candidate position against every
measurement using the residuals

    r_i = | ‖x - p_i‖ - d_i |

and keeps the best candidate. The five supported methods share the same loop
and only differ in how subsets are drawn and how candidates are scored:

    Method    Sampling                     Scoring
    -------   --------------------------   ---------------------------------
    RANSAC    uniform                      number of residuals ≤ threshold
    MSAC      uniform                      Σ min(r_i², threshold²)
    LMedS     uniform                      median(r_i²)
    PROSAC    progressive (quality order)  number of residuals ≤ threshold
    PROMedS   progressive (quality order)  median(r_i²)

After the loop the best candidate can be refined with a non-linear solve on
its inliers, which also provides the covariance of the estimate.

References:
    Fischler & Bolles (1981), RANSAC.
    Rousseeuw (1984), Least median of squares regression.
    Torr & Zisserman (2000), MLESAC / MSAC.
    Chum & Matas (2005), Matching with PROSAC - progressive sample consensus.
"""

import math
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Union

import numpy as np

from wifipos.errors import LaterationError, NotReadyError, RobustEstimatorError
from wifipos.lateration.base import (
    LaterationSolver,
    LaterationSolverListener,
    validate_lateration_inputs,
)
from wifipos.lateration.linear import solve_homogeneous, solve_inhomogeneous
from wifipos.lateration.nonlinear import (
    DEFAULT_DISTANCE_STANDARD_DEVIATION,
    solve_nonlinear_lateration,
)


class RobustEstimatorMethod(Enum):
    """Robust estimation method."""

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def uses_quality_scores(self) -> bool:
        """True for methods whose sampling is biased by quality scores."""
        return self in (RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS)

    @property
    def is_median_based(self) -> bool:
        """True for methods scoring candidates with the median of squared residuals."""
        return self in (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS)


DEFAULT_ROBUST_METHOD = RobustEstimatorMethod.PROMEDS

# Inlier threshold of consensus methods (RANSAC, MSAC, PROSAC), in meters
DEFAULT_THRESHOLD = 1e-2
# Median residual below which median methods (LMedS, PROMedS) stop early
DEFAULT_STOP_THRESHOLD = 1e-5

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05

# Robust standard deviation factors for median scoring
_MAD_CONSISTENCY = 1.4826
_MEDIAN_INLIER_FACTOR = 2.5


def default_threshold(method: RobustEstimatorMethod) -> float:
    """Default threshold for a method (stop threshold for median methods)."""
    return DEFAULT_STOP_THRESHOLD if method.is_median_based else DEFAULT_THRESHOLD


@dataclass
class InliersData:
    """Inlier information of the best robust candidate.

    Attributes:
        inliers: Boolean mask (N,), True for measurements consistent with the estimate.
        residuals: Absolute distance residuals (N,) of every measurement.
        num_inliers: Number of True entries in ``inliers``.
        threshold: Residual threshold used to classify inliers. For RANSAC, MSAC
            and PROSAC this is the configured threshold. For LMedS and PROMedS it
            is adaptive, derived from the median residual of the best candidate
            (and never below the stop threshold).
    """

    inliers: np.ndarray
    residuals: np.ndarray
    num_inliers: int
    threshold: float


# =============================================================================
# Sampling strategies
# =============================================================================


class _UniformSampler:
    """Draws subsets uniformly at random without replacement."""

    def __init__(self, n: int, subset_size: int, rng: np.random.Generator):
        self._n = n
        self._k = subset_size
        self._rng = rng

    def sample(self) -> np.ndarray:
        return self._rng.choice(self._n, size=self._k, replace=False)


class _ProgressiveSampler:
    """PROSAC sampling: subsets are drawn from a pool of the best-ranked samples
    that grows as iterations proceed (Chum & Matas, 2005)."""

    def __init__(
        self,
        quality_scores: np.ndarray,
        subset_size: int,
        rng: np.random.Generator,
        max_iterations: int,
    ):
        # Stable sort keeps input order among equal scores
        self._order = np.argsort(-np.asarray(quality_scores, dtype=float), kind="stable")
        self._n = len(self._order)
        self._k = subset_size
        self._rng = rng

        tn = float(max_iterations)
        for i in range(subset_size):
            tn *= (subset_size - i) / (self._n - i)
        self._tn = tn
        self._tn_prime = 1
        self._pool_size = subset_size
        self._t = 0

    def sample(self) -> np.ndarray:
        self._t += 1
        k = self._k

        while self._t > self._tn_prime and self._pool_size < self._n:
            tn_next = self._tn * (self._pool_size + 1) / (self._pool_size + 1 - k)
            self._tn_prime += int(math.ceil(tn_next - self._tn))
            self._tn = tn_next
            self._pool_size += 1

        if self._tn_prime < self._t:
            # Pool has stopped growing: sample uniformly from the whole pool
            local = self._rng.choice(self._pool_size, size=k, replace=False)
        else:
            # Newest sample in the pool is always part of the subset
            local = np.append(
                self._rng.choice(self._pool_size - 1, size=k - 1, replace=False),
                self._pool_size - 1,
            )
        return self._order[local]


# =============================================================================
# Scoring strategies
# =============================================================================


@dataclass
class _Evaluation:
    cost: float
    inliers: np.ndarray
    threshold: float
    support: int
    median_residual: float = np.inf


class _ConsensusScoring:
    """RANSAC/PROSAC: maximise the number of inliers, ties broken by inlier error."""

    def __init__(self, threshold: float):
        self.threshold = threshold

    def evaluate(self, residuals: np.ndarray) -> _Evaluation:
        inliers = residuals <= self.threshold
        n = len(residuals)
        # Tie-break term stays below 0.5 so one more inlier always wins
        tie_break = 0.5 * float(np.sum(residuals[inliers])) / (self.threshold * n)
        cost = (n - np.count_nonzero(inliers)) + tie_break
        return _Evaluation(
            cost=cost,
            inliers=inliers,
            threshold=self.threshold,
            support=int(np.count_nonzero(inliers)),
        )

    def is_good_enough(self, evaluation: _Evaluation) -> bool:
        return bool(np.all(evaluation.inliers))


class _TruncatedQuadraticScoring:
    """MSAC: minimise Σ min(r_i², threshold²)."""

    def __init__(self, threshold: float):
        self.threshold = threshold

    def evaluate(self, residuals: np.ndarray) -> _Evaluation:
        t2 = self.threshold**2
        cost = float(np.sum(np.minimum(residuals**2, t2)))
        inliers = residuals <= self.threshold
        return _Evaluation(
            cost=cost,
            inliers=inliers,
            threshold=self.threshold,
            support=int(np.count_nonzero(inliers)),
        )

    def is_good_enough(self, evaluation: _Evaluation) -> bool:
        return bool(np.all(evaluation.inliers))


class _MedianScoring:
    """LMedS/PROMedS: minimise median(r_i²).

    Inliers are residuals within 2.5 robust standard deviations, where the
    robust standard deviation is derived from the median with the usual
    small-sample correction. Residuals below the stop threshold are always
    inliers.

    The iteration count uses the support instead of the inlier count: the
    number of residuals at or below the median, capped at half the
    measurements (the breakdown point of the median).
    """

    def __init__(self, stop_threshold: float, subset_size: int):
        self.threshold = stop_threshold
        self._k = subset_size

    def evaluate(self, residuals: np.ndarray) -> _Evaluation:
        n = len(residuals)
        median_sq = float(np.median(residuals**2))
        correction = 1.0 + 5.0 / max(n - self._k, 1)
        sigma = _MAD_CONSISTENCY * correction * math.sqrt(median_sq)
        threshold = max(_MEDIAN_INLIER_FACTOR * sigma, self.threshold)
        below_median = int(np.count_nonzero(residuals**2 <= median_sq))
        return _Evaluation(
            cost=median_sq,
            inliers=residuals <= threshold,
            threshold=threshold,
            support=min(below_median, (n + 1) // 2),
            median_residual=math.sqrt(median_sq),
        )

    def is_good_enough(self, evaluation: _Evaluation) -> bool:
        return evaluation.median_residual <= self.threshold


def required_iterations(num_inliers: int, n: int, subset_size: int, confidence: float) -> float:
    """
    Number of iterations needed to draw an outlier-free subset with the given confidence.

    Computes log(1 - confidence) / log(1 - w^k) where w is the inlier ratio.

    Returns:
        Required iterations (may be ``inf`` when no inliers are known).
    """
    if n == 0 or num_inliers <= 0:
        return math.inf
    w_k = (num_inliers / n) ** subset_size
    if w_k >= 1.0:
        return 1.0
    if confidence >= 1.0:
        return math.inf
    if confidence <= 0.0:
        return 1.0
    return max(1.0, math.ceil(math.log(1.0 - confidence) / math.log(1.0 - w_k)))


# =============================================================================
# Robust solver
# =============================================================================


class RobustLaterationSolverListener(LaterationSolverListener):
    """Receives events from a robust lateration solver."""

    def on_solve_next_iteration(self, solver: "RobustLaterationSolver", iteration: int) -> None:
        pass

    def on_solve_progress_change(self, solver: "RobustLaterationSolver", progress: float) -> None:
        pass


class RobustLaterationSolver(LaterationSolver):
    """
    Robust lateration solver for 2D or 3D positions.

    Args:
        dimension: Number of position coordinates (2 or 3).
        positions: Source positions, shape (N, dimension).
        distances: Measured distances, shape (N,).
        standard_deviations: Optional distance standard deviations, shape (N,).
        quality_scores: Optional quality scores (N,), higher is better. Required
            by PROSAC and PROMedS.
        method: Robust estimation method. Defaults to PROMedS.
        listener: Optional RobustLaterationSolverListener.
        random_state: Seed or numpy Generator used for subset sampling.

    Example:
        >>> rng = np.random.default_rng(0)
        >>> sources = rng.uniform(-50, 50, size=(20, 2))
        >>> d = np.linalg.norm(sources - [1.0, 2.0], axis=1)
        >>> d[:3] += 30.0  # outliers
        >>> solver = RobustLaterationSolver(
        ...     2, sources, d, method=RobustEstimatorMethod.RANSAC, random_state=0)
        >>> np.round(solver.solve(), 6)
        array([1., 2.])
        >>> int(solver.inliers_data.num_inliers)
        17
    """

    def __init__(
        self,
        dimension: int,
        positions: Optional[Sequence] = None,
        distances: Optional[Sequence] = None,
        standard_deviations: Optional[Sequence] = None,
        quality_scores: Optional[Sequence] = None,
        method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        listener: Optional[RobustLaterationSolverListener] = None,
        random_state: Union[None, int, np.random.Generator] = None,
    ):
        if not isinstance(method, RobustEstimatorMethod):
            raise TypeError(f"method must be a RobustEstimatorMethod, got {type(method)}")
        self._method = method
        self._standard_deviations: Optional[np.ndarray] = None
        self._quality_scores: Optional[np.ndarray] = None
        super().__init__(dimension, listener=listener)

        self._threshold = default_threshold(method)
        self._confidence = DEFAULT_CONFIDENCE
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        self._progress_delta = DEFAULT_PROGRESS_DELTA
        self._result_refined = True
        self._covariance_kept = True
        self._linear_solver_used = True
        self._homogeneous_linear_solver_used = False
        self._preliminary_solutions_refined = True
        self._preliminary_subset_size = self.min_required_positions
        self._rng = np.random.default_rng(random_state)
        self._initial_position: Optional[np.ndarray] = None

        self._covariance: Optional[np.ndarray] = None
        self._inliers_data: Optional[InliersData] = None

        if positions is not None or distances is not None:
            self.set_positions_distances_and_standard_deviations(
                positions, distances, standard_deviations
            )
        if quality_scores is not None:
            self.quality_scores = quality_scores

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._method

    def set_positions_and_distances(self, positions: Sequence, distances: Sequence) -> None:
        self.set_positions_distances_and_standard_deviations(positions, distances, None)

    def set_positions_distances_and_standard_deviations(
        self,
        positions: Sequence,
        distances: Sequence,
        standard_deviations: Optional[Sequence],
    ) -> None:
        """Set positions, distances and (optionally) their standard deviations.

        Raises:
            LockedError: If the solver is locked.
            ValueError: If the inputs are invalid (previous values are kept).
        """
        self._check_not_locked()
        positions, distances, stds = validate_lateration_inputs(
            positions, distances, self.dimension, standard_deviations
        )
        self._positions = positions
        self._distances = distances
        self._standard_deviations = stds

    @property
    def standard_deviations(self) -> Optional[np.ndarray]:
        return self._standard_deviations

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, value: Sequence) -> None:
        self._check_not_locked()
        if value is None:
            raise ValueError("quality_scores cannot be None")
        value = np.array(value, dtype=float)
        if value.ndim != 1 or len(value) < self.min_required_positions:
            raise ValueError(
                f"quality_scores must be a 1D array with at least "
                f"{self.min_required_positions} elements"
            )
        self._quality_scores = value

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        """Inlier threshold (RANSAC, MSAC, PROSAC) or stop threshold (LMedS, PROMedS)."""
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0:
            raise ValueError(f"threshold must be positive, got {value}")
        self._threshold = float(value)

    @property
    def confidence(self) -> float:
        return self._confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._check_not_locked()
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {value}")
        self._confidence = float(value)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._check_not_locked()
        if value < 1:
            raise ValueError(f"max_iterations must be at least 1, got {value}")
        self._max_iterations = int(value)

    @property
    def progress_delta(self) -> float:
        """Minimum progress change between two progress notifications."""
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_locked()
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {value}")
        self._progress_delta = float(value)

    @property
    def result_refined(self) -> bool:
        return self._result_refined

    @result_refined.setter
    def result_refined(self, value: bool) -> None:
        self._check_not_locked()
        self._result_refined = bool(value)

    @property
    def covariance_kept(self) -> bool:
        return self._covariance_kept

    @covariance_kept.setter
    def covariance_kept(self, value: bool) -> None:
        self._check_not_locked()
        self._covariance_kept = bool(value)

    @property
    def linear_solver_used(self) -> bool:
        return self._linear_solver_used

    @linear_solver_used.setter
    def linear_solver_used(self, value: bool) -> None:
        self._check_not_locked()
        self._linear_solver_used = bool(value)

    @property
    def homogeneous_linear_solver_used(self) -> bool:
        return self._homogeneous_linear_solver_used

    @homogeneous_linear_solver_used.setter
    def homogeneous_linear_solver_used(self, value: bool) -> None:
        self._check_not_locked()
        self._homogeneous_linear_solver_used = bool(value)

    @property
    def preliminary_solutions_refined(self) -> bool:
        return self._preliminary_solutions_refined

    @preliminary_solutions_refined.setter
    def preliminary_solutions_refined(self, value: bool) -> None:
        self._check_not_locked()
        self._preliminary_solutions_refined = bool(value)

    @property
    def preliminary_subset_size(self) -> int:
        return self._preliminary_subset_size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, value: int) -> None:
        self._check_not_locked()
        if value < self.min_required_positions:
            raise ValueError(
                f"preliminary_subset_size must be at least {self.min_required_positions}, "
                f"got {value}"
            )
        self._preliminary_subset_size = int(value)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        """Starting point of non-linear preliminary solves.

        Only used when the linear solver is disabled; otherwise the linear
        solution of each subset is the starting point. None means the centroid
        of the subset positions.
        """
        return self._initial_position

    @initial_position.setter
    def initial_position(self, value: Optional[Sequence]) -> None:
        self._check_not_locked()
        if value is None:
            self._initial_position = None
            return
        value = np.array(value, dtype=float)
        if value.shape != (self.dimension,):
            raise ValueError(
                f"initial_position must have shape ({self.dimension},), got {value.shape}"
            )
        self._initial_position = value

    @property
    def listener(self) -> Optional[RobustLaterationSolverListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[RobustLaterationSolverListener]) -> None:
        self._check_not_locked()
        self._listener = listener

    # ------------------------------------------------------------------
    # State and results
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        if not super().is_ready:
            return False
        if len(self._distances) < self._preliminary_subset_size:
            return False
        if self._method.uses_quality_scores:
            return (
                self._quality_scores is not None
                and len(self._quality_scores) == len(self._distances)
            )
        return True

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._inliers_data

    def solve(self) -> np.ndarray:
        """
        Run the robust estimation.

        Returns:
            Estimated position, shape (dimension,).

        Raises:
            LockedError: If a solve is already running.
            NotReadyError: If the inputs are insufficient.
            RobustEstimatorError: If no subset produced a candidate position.
        """
        with self._locked():
            if not self.is_ready:
                raise NotReadyError(
                    "Positions, distances (and quality scores for PROSAC/PROMedS) "
                    "must be set before solving"
                )

            if self._listener is not None:
                self._listener.on_solve_start(self)

            self._inliers_data = None
            self._covariance = None
            self._estimated_position = None
            self._estimated_position = self._solve()

            if self._listener is not None:
                self._listener.on_solve_end(self)

            return self._estimated_position.copy()

    # ------------------------------------------------------------------
    # Algorithm
    # ------------------------------------------------------------------

    def _solve(self) -> np.ndarray:
        n = len(self._distances)
        k = self._preliminary_subset_size

        if self._method.uses_quality_scores:
            sampler = _ProgressiveSampler(self._quality_scores, k, self._rng, self._max_iterations)
        else:
            sampler = _UniformSampler(n, k, self._rng)

        if self._method.is_median_based:
            scoring = _MedianScoring(self._threshold, k)
        elif self._method is RobustEstimatorMethod.MSAC:
            scoring = _TruncatedQuadraticScoring(self._threshold)
        else:
            scoring = _ConsensusScoring(self._threshold)

        best_position: Optional[np.ndarray] = None
        best: Optional[_Evaluation] = None
        best_residuals: Optional[np.ndarray] = None
        expected_iterations = float(self._max_iterations)
        last_progress = 0.0
        iteration = 0

        while iteration < min(expected_iterations, self._max_iterations):
            subset = sampler.sample()
            for candidate in self._preliminary_solutions(subset):
                residuals = self._residuals(candidate)
                evaluation = scoring.evaluate(residuals)
                if best is None or evaluation.cost < best.cost:
                    best_position = candidate
                    best = evaluation
                    best_residuals = residuals
                    expected_iterations = min(
                        float(self._max_iterations),
                        required_iterations(evaluation.support, n, k, self._confidence),
                    )

            iteration += 1
            if self._listener is not None:
                self._listener.on_solve_next_iteration(self, iteration)
                progress = min(iteration / max(expected_iterations, 1.0), 1.0)
                if progress - last_progress >= self._progress_delta:
                    last_progress = progress
                    self._listener.on_solve_progress_change(self, progress)

            if best is not None and scoring.is_good_enough(best):
                break

        if best_position is None:
            raise RobustEstimatorError(
                f"{self._method.name} could not find any solution in {iteration} iterations"
            )

        self._inliers_data = InliersData(
            inliers=best.inliers,
            residuals=best_residuals,
            num_inliers=int(np.count_nonzero(best.inliers)),
            threshold=best.threshold,
        )
        return self._attempt_refine(best_position)

    def _residuals(self, position: np.ndarray) -> np.ndarray:
        return np.abs(np.linalg.norm(self._positions - position, axis=1) - self._distances)

    def _distance_stds(self, indices: np.ndarray) -> np.ndarray:
        if self._standard_deviations is None:
            return np.full(len(indices), DEFAULT_DISTANCE_STANDARD_DEVIATION)
        return self._standard_deviations[indices]

    def _preliminary_solutions(self, subset: np.ndarray) -> List[np.ndarray]:
        """Solve a subset; an empty list means the subset produced no candidate."""
        positions = self._positions[subset]
        distances = self._distances[subset]

        estimate = None
        try:
            if self._linear_solver_used:
                if self._homogeneous_linear_solver_used:
                    estimate = solve_homogeneous(positions, distances)
                else:
                    estimate = solve_inhomogeneous(positions, distances)

            if self._preliminary_solutions_refined or estimate is None:
                result = solve_nonlinear_lateration(
                    positions,
                    distances,
                    self._distance_stds(subset),
                    initial_position=self._initial_position if estimate is None else estimate,
                    return_covariance=False,
                )
                estimate = result.position
        except LaterationError:
            return []

        return [estimate]

    def _attempt_refine(self, position: np.ndarray) -> np.ndarray:
        """Refine the best candidate on its inliers; fall back to it on failure."""
        inliers = self._inliers_data.inliers
        if not self._result_refined or np.count_nonzero(inliers) < self.min_required_positions:
            return position

        indices = np.flatnonzero(inliers)
        try:
            result = solve_nonlinear_lateration(
                self._positions[indices],
                self._distances[indices],
                self._distance_stds(indices),
                initial_position=position,
                return_covariance=self._covariance_kept,
            )
        except LaterationError as e:
            warnings.warn(
                f"Refinement of robust lateration result failed ({e}). "
                "Returning unrefined estimate.",
                RuntimeWarning,
            )
            return position

        if self._covariance_kept:
            self._covariance = result.covariance
        return result.position
