"""
Non-linear lateration using Levenberg-Marquardt.

Given source positions p_i, measured distances d_i and their standard
deviations σ_i, the position is estimated as

    x̂ = argmin Σ_i (d_i - ‖x - p_i‖)² / σ_i²

The Levenberg-Marquardt iteration solves the damped normal equations

    (JᵀWJ + μI) Δx = JᵀW r,     W = diag(1/σ_i²),  r = d - h(x)

adapting μ with the gain ratio between actual and predicted cost decrease.
At the solution the covariance of the estimate is (JᵀWJ)⁻¹ and the
chi-square value is rᵀWr.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from wifipos.errors import LaterationError
from wifipos.lateration.base import (
    LaterationSolver,
    LaterationSolverListener,
    validate_lateration_inputs,
)
from wifipos.utils.geometry import range_jacobian

# Default standard deviation assumed for distances without one
DEFAULT_DISTANCE_STANDARD_DEVIATION = 1e-3  # m
DEFAULT_MAX_ITERATIONS = 100
DEFAULT_TOLERANCE = 1e-10


@dataclass
class NonlinearLaterationResult:
    """Result container for non-linear lateration.

    Attributes:
        position: Estimated position (d,).
        covariance: Covariance of the position (d × d), or None.
        chi_sq: Weighted sum of squared residuals rᵀWr.
        residuals: Final distance residuals d - ‖x̂ - p_i‖.
        iterations: Number of iterations performed.
        converged: Whether the step norm fell below the tolerance.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    chi_sq: float
    residuals: np.ndarray
    iterations: int
    converged: bool


def solve_nonlinear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    standard_deviations: Optional[np.ndarray] = None,
    initial_position: Optional[np.ndarray] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tol: float = DEFAULT_TOLERANCE,
    mu0: float = 1e-3,
    return_covariance: bool = True,
) -> NonlinearLaterationResult:
    """
    Levenberg-Marquardt lateration.

    Args:
        positions: Source positions, shape (N, d).
        distances: Measured distances, shape (N,).
        standard_deviations: Distance standard deviations, shape (N,). Defaults
            to DEFAULT_DISTANCE_STANDARD_DEVIATION for every distance.
        initial_position: Initial guess (d,). Defaults to the centroid of the
            source positions.
        max_iterations: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        mu0: Initial damping parameter.
        return_covariance: If True, compute the covariance of the estimate.

    Returns:
        NonlinearLaterationResult with estimate, covariance and diagnostics.

    Raises:
        LaterationError: If the iteration budget is exhausted without
            convergence or the problem is numerically invalid.

    Example:
        >>> sources = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        >>> d = np.linalg.norm(sources - np.array([5.0, 5.0]), axis=1)
        >>> result = solve_nonlinear_lateration(sources, d, initial_position=np.zeros(2))
        >>> np.round(result.position, 6)
        array([5., 5.])
    """
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)
    m, n = positions.shape

    if standard_deviations is None:
        standard_deviations = np.full(m, DEFAULT_DISTANCE_STANDARD_DEVIATION)
    weights = 1.0 / np.asarray(standard_deviations, dtype=float) ** 2

    if initial_position is None:
        x = positions.mean(axis=0)
    else:
        x = np.array(initial_position, dtype=float)
        if x.shape != (n,):
            raise ValueError(f"initial_position must have shape ({n},), got {x.shape}")

    def residuals_at(point: np.ndarray) -> np.ndarray:
        return distances - np.linalg.norm(point - positions, axis=1)

    # LM initialization
    mu = mu0
    nu = 2.0
    converged = False
    iteration = 0

    for iteration in range(max_iterations):
        hx, J = range_jacobian(x, positions)
        r = distances - hx

        JtW = J.T * weights
        JtWJ = JtW @ J
        JtWr = JtW @ r
        cost = 0.5 * np.sum(weights * r**2)

        # Scale damping to the problem so that μ is dimensionless
        damping = mu * max(float(np.max(np.diag(JtWJ))), 1.0)
        delta_x = np.zeros(n)

        while True:
            try:
                delta_x = np.linalg.solve(JtWJ + damping * np.eye(n), JtWr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtWJ + damping * np.eye(n), JtWr, rcond=None)[0]

            x_new = x + delta_x
            cost_new = 0.5 * np.sum(weights * residuals_at(x_new) ** 2)

            # Gain ratio: actual / predicted decrease
            predicted_decrease = 0.5 * delta_x @ (damping * delta_x + JtWr)
            actual_decrease = cost - cost_new
            gain_ratio = actual_decrease / predicted_decrease if predicted_decrease > 0 else 0.0

            if gain_ratio > 0:
                x = x_new
                mu *= max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0
                break

            mu *= nu
            nu *= 2.0
            damping = mu * max(float(np.max(np.diag(JtWJ))), 1.0)

            # Cost cannot be decreased any further
            if mu > 1e10:
                delta_x = np.zeros(n)
                break

        if not np.all(np.isfinite(x)):
            raise LaterationError("Non-linear lateration diverged")

        if np.linalg.norm(delta_x) < tol * (1.0 + np.linalg.norm(x)):
            converged = True
            break

    if not converged:
        raise LaterationError(
            f"Non-linear lateration did not converge in {max_iterations} iterations"
        )

    hx, J = range_jacobian(x, positions)
    r = distances - hx
    chi_sq = float(np.sum(weights * r**2))

    P = None
    if return_covariance:
        JtWJ = (J.T * weights) @ J
        try:
            P = np.linalg.inv(JtWJ)
        except np.linalg.LinAlgError:
            P = np.linalg.pinv(JtWJ)

    return NonlinearLaterationResult(
        position=x,
        covariance=P,
        chi_sq=chi_sq,
        residuals=r,
        iterations=iteration + 1,
        converged=converged,
    )


class NonlinearLaterationSolver(LaterationSolver):
    """
    Non-linear lateration solver for 2D or 3D positions.

    Refines an initial position (or the centroid of the sources) by weighted
    Levenberg-Marquardt and exposes the covariance of the estimate.

    Example:
        >>> sources = [[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]]
        >>> d = np.linalg.norm(np.array(sources) - [1.0, 2.0, 3.0], axis=1)
        >>> solver = NonlinearLaterationSolver(3, sources, d)
        >>> np.round(solver.solve(), 6)
        array([1., 2., 3.])
        >>> solver.covariance.shape
        (3, 3)
    """

    def __init__(
        self,
        dimension: int,
        positions: Optional[Sequence] = None,
        distances: Optional[Sequence] = None,
        standard_deviations: Optional[Sequence] = None,
        initial_position: Optional[Sequence] = None,
        listener: Optional[LaterationSolverListener] = None,
    ):
        self._standard_deviations: Optional[np.ndarray] = None
        self._initial_position: Optional[np.ndarray] = None
        self._covariance: Optional[np.ndarray] = None
        self._chi_sq: Optional[float] = None
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        super().__init__(dimension, listener=listener)

        if positions is not None or distances is not None:
            self.set_positions_distances_and_standard_deviations(
                positions, distances, standard_deviations
            )
        if initial_position is not None:
            self.initial_position = initial_position

    def set_positions_and_distances(self, positions: Sequence, distances: Sequence) -> None:
        self.set_positions_distances_and_standard_deviations(positions, distances, None)

    def set_positions_distances_and_standard_deviations(
        self,
        positions: Sequence,
        distances: Sequence,
        standard_deviations: Optional[Sequence],
    ) -> None:
        """Set inputs; missing standard deviations use the default value.

        Raises:
            LockedError: If the solver is locked.
            ValueError: If the inputs are invalid (previous values are kept).
        """
        self._check_not_locked()
        positions, distances, stds = validate_lateration_inputs(
            positions, distances, self.dimension, standard_deviations
        )
        if stds is None:
            stds = np.full(len(distances), DEFAULT_DISTANCE_STANDARD_DEVIATION)
        self._positions = positions
        self._distances = distances
        self._standard_deviations = stds

    @property
    def standard_deviations(self) -> Optional[np.ndarray]:
        return self._standard_deviations

    @property
    def initial_position(self) -> Optional[np.ndarray]:
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
    def max_iterations(self) -> int:
        """Maximum number of Levenberg-Marquardt iterations."""
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._check_not_locked()
        if int(value) < 1:
            raise ValueError(f"max_iterations must be at least 1, got {value}")
        self._max_iterations = int(value)

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @property
    def chi_sq(self) -> Optional[float]:
        return self._chi_sq

    def _solve(self) -> np.ndarray:
        self._covariance = None
        self._chi_sq = None
        result = solve_nonlinear_lateration(
            self._positions,
            self._distances,
            self._standard_deviations,
            initial_position=self._initial_position,
            max_iterations=self.max_iterations,
        )
        self._covariance = result.covariance
        self._chi_sq = result.chi_sq
        return result.position
