"""
Base classes shared by lateration solvers.

A lateration solver estimates a position from N known source positions and the
measured distances to them. All solvers share the same life cycle:

    1. Inputs are configured through validated setters (ValueError on bad input,
       previous values preserved).
    2. ``solve()`` locks the solver, notifies the listener, computes the
       estimate and unlocks the solver on every exit path.
    3. While locked, any setter or a re-entrant ``solve()`` raises LockedError.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

from wifipos.errors import LockedError, NotReadyError


# Distances below this value are clamped to it
EPSILON = 1e-7


def min_required_positions(dimension: int) -> int:
    """Minimum number of sources for a lateration problem (3 in 2D, 4 in 3D)."""
    if dimension not in (2, 3):
        raise ValueError(f"dimension must be 2 or 3, got {dimension}")
    return dimension + 1


def validate_lateration_inputs(
    positions: Optional[Sequence],
    distances: Optional[Sequence],
    dimension: int,
    standard_deviations: Optional[Sequence] = None,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Validate and normalise lateration inputs.

    Args:
        positions: Source positions, shape (N, dimension).
        distances: Measured distances, shape (N,).
        dimension: Expected number of coordinates (2 or 3).
        standard_deviations: Optional distance standard deviations, shape (N,).

    Returns:
        Tuple (positions, distances, standard_deviations) as float arrays, with
        distances clamped to at least EPSILON.

    Raises:
        ValueError: If inputs are missing, have inconsistent lengths, or contain
            fewer than the minimum required number of sources.
    """
    if positions is None or distances is None:
        raise ValueError("positions and distances are required")

    positions = np.array(positions, dtype=float)
    distances = np.array(distances, dtype=float)
    min_required = min_required_positions(dimension)

    if positions.ndim != 2 or positions.shape[1] != dimension:
        raise ValueError(
            f"positions must have shape (N, {dimension}), got {positions.shape}"
        )
    if distances.ndim != 1:
        raise ValueError(f"distances must be 1D array, got shape {distances.shape}")
    if len(positions) < min_required:
        raise ValueError(
            f"At least {min_required} positions are required, got {len(positions)}"
        )
    if len(distances) != len(positions):
        raise ValueError(
            f"positions ({len(positions)}) and distances ({len(distances)}) "
            "must have the same length"
        )
    if not np.all(np.isfinite(positions)) or not np.all(np.isfinite(distances)):
        raise ValueError("positions and distances must be finite")

    distances = np.maximum(distances, EPSILON)

    if standard_deviations is not None:
        standard_deviations = np.array(standard_deviations, dtype=float)
        if standard_deviations.shape != distances.shape:
            raise ValueError(
                f"standard_deviations length {standard_deviations.shape} must match "
                f"distances length {distances.shape}"
            )
        if np.any(standard_deviations <= 0):
            raise ValueError("standard_deviations must be positive")

    return positions, distances, standard_deviations


class LaterationSolverListener:
    """Receives lifecycle events from a lateration solver.

    Override only the callbacks you need. Callbacks run synchronously while the
    solver is locked, so they must not try to reconfigure it.
    """

    def on_solve_start(self, solver: "LaterationSolver") -> None:
        pass

    def on_solve_end(self, solver: "LaterationSolver") -> None:
        pass


class Lockable:
    """Explicit lock state guarding configuration against re-entrant use."""

    def __init__(self) -> None:
        self._locked_flag = False

    @property
    def is_locked(self) -> bool:
        """True only while an estimation is running."""
        return self._locked_flag

    def _check_not_locked(self) -> None:
        if self._locked_flag:
            raise LockedError(f"{type(self).__name__} is locked")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the lock for the duration of the block, releasing it on any exit."""
        self._check_not_locked()
        self._locked_flag = True
        try:
            yield
        finally:
            self._locked_flag = False


class LaterationSolver(Lockable, ABC):
    """Abstract base class for lateration solvers.

    Attributes:
        dimension: Number of position coordinates (2 or 3).
    """

    def __init__(
        self,
        dimension: int,
        positions: Optional[Sequence] = None,
        distances: Optional[Sequence] = None,
        listener: Optional[LaterationSolverListener] = None,
    ):
        super().__init__()
        self.dimension = dimension
        self._min_required = min_required_positions(dimension)
        self._positions: Optional[np.ndarray] = None
        self._distances: Optional[np.ndarray] = None
        self._listener = listener
        self._estimated_position: Optional[np.ndarray] = None

        if positions is not None or distances is not None:
            self.set_positions_and_distances(positions, distances)

    @property
    def min_required_positions(self) -> int:
        return self._min_required

    @property
    def positions(self) -> Optional[np.ndarray]:
        return self._positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._distances

    def set_positions_and_distances(self, positions: Sequence, distances: Sequence) -> None:
        """Set source positions and measured distances.

        Raises:
            LockedError: If the solver is locked.
            ValueError: If the inputs are invalid (previous values are kept).
        """
        self._check_not_locked()
        positions, distances, _ = validate_lateration_inputs(
            positions, distances, self.dimension
        )
        self._positions = positions
        self._distances = distances

    @property
    def listener(self) -> Optional[LaterationSolverListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[LaterationSolverListener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    def is_ready(self) -> bool:
        return (
            self._positions is not None
            and self._distances is not None
            and len(self._distances) >= self._min_required
        )

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._estimated_position

    def solve(self) -> np.ndarray:
        """
        Solve the lateration problem.

        Returns:
            Estimated position, shape (dimension,).

        Raises:
            LockedError: If a solve is already running.
            NotReadyError: If positions and distances have not been set.
            LaterationError: If the problem cannot be solved.
        """
        with self._locked():
            if not self.is_ready:
                raise NotReadyError("Positions and distances must be set before solving")

            self._estimated_position = None

            if self._listener is not None:
                self._listener.on_solve_start(self)

            self._estimated_position = self._solve()

            if self._listener is not None:
                self._listener.on_solve_end(self)

            return self._estimated_position.copy()

    @abstractmethod
    def _solve(self) -> np.ndarray:
        """Compute the estimate from the validated inputs."""
