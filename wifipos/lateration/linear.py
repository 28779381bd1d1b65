"""
Closed-form linear lateration.

Each measured distance d_i to a source at p_i defines a sphere (circle in 2D)

    ‖x - p_i‖² = d_i²   ⇔   ‖x‖² - 2 p_iᵀx + ‖p_i‖² - d_i² = 0

Two linearisations of these equations are provided:

    Inhomogeneous: subtracting the equation of the first source removes the
        quadratic term ‖x‖², leaving N-1 linear equations in x

            2 (p_i - p_0)ᵀ x = d_0² - d_i² + ‖p_i‖² - ‖p_0‖²

        which are solved by least squares.

    Homogeneous: ‖x‖² is treated as an extra unknown w, and the system
        [-2 p_iᵀ, 1, ‖p_i‖² - d_i²] · [x, w, 1]ᵀ = 0 is solved up to scale
        with an SVD (right singular vector of the smallest singular value).

Both linearisations need at least dimension + 1 sources in general position
and fail with LaterationError on degenerate geometry (colinear sources in 2D,
coplanar sources in 3D).
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from wifipos.errors import LaterationError
from wifipos.lateration.base import (
    LaterationSolver,
    LaterationSolverListener,
    min_required_positions,
)
from wifipos.utils.geometry import check_source_geometry

# Relative singular value threshold used for rank detection
RANK_TOLERANCE = 1e-10


def _normalize(positions: np.ndarray, distances: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, float]:
    """Center positions on their centroid and scale them to unit average spread."""
    centroid = positions.mean(axis=0)
    centered = positions - centroid
    scale = float(np.mean(np.linalg.norm(centered, axis=1)))
    if scale <= 0.0:
        scale = 1.0
    return centered / scale, distances / scale, centroid, scale


def _check_geometry(positions: np.ndarray) -> None:
    dimension = positions.shape[1]
    is_valid, message = check_source_geometry(positions, min_required_positions(dimension))
    if not is_valid:
        raise LaterationError(message)


def solve_inhomogeneous(positions: np.ndarray, distances: np.ndarray) -> np.ndarray:
    """
    Solve lateration with the inhomogeneous linearisation.

    Args:
        positions: Source positions, shape (N, d) with N ≥ d + 1.
        distances: Measured distances, shape (N,).

    Returns:
        Estimated position, shape (d,).

    Raises:
        LaterationError: If the geometry is degenerate.

    Example:
        >>> sources = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        >>> true_pos = np.array([3.0, 4.0])
        >>> d = np.linalg.norm(sources - true_pos, axis=1)
        >>> np.round(solve_inhomogeneous(sources, d), 6)
        array([3., 4.])
    """
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)
    _check_geometry(positions)

    p, d, centroid, scale = _normalize(positions, distances)
    sq_norms = np.sum(p**2, axis=1)

    A = 2.0 * (p[1:] - p[0])
    b = d[0] ** 2 - d[1:] ** 2 + sq_norms[1:] - sq_norms[0]

    try:
        x, _, rank, singular_values = np.linalg.lstsq(A, b, rcond=None)
    except np.linalg.LinAlgError as e:
        raise LaterationError(f"Failed to solve linear lateration system: {e}") from e

    if rank < A.shape[1] or singular_values[-1] <= RANK_TOLERANCE * singular_values[0]:
        raise LaterationError(
            f"Linear lateration system is rank deficient (rank={rank} < {A.shape[1]})"
        )

    return x * scale + centroid


def solve_homogeneous(positions: np.ndarray, distances: np.ndarray) -> np.ndarray:
    """
    Solve lateration with the homogeneous linearisation.

    Args:
        positions: Source positions, shape (N, d) with N ≥ d + 1.
        distances: Measured distances, shape (N,).

    Returns:
        Estimated position, shape (d,).

    Raises:
        LaterationError: If the geometry is degenerate or the solution lies at
            infinity (homogeneous coordinate close to zero).
    """
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)
    _check_geometry(positions)

    p, d, centroid, scale = _normalize(positions, distances)
    n, dim = p.shape

    A = np.empty((n, dim + 2))
    A[:, :dim] = -2.0 * p
    A[:, dim] = 1.0
    A[:, dim + 1] = np.sum(p**2, axis=1) - d**2

    try:
        _, singular_values, Vt = np.linalg.svd(A)
    except np.linalg.LinAlgError as e:
        raise LaterationError(f"SVD of homogeneous lateration system failed: {e}") from e

    rank = int(np.sum(singular_values > RANK_TOLERANCE * singular_values[0]))
    if rank < dim + 1:
        raise LaterationError(
            f"Homogeneous lateration system is rank deficient (rank={rank} < {dim + 1})"
        )

    v = Vt[-1]
    if abs(v[-1]) < RANK_TOLERANCE:
        raise LaterationError("Homogeneous lateration solution is at infinity")

    x = v[:dim] / v[-1]
    return x * scale + centroid


class LinearLaterationSolver(LaterationSolver):
    """
    Linear lateration solver for 2D or 3D positions.

    Attributes:
        homogeneous: If True, use the homogeneous linearisation; otherwise the
            inhomogeneous one.

    Example:
        >>> sources = [[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]]
        >>> distances = np.linalg.norm(np.array(sources) - [2.0, 7.0], axis=1)
        >>> solver = LinearLaterationSolver(2, sources, distances)
        >>> np.round(solver.solve(), 6)
        array([2., 7.])
    """

    def __init__(
        self,
        dimension: int,
        positions: Optional[Sequence] = None,
        distances: Optional[Sequence] = None,
        homogeneous: bool = False,
        listener: Optional[LaterationSolverListener] = None,
    ):
        super().__init__(dimension, positions, distances, listener)
        self._homogeneous = homogeneous

    @property
    def homogeneous(self) -> bool:
        return self._homogeneous

    @homogeneous.setter
    def homogeneous(self, value: bool) -> None:
        self._check_not_locked()
        self._homogeneous = bool(value)

    def _solve(self) -> np.ndarray:
        if self._homogeneous:
            return solve_homogeneous(self._positions, self._distances)
        return solve_inhomogeneous(self._positions, self._distances)
