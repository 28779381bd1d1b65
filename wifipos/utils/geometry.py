"""
Geometric utilities for lateration.

Provides functions for:
- Range Jacobians with singularity handling
- Radio source geometry checking
"""

from typing import Tuple

import numpy as np


# Singularity threshold constants
EPSILON_RANGE = 1e-10  # Minimum range for Jacobian computation
EPSILON_COLINEAR = 1e-6  # Relative singular value threshold for degeneracy


def range_jacobian(
    position: np.ndarray,
    source_positions: np.ndarray,
    epsilon: float = EPSILON_RANGE,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute predicted ranges and their Jacobian with respect to the position.

    Row i of the Jacobian is (x - p_i) / ‖x - p_i‖. When the position coincides
    with a source (range below ``epsilon``) the row is set to zero.

    Args:
        position: Receiver position, shape (d,).
        source_positions: Source positions, shape (N, d).
        epsilon: Minimum range threshold.

    Returns:
        Tuple (ranges, H) with shapes (N,) and (N, d).

    Example:
        >>> sources = np.array([[0.0, 0.0], [3.0, 4.0]])
        >>> ranges, H = range_jacobian(np.array([0.0, 0.0]), sources)
        >>> ranges
        array([0., 5.])
        >>> H[0]
        array([0., 0.])
    """
    diff = np.asarray(position, dtype=float) - np.asarray(source_positions, dtype=float)
    ranges = np.linalg.norm(diff, axis=1)

    H = diff / np.maximum(ranges, epsilon)[:, None]
    H[ranges < epsilon, :] = 0.0

    return ranges, H


def check_source_geometry(
    source_positions: np.ndarray,
    min_required: int,
) -> Tuple[bool, str]:
    """
    Check whether source positions allow solving a lateration problem.

    Performs geometric checks:
    1. Sufficient number of sources
    2. Sources are not colinear (2D) / coplanar (3D)

    Args:
        source_positions: Source positions, shape (N, d) where d=2 or 3.
        min_required: Minimum number of sources.

    Returns:
        Tuple of (is_valid, message), message empty when valid.

    Example:
        >>> ok, msg = check_source_geometry(np.array([[0, 0], [5, 0], [10, 0]]), 3)
        >>> ok
        False
        >>> 'colinear' in msg
        True
    """
    source_positions = np.asarray(source_positions, dtype=float)

    if source_positions.ndim != 2:
        return False, f"Source positions must be 2D array (N, d), got shape {source_positions.shape}"

    n_sources, dim = source_positions.shape

    if dim not in (2, 3):
        return False, f"Only 2D or 3D positioning supported, got dim={dim}"

    if n_sources < min_required:
        return False, (
            f"Insufficient sources: need at least {min_required} for {dim}D positioning, "
            f"got {n_sources}"
        )

    centered = source_positions - np.mean(source_positions, axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] == 0.0:
        return False, "All sources are located at the same position."
    rank = np.sum(singular_values > EPSILON_COLINEAR * singular_values[0])

    if rank < dim:
        if dim == 2:
            return False, f"Sources are colinear (rank {rank} < 2)."
        return False, f"Sources are coplanar (rank {rank} < 3)."

    return True, ""
