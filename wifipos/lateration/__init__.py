"""
Lateration solvers.

Estimate a position from known source positions and measured distances:
    - Linear lateration (homogeneous / inhomogeneous linearisation)
    - Non-linear lateration (Levenberg-Marquardt with covariance)
    - Robust lateration (RANSAC, LMedS, MSAC, PROSAC, PROMedS)
"""

from wifipos.lateration.base import (
    EPSILON,
    LaterationSolver,
    LaterationSolverListener,
    Lockable,
    min_required_positions,
    validate_lateration_inputs,
)
from wifipos.lateration.linear import (
    LinearLaterationSolver,
    solve_homogeneous,
    solve_inhomogeneous,
)
from wifipos.lateration.nonlinear import (
    DEFAULT_DISTANCE_STANDARD_DEVIATION,
    NonlinearLaterationResult,
    NonlinearLaterationSolver,
    solve_nonlinear_lateration,
)
from wifipos.lateration.robust import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_ROBUST_METHOD,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    InliersData,
    RobustEstimatorMethod,
    RobustLaterationSolver,
    RobustLaterationSolverListener,
    default_threshold,
    required_iterations,
)

__all__ = [
    # Base
    "EPSILON",
    "Lockable",
    "LaterationSolver",
    "LaterationSolverListener",
    "min_required_positions",
    "validate_lateration_inputs",
    # Linear
    "LinearLaterationSolver",
    "solve_homogeneous",
    "solve_inhomogeneous",
    # Non-linear
    "DEFAULT_DISTANCE_STANDARD_DEVIATION",
    "NonlinearLaterationResult",
    "NonlinearLaterationSolver",
    "solve_nonlinear_lateration",
    # Robust
    "RobustEstimatorMethod",
    "DEFAULT_ROBUST_METHOD",
    "DEFAULT_THRESHOLD",
    "DEFAULT_STOP_THRESHOLD",
    "DEFAULT_CONFIDENCE",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_PROGRESS_DELTA",
    "InliersData",
    "RobustLaterationSolver",
    "RobustLaterationSolverListener",
    "default_threshold",
    "required_iterations",
]
