"""
Exception taxonomy for radio-source positioning.

Invalid arguments (wrong shapes, out-of-range parameters, size mismatches) are
reported with the built-in ``ValueError`` / ``TypeError`` at construction or
setter time and never modify the object.

Runtime conditions are reported with the classes below, which all derive from
``PositioningError`` so callers can catch them together:

    - LockedError: a mutator or ``estimate()``/``solve()`` was called while an
      estimation is in progress (including from a listener callback).
    - NotReadyError: estimation was requested before enough inputs were set.
    - LaterationError: the linear system is singular (degenerate geometry) or the
      non-linear solver did not converge.
    - RobustEstimatorError: the robust loop could not produce any candidate.
"""


class PositioningError(RuntimeError):
    """Base class for runtime failures raised by wifipos."""


class LockedError(PositioningError):
    """Raised when an estimator or solver is used while it is locked."""


class NotReadyError(PositioningError):
    """Raised when estimation is requested without sufficient inputs."""


class LaterationError(PositioningError):
    """Raised when a lateration problem cannot be solved numerically."""


class RobustEstimatorError(PositioningError):
    """Raised when a robust estimation loop fails to find a solution."""


__all__ = [
    "PositioningError",
    "LockedError",
    "NotReadyError",
    "LaterationError",
    "RobustEstimatorError",
]
