"""
Robust indoor positioning from radio-source readings.

Estimates 2D/3D positions from Wi-Fi ranging (RTT) and RSSI readings of
located access points using linear, non-linear and robust lateration
(RANSAC, LMedS, MSAC, PROSAC, PROMedS).

Subpackages:
    - sources: radio sources, readings and fingerprints
    - rf: path-loss model and RSSI-to-distance conversion
    - lateration: linear, non-linear and robust lateration solvers
    - positioning: reading sorter, distance extraction, robust estimators, accuracy
    - utils: geometry helpers
"""

__version__ = "0.1.0"

from wifipos.errors import (
    LaterationError,
    LockedError,
    NotReadyError,
    PositioningError,
    RobustEstimatorError,
)
from wifipos.lateration import RobustEstimatorMethod
from wifipos.positioning import (
    Accuracy,
    ReadingSorter,
    RobustPositionEstimator,
    RobustPositionEstimator2D,
    RobustPositionEstimator3D,
    RobustPositionEstimatorListener,
    SequentialRobustPositionEstimator,
    SequentialRobustPositionEstimator2D,
    SequentialRobustPositionEstimator3D,
    create,
)
from wifipos.sources import Fingerprint, RadioSource, Reading, ReadingType

__all__ = [
    "__version__",
    # Errors
    "PositioningError",
    "LockedError",
    "NotReadyError",
    "LaterationError",
    "RobustEstimatorError",
    # Data model
    "RadioSource",
    "ReadingType",
    "Reading",
    "Fingerprint",
    # Estimation
    "RobustEstimatorMethod",
    "ReadingSorter",
    "RobustPositionEstimator",
    "RobustPositionEstimator2D",
    "RobustPositionEstimator3D",
    "RobustPositionEstimatorListener",
    "SequentialRobustPositionEstimator",
    "SequentialRobustPositionEstimator2D",
    "SequentialRobustPositionEstimator3D",
    "create",
    "Accuracy",
]
