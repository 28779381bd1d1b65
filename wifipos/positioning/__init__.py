"""
Position estimation from radio-source fingerprints.

This package provides:
    - ReadingSorter: quality-based ordering of sources and readings
    - build_lateration_inputs: conversion of readings to distance hypotheses
    - RobustPositionEstimator (2D/3D) and the create() factory
    - SequentialRobustPositionEstimator (2D/3D): RSSI stage, then ranging stage
    - Accuracy: accuracy figures derived from a covariance matrix
"""

from wifipos.positioning.accuracy import (
    DEFAULT_STANDARD_DEVIATION_FACTOR,
    Accuracy,
    confidence_to_factor,
    factor_to_confidence,
)
from wifipos.positioning.distances import (
    FALLBACK_DISTANCE_STANDARD_DEVIATION,
    LaterationInputs,
    build_lateration_inputs,
    position_standard_deviation,
    ranging_distance,
    rssi_distance,
)
from wifipos.positioning.estimator import (
    DEFAULT_RADIO_SOURCE_POSITION_COVARIANCE_USED,
    RobustPositionEstimator,
    RobustPositionEstimator2D,
    RobustPositionEstimator3D,
    RobustPositionEstimatorListener,
    create,
)
from wifipos.positioning.sequential import (
    DEFAULT_READINGS_EVENLY_DISTRIBUTED,
    SequentialRobustPositionEstimator,
    SequentialRobustPositionEstimator2D,
    SequentialRobustPositionEstimator3D,
    SequentialRobustPositionEstimatorListener,
    distribute_readings_evenly,
    split_fingerprint,
)
from wifipos.positioning.sorting import (
    ReadingSorter,
    ReadingWithQualityScore,
    SourceWithReadings,
)

__all__ = [
    # Sorting
    "ReadingSorter",
    "ReadingWithQualityScore",
    "SourceWithReadings",
    # Distance extraction
    "FALLBACK_DISTANCE_STANDARD_DEVIATION",
    "LaterationInputs",
    "build_lateration_inputs",
    "position_standard_deviation",
    "ranging_distance",
    "rssi_distance",
    # Estimators
    "DEFAULT_RADIO_SOURCE_POSITION_COVARIANCE_USED",
    "RobustPositionEstimator",
    "RobustPositionEstimator2D",
    "RobustPositionEstimator3D",
    "RobustPositionEstimatorListener",
    "create",
    # Sequential estimators
    "DEFAULT_READINGS_EVENLY_DISTRIBUTED",
    "SequentialRobustPositionEstimator",
    "SequentialRobustPositionEstimator2D",
    "SequentialRobustPositionEstimator3D",
    "SequentialRobustPositionEstimatorListener",
    "distribute_readings_evenly",
    "split_fingerprint",
    "create",
    # Accuracy
    "DEFAULT_STANDARD_DEVIATION_FACTOR",
    "Accuracy",
    "confidence_to_factor",
    "factor_to_confidence",
]
