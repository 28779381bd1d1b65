"""
Radio sources, readings and fingerprints.

This package defines the value types consumed by the positioning estimators:
    - RadioSource: located (and optionally power-aware) radio source
    - ReadingType / Reading: ranging, RSSI or combined measurement of a source
    - Fingerprint: readings captured at one unknown position
"""

from wifipos.sources.types import (
    DEFAULT_PATH_LOSS_EXPONENT,
    Fingerprint,
    RadioSource,
    Reading,
    ReadingType,
)

__all__ = [
    "DEFAULT_PATH_LOSS_EXPONENT",
    "RadioSource",
    "ReadingType",
    "Reading",
    "Fingerprint",
]
