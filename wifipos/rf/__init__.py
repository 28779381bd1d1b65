"""
RF propagation models for RSSI ranging.

Provides the free-space path-loss model, its inversion to distance and the
first-order propagation of power uncertainty to distance uncertainty.
"""

from wifipos.rf.path_loss import (
    MIN_DISTANCE,
    SPEED_OF_LIGHT,
    dbm_to_power,
    power_to_dbm,
    propagate_power_variance_to_distance_variance,
    received_power,
    rssi_distance_and_variance,
    rssi_to_distance,
    wavelength_constant_db,
)

__all__ = [
    "SPEED_OF_LIGHT",
    "MIN_DISTANCE",
    # Unit conversion
    "dbm_to_power",
    "power_to_dbm",
    "wavelength_constant_db",
    # Path-loss model
    "received_power",
    "rssi_to_distance",
    "propagate_power_variance_to_distance_variance",
    "rssi_distance_and_variance",
]
