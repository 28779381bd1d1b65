"""
Free-space path-loss model for RSSI-based ranging.

The received power of a source with transmitted power P_tx at distance d is
modelled as

    P_rx = P_tx · k^n / d^n,        k = c / (4π f)

or, in logarithmic units,

    P_rx[dBm] = P_tx[dBm] + n·k_dB - 10·n·log10(d),    k_dB = 10·log10(k)

where n is the path-loss exponent (2.0 in free space) and f the carrier
frequency. Inverting this relation gives the distance used for lateration:

    d = 10^((n·k_dB + P_tx - P_rx) / (10·n))

Uncertainty in P_tx, P_rx and n is propagated to the distance with a first-order
(linearised) approximation.
"""

from typing import Optional, Tuple

import numpy as np

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

# Smallest distance returned by the model (avoids log of zero)
MIN_DISTANCE = 1e-7  # m


# =============================================================================
# Unit Conversion Utilities
# =============================================================================


def dbm_to_power(dbm: float) -> float:
    """
    Convert power from dBm to milliwatts.

    Args:
        dbm: Power in dBm.

    Returns:
        Power in mW (10^(dBm/10)).

    Example:
        >>> dbm_to_power(20.0)
        100.0
    """
    return float(10.0 ** (dbm / 10.0))


def power_to_dbm(mw: float) -> float:
    """
    Convert power from milliwatts to dBm.

    Args:
        mw: Power in mW (must be positive).

    Returns:
        Power in dBm (10·log10(mW)).

    Raises:
        ValueError: If mw is not positive.
    """
    if mw <= 0:
        raise ValueError(f"Power must be positive, got {mw}")
    return float(10.0 * np.log10(mw))


def wavelength_constant_db(frequency: float) -> float:
    """
    Compute k_dB = 10·log10(c / (4π f)).

    Args:
        frequency: Carrier frequency in Hz.

    Returns:
        Frequency-dependent constant of the path-loss model, in dB.
    """
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    k = SPEED_OF_LIGHT / (4.0 * np.pi * frequency)
    return float(10.0 * np.log10(k))


# =============================================================================
# Path-Loss Model
# =============================================================================


def received_power(
    transmitted_power_dbm: float,
    distance: float,
    frequency: float,
    path_loss_exponent: float = 2.0,
) -> float:
    """
    Compute the received power predicted by the path-loss model.

    Args:
        transmitted_power_dbm: Transmitted power in dBm.
        distance: Distance between source and receiver in meters.
        frequency: Carrier frequency in Hz.
        path_loss_exponent: Path-loss exponent n. Defaults to 2.0 (free space).

    Returns:
        Received power in dBm.

    Raises:
        ValueError: If distance is not positive.

    Example:
        >>> # 2.4 GHz Wi-Fi access point transmitting 20 dBm, receiver at 10 m
        >>> rssi = received_power(20.0, 10.0, 2.4e9)
        >>> print(f"RSSI: {rssi:.2f} dBm")
        RSSI: -40.05 dBm
    """
    if distance <= 0:
        raise ValueError("Distance must be positive")

    k_db = wavelength_constant_db(frequency)
    return float(
        transmitted_power_dbm
        + path_loss_exponent * k_db
        - 10.0 * path_loss_exponent * np.log10(distance)
    )


def rssi_to_distance(
    rssi_dbm: float,
    transmitted_power_dbm: float,
    frequency: float,
    path_loss_exponent: float = 2.0,
) -> float:
    """
    Estimate distance from RSSI by inverting the path-loss model.

    Implements:
        d = 10^((n·k_dB + P_tx - P_rx) / (10·n))

    Args:
        rssi_dbm: Received signal strength in dBm.
        transmitted_power_dbm: Transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exponent: Path-loss exponent n. Defaults to 2.0.

    Returns:
        Estimated distance in meters, never below MIN_DISTANCE.

    Example:
        >>> d = rssi_to_distance(-40.05, 20.0, 2.4e9)
        >>> print(f"Distance: {d:.1f} m")
        Distance: 10.0 m
    """
    if path_loss_exponent <= 0:
        raise ValueError(f"Path-loss exponent must be positive, got {path_loss_exponent}")

    k_db = wavelength_constant_db(frequency)
    exponent = (
        path_loss_exponent * k_db + transmitted_power_dbm - rssi_dbm
    ) / (10.0 * path_loss_exponent)
    return max(float(10.0**exponent), MIN_DISTANCE)


def propagate_power_variance_to_distance_variance(
    transmitted_power_dbm: float,
    rssi_dbm: float,
    frequency: float,
    path_loss_exponent: float = 2.0,
    transmitted_power_variance: Optional[float] = None,
    rssi_variance: Optional[float] = None,
    path_loss_exponent_variance: Optional[float] = None,
) -> Optional[float]:
    """
    Propagate power and path-loss exponent variances to a distance variance.

    Uses the first-order approximation var(d) ≈ J Σ Jᵀ with independent inputs,
    where, writing g = (n·k_dB + P_tx - P_rx) / (10·n) and d = 10^g:

        ∂d/∂P_tx =  ln(10) · 10^g / (10·n)
        ∂d/∂P_rx = -ln(10) · 10^g / (10·n)
        ∂d/∂n    =  ln(10) · 10^g · (k_dB·10·n - 10·(n·k_dB + P_tx - P_rx)) / (10·n)²

    Args:
        transmitted_power_dbm: Transmitted power in dBm.
        rssi_dbm: Received power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exponent: Path-loss exponent n.
        transmitted_power_variance: Variance of P_tx (dB²), or None if unknown.
        rssi_variance: Variance of P_rx (dB²), or None if unknown.
        path_loss_exponent_variance: Variance of n, or None if unknown.

    Returns:
        Distance variance in m², or None when no input variance is known.
    """
    variances = (transmitted_power_variance, rssi_variance, path_loss_exponent_variance)
    if all(v is None for v in variances):
        return None

    n = path_loss_exponent
    k_db = wavelength_constant_db(frequency)
    numerator = n * k_db + transmitted_power_dbm - rssi_dbm
    denominator = 10.0 * n
    g = numerator / denominator
    ten_g = 10.0**g
    ln10 = np.log(10.0)

    jacobian = np.array(
        [
            ln10 * ten_g / denominator,
            -ln10 * ten_g / denominator,
            ln10 * ten_g * (k_db * denominator - 10.0 * numerator) / denominator**2,
        ]
    )
    sigma = np.array([0.0 if v is None else v for v in variances])

    return float(np.sum(jacobian**2 * sigma))


def rssi_distance_and_variance(
    rssi_dbm: float,
    transmitted_power_dbm: float,
    frequency: float,
    path_loss_exponent: float = 2.0,
    transmitted_power_std: Optional[float] = None,
    rssi_std: Optional[float] = None,
    path_loss_exponent_std: Optional[float] = None,
) -> Tuple[float, Optional[float]]:
    """
    Convenience wrapper returning the RSSI distance and its variance.

    Returns:
        Tuple (distance, variance). Variance is None when no standard
        deviation is available.
    """
    distance = rssi_to_distance(rssi_dbm, transmitted_power_dbm, frequency, path_loss_exponent)
    variance = propagate_power_variance_to_distance_variance(
        transmitted_power_dbm,
        rssi_dbm,
        frequency,
        path_loss_exponent,
        transmitted_power_variance=None if transmitted_power_std is None else transmitted_power_std**2,
        rssi_variance=None if rssi_std is None else rssi_std**2,
        path_loss_exponent_variance=None if path_loss_exponent_std is None else path_loss_exponent_std**2,
    )
    return distance, variance
