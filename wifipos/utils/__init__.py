"""
Utility functions shared by the lateration solvers.
"""

from wifipos.utils.geometry import (
    EPSILON_COLINEAR,
    EPSILON_RANGE,
    check_source_geometry,
    range_jacobian,
)

__all__ = [
    "EPSILON_RANGE",
    "EPSILON_COLINEAR",
    "range_jacobian",
    "check_source_geometry",
]
