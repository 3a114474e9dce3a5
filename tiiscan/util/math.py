"""Numeric helper functions used across DSP logic."""

import numpy as np

POWER_FLOOR = 1e-20


def db10(x):
    """Return 10 * log10(x) with floor to keep inputs positive."""
    return 10.0 * np.log10(np.maximum(x, POWER_FLOOR))


def db_ratio(num: float, den: float) -> float:
    """Power ratio num/den in dB, both sides floored."""
    return float(db10(max(float(num), POWER_FLOOR)) - db10(max(float(den), POWER_FLOOR)))
