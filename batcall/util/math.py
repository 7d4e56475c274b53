"""Numeric helper functions used across DSP logic."""

import numpy as np

POWER_FLOOR = 1e-16


def db10(x: np.ndarray, floor: float = POWER_FLOOR) -> np.ndarray:
    """Return 10 * log10(x) with floor to keep inputs positive."""
    return 10.0 * np.log10(np.maximum(x, floor))


def db_to_linear(x_db: np.ndarray) -> np.ndarray:
    """Inverse of db10 for power quantities."""
    return np.power(10.0, np.asarray(x_db, dtype=np.float64) / 10.0)
