"""Noise-floor estimation utilities."""

from __future__ import annotations

import numpy as np

NOISE_FLOOR_MIN_DB = -80.0


def percentile_noise_floor_db(
    power_db: np.ndarray,
    percentile: float = 25.0,
    floor_db: float = NOISE_FLOOR_MIN_DB,
) -> float:
    """Lower-quartile power over every sample of ``power_db``, floored at ``floor_db``."""
    data = np.asarray(power_db, dtype=np.float64)
    if data.size == 0:
        return float(floor_db)
    return float(max(np.percentile(data, percentile), floor_db))
