"""Knee (FM to CF transition) detection on the dominant-frequency contour."""

from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.signal import savgol_filter

from batcall.detection.types import PowerMatrix

SG_WINDOW = 5
SG_POLYORDER = 2
# Slope guard, Hz/s: the incoming slope must be a real downward sweep.
MIN_INCOMING_SLOPE_HZ_S = -50.0
OUTGOING_SLOPE_RATIO = 0.7
WEAK_CURVATURE_SIGMA = 0.3
FALLBACK_SPAN = (0.3, 0.9)


def peak_frequency_contour(matrix: PowerMatrix) -> np.ndarray:
    """Dominant (max-power) bin frequency of every frame, in Hz."""
    if matrix.num_frames == 0:
        return np.zeros(0, dtype=np.float64)
    return np.asarray(matrix.freq_bins_hz[np.argmax(matrix.power_db, axis=1)], dtype=np.float64)


def smooth_contour(contour_hz: np.ndarray) -> np.ndarray:
    """5-point quadratic Savitzky-Golay smoothing; shorter contours pass through."""
    data = np.asarray(contour_hz, dtype=np.float64)
    if data.size < SG_WINDOW:
        return data.copy()
    return savgol_filter(data, SG_WINDOW, SG_POLYORDER)


def _passes_slope_guard(slope_hz_s: np.ndarray, idx: int) -> bool:
    incoming = float(slope_hz_s[idx - 1])
    outgoing = float(slope_hz_s[idx + 1])
    if incoming >= MIN_INCOMING_SLOPE_HZ_S:
        return False
    if abs(outgoing) >= OUTGOING_SLOPE_RATIO * abs(incoming):
        return False
    return outgoing >= incoming


def find_knee(
    contour_hz: Sequence[float],
    time_frames_s: Sequence[float],
    call_start: int,
    call_end: int,
) -> Optional[Tuple[float, float]]:
    """Return (knee_freq_khz, knee_time_ms) or None when no knee qualifies.

    Knee time is relative to ``time_frames_s[0]``. Candidates are interior
    points inside [call_start, call_end] ranked by curvature
    |f''| / (1 + f'^2)^1.5 computed in kHz and ms.
    """
    raw = np.asarray(contour_hz, dtype=np.float64)
    times = np.asarray(time_frames_s, dtype=np.float64)
    call_start = max(0, int(call_start))
    call_end = min(int(call_end), raw.size - 1)
    if raw.size < 3 or call_end - call_start < 2:
        return None

    smoothed = smooth_contour(raw)
    slope_hz_s = np.gradient(smoothed, times)
    times_ms = times * 1000.0
    slope_khz_ms = slope_hz_s / 1e6
    accel = np.gradient(slope_khz_ms, times_ms)
    curvature = np.abs(accel) / np.power(1.0 + slope_khz_ms**2, 1.5)

    interior = np.arange(max(call_start, 1), min(call_end, raw.size - 2) + 1)
    if interior.size == 0:
        return None

    knee_idx: Optional[int] = None
    for idx in interior[np.argsort(-curvature[interior], kind="stable")]:
        if _passes_slope_guard(slope_hz_s, int(idx)):
            knee_idx = int(idx)
            break

    sigma = float(np.std(accel))
    if knee_idx is None or abs(float(accel[knee_idx])) < WEAK_CURVATURE_SIGMA * sigma:
        length = call_end - call_start + 1
        lo = call_start + int(math.floor(FALLBACK_SPAN[0] * length))
        hi = call_start + int(math.ceil(FALLBACK_SPAN[1] * length))
        window = interior[(interior >= lo) & (interior <= hi)]
        knee_idx = None
        for idx in window[np.argsort(-np.abs(slope_hz_s[window]), kind="stable")]:
            if _passes_slope_guard(slope_hz_s, int(idx)):
                knee_idx = int(idx)
                break

    if knee_idx is None or not call_start <= knee_idx <= call_end:
        return None
    knee_time_ms = (float(times[knee_idx]) - float(times[0])) * 1000.0
    return float(raw[knee_idx]) / 1000.0, knee_time_ms
