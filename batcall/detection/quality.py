"""SNR scoring and low-SNR rejection of measured calls."""

from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence, Tuple

from batcall.detection.types import BatCall, CallQuality, PowerMatrix
from batcall.dsp.noise_estimation import percentile_noise_floor_db

MIN_SNR_DB = 20.0


def noise_floor_db(matrix: PowerMatrix) -> float:
    return percentile_noise_floor_db(matrix.power_db)


def quality_for_snr(snr_db: float) -> CallQuality:
    if snr_db < 10.0:
        return CallQuality.VERY_POOR
    if snr_db < 20.0:
        return CallQuality.POOR
    if snr_db < 40.0:
        return CallQuality.NORMAL
    if snr_db < 60.0:
        return CallQuality.GOOD
    return CallQuality.EXCELLENT


def score_call(call: BatCall, floor_db: float) -> BatCall:
    """Return a copy of ``call`` with noise floor, SNR and quality filled in."""
    if call.peak_power_db is None:
        return replace(call, noise_floor_db=floor_db)
    snr_db = float(call.peak_power_db - floor_db)
    return replace(call, noise_floor_db=floor_db, snr_db=snr_db, quality=quality_for_snr(snr_db))


def partition_by_snr(
    calls: Sequence[BatCall],
    floor_db: float,
    min_snr_db: float = MIN_SNR_DB,
) -> Tuple[List[BatCall], List[BatCall]]:
    """Score ``calls`` and split them into (kept, dropped) on ``min_snr_db``."""
    kept: List[BatCall] = []
    dropped: List[BatCall] = []
    for call in calls:
        scored = score_call(call, floor_db)
        if scored.snr_db is not None and scored.snr_db >= min_snr_db:
            kept.append(scored)
        else:
            dropped.append(scored)
    return kept, dropped


def assess_calls(
    calls: Sequence[BatCall],
    matrix: PowerMatrix,
    *,
    min_snr_db: float = MIN_SNR_DB,
) -> List[BatCall]:
    """Score every call against the matrix noise floor and drop those below ``min_snr_db``."""
    kept, _ = partition_by_snr(calls, noise_floor_db(matrix), min_snr_db)
    return kept
