"""Anti-rebounce end-of-call resolution.

Scanning forward from the energy peak, two signatures can end a call:

* FM: the dominant frequency drops by more than ``max_frequency_drop_khz``
  between neighbouring frames, so the sweep has finished. The protection
  window after the peak is only reported against, never applied.
* CF/QCF: energy decays and then rises again by more than
  ``REBOUND_THRESHOLD_DB``. The rise is an echo or reverberation, and the call
  ends at the decay's trough.

Without either signature the call ends at the last frame within
``SUSTAINED_DROP_DB`` of the peak energy.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from batcall.detection.types import PowerMatrix
from batcall.util.logging import get_logger

logger = get_logger(__name__)

SUSTAINED_DROP_DB = 18.0
REBOUND_THRESHOLD_DB = 0.5
WEAK_FRAMES_TO_CONFIRM = 3


def protection_frame_limit(matrix: PowerMatrix, peak_frame: int, protection_window_ms: float) -> int:
    """Last frame index inside the protection window that follows the peak."""
    step = matrix.frame_step_s
    if step <= 0.0:
        return int(peak_frame)
    frames = int(round((protection_window_ms / 1000.0) / step))
    return min(int(peak_frame) + frames, matrix.num_frames - 1)


def resolve_end_frame(
    matrix: PowerMatrix,
    peak_frame: int,
    low_threshold_db: float,
    *,
    max_frequency_drop_khz: float = 10.0,
    protection_window_ms: float = 10.0,
    peak_power_db: Optional[float] = None,
) -> int:
    """Return the frame index at which the call really ends."""
    peak_frame = int(peak_frame)
    n = matrix.num_frames
    if n == 0:
        return 0
    power = matrix.power_db
    frame_max = power.max(axis=1)
    dominant_khz = matrix.freq_bins_hz[np.argmax(power, axis=1)] / 1000.0
    if peak_power_db is None:
        peak_power_db = float(frame_max[peak_frame])

    gate_db = peak_power_db + low_threshold_db
    sustained_db = peak_power_db - SUSTAINED_DROP_DB
    protection_limit = protection_frame_limit(matrix, peak_frame, protection_window_ms)

    last_sustained = peak_frame
    decaying = False
    trough_idx = peak_frame
    trough_db = float(frame_max[peak_frame])
    weak_run = 0

    for idx in range(peak_frame + 1, n):
        energy = float(frame_max[idx])

        if energy > gate_db:
            drop_khz = float(dominant_khz[idx - 1] - dominant_khz[idx])
            if drop_khz > max_frequency_drop_khz:
                end = idx - 1
                logger.debug("FM drop of %.2f kHz at frame %d, end frame %d", drop_khz, idx, end)
                if end > protection_limit:
                    logger.debug("End frame %d is past the protection window (frame %d)", end, protection_limit)
                return end

        if not decaying:
            if energy < peak_power_db - REBOUND_THRESHOLD_DB:
                decaying = True
                trough_idx, trough_db = idx, energy
        elif energy < trough_db:
            trough_idx, trough_db = idx, energy
        elif energy - trough_db > REBOUND_THRESHOLD_DB:
            end = min(trough_idx, last_sustained)
            logger.debug("Energy rebound of %.2f dB at frame %d, end frame %d", energy - trough_db, idx, end)
            return end

        if energy >= sustained_db:
            last_sustained = idx
            weak_run = 0
        else:
            weak_run += 1
            if weak_run >= WEAK_FRAMES_TO_CONFIRM:
                break

    return last_sustained
