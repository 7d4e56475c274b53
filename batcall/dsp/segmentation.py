"""Call segmentation over a band-limited power matrix."""

from __future__ import annotations

from typing import List

import numpy as np

from batcall.detection.types import PowerMatrix, Segment


def active_frame_mask(matrix: PowerMatrix, call_threshold_db: float) -> np.ndarray:
    """Frames holding any bin strictly above ``global max + call_threshold_db``."""
    if matrix.num_frames == 0 or matrix.num_bins == 0:
        return np.zeros(matrix.num_frames, dtype=bool)
    threshold_db = float(np.max(matrix.power_db)) + float(call_threshold_db)
    return np.any(matrix.power_db > threshold_db, axis=1)


def gap_frames_for(max_gap_bridge_ms: float, frame_step_s: float) -> int:
    """Convert a gap-bridging duration to a whole number of frames (0 disables)."""
    if max_gap_bridge_ms <= 0.0 or frame_step_s <= 0.0:
        return 0
    return int(round((max_gap_bridge_ms / 1000.0) / frame_step_s))


def detect_call_segments(
    matrix: PowerMatrix,
    call_threshold_db: float,
    *,
    max_gap_frames: int = 0,
) -> List[Segment]:
    """Group contiguous active frames into segments.

    Runs separated by at most ``max_gap_frames`` inactive frames are merged;
    with the default of 0 every inactive frame closes the current run.
    """
    active = active_frame_mask(matrix, call_threshold_db)
    N = active.size
    max_gap_frames = max(0, int(max_gap_frames))

    segs: List[Segment] = []
    i = 0
    while i < N:
        if not bool(active[i]):
            i += 1
            continue
        start_i = i
        last_active = i
        j = i + 1
        while j < N:
            if bool(active[j]):
                last_active = j
            elif (j - last_active) > max_gap_frames:
                break
            j += 1
        segs.append(Segment(start_frame=start_i, end_frame=last_active))
        i = j
    return segs
