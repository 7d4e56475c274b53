"""Frequency and time measurement of one call segment.

The order of the steps matters: every later step reads values produced by the
earlier ones (peak power, the threshold actually used, the resolved end frame)
and never the other way round.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from batcall.detection.endpoint import resolve_end_frame
from batcall.detection.knee import find_knee, peak_frequency_contour
from batcall.detection.thresholds import (
    find_high_freq_threshold,
    find_low_freq_threshold,
    find_threshold_reaching,
    scan_from_bottom,
    scan_from_top,
)
from batcall.detection.types import BatCall, PowerMatrix, Segment, classify_call_type
from batcall.io.profiles import DetectionConfig
from batcall.util.logging import get_logger
from batcall.util.math import db_to_linear

logger = get_logger(__name__)

START_FREQ_THRESHOLD_DB = -24.0
# Below this peak frequency the low-frequency noise guard is off.
NOISE_GUARD_MIN_PEAK_HZ = 60_000.0
NOISE_GUARD_MAX_START_HZ = 40_000.0
CF_FM_PEAK_HIGH_DELTA_KHZ = 1.0
CHARACTERISTIC_BAND_DB = 6.0


def parabolic_peak(frame_power: np.ndarray, freq_bins: np.ndarray, bin_idx: int) -> float:
    """Peak frequency (Hz) refined by fitting a parabola through the max bin and its neighbours."""
    freq = float(freq_bins[bin_idx])
    if bin_idx <= 0 or bin_idx >= frame_power.size - 1:
        return freq
    db0 = float(frame_power[bin_idx - 1])
    db1 = float(frame_power[bin_idx])
    db2 = float(frame_power[bin_idx + 1])
    a = (db2 - 2.0 * db1 + db0) / 2.0
    if abs(a) <= 1e-10:
        return freq
    correction = (db0 - db2) / (4.0 * a)
    bin_width = float(freq_bins[1] - freq_bins[0])
    return freq + correction * bin_width


def highest_crossing(matrix: PowerMatrix, threshold_db: float) -> Tuple[Optional[float], int]:
    """Highest top-down crossing over every frame, with the frame it came from."""
    best_freq: Optional[float] = None
    best_frame = 0
    for frame_idx in range(matrix.num_frames):
        freq, _ = scan_from_top(matrix.power_db[frame_idx], matrix.freq_bins_hz, threshold_db)
        if freq is not None and (best_freq is None or freq > best_freq):
            best_freq = freq
            best_frame = frame_idx
    return best_freq, best_frame


def last_frame_above(matrix: PowerMatrix, threshold_db: float) -> int:
    """Last frame with any bin strictly above ``threshold_db`` (0 when none)."""
    hits = np.flatnonzero(np.any(matrix.power_db > threshold_db, axis=1))
    return int(hits[-1]) if hits.size else 0


def characteristic_frequency(
    matrix: PowerMatrix,
    end_frame: int,
    percent_end: float,
) -> Tuple[Optional[float], int]:
    """Linear-power weighted mean frequency over the tail of frames [0, end_frame].

    Only bins strictly within CHARACTERISTIC_BAND_DB of each frame's maximum
    contribute. Returns (frequency_hz or None, frame whose dominant bin lies
    closest to the result).
    """
    n = int(end_frame) + 1
    tail_start = max(0, int(math.floor(n * (1.0 - percent_end / 100.0))))
    if tail_start >= n:
        tail_start = n - 1
    tail = matrix.power_db[tail_start:n]
    frame_max = tail.max(axis=1, keepdims=True)
    significant = tail > (frame_max - CHARACTERISTIC_BAND_DB)
    weights = np.where(significant, db_to_linear(tail), 0.0)
    total = float(weights.sum())
    if total <= 0.0:
        return None, tail_start
    freq_hz = float((weights * matrix.freq_bins_hz).sum() / total)
    dominant = matrix.freq_bins_hz[np.argmax(tail, axis=1)]
    frame_idx = tail_start + int(np.argmin(np.abs(dominant - freq_hz)))
    return freq_hz, frame_idx


def measure_call(matrix: PowerMatrix, segment: Segment, config: DetectionConfig) -> BatCall:
    """Measure every frequency/time parameter of one segment of ``matrix``."""
    call_matrix = matrix.frames(segment.start_frame, segment.end_frame)
    power = call_matrix.power_db
    freqs = call_matrix.freq_bins_hz
    times = call_matrix.time_frames_s
    t0 = float(times[0])

    def rel_ms(frame_idx: int) -> float:
        return (float(times[frame_idx]) - t0) * 1000.0

    # 1. Peak
    flat_idx = int(np.argmax(power))
    peak_frame, peak_bin = divmod(flat_idx, call_matrix.num_bins)
    peak_power_db = float(power[peak_frame, peak_bin])
    peak_hz = parabolic_peak(power[peak_frame], freqs, peak_bin)

    # 2. High / start
    high_warning = False
    if config.high_freq_threshold_is_auto:
        high_search = find_high_freq_threshold(call_matrix, 0, peak_power_db)
        high_thr = high_search.threshold_db
        high_warning = high_search.warning
        first_high_hz = high_search.frequency_hz
    else:
        high_thr = float(config.high_freq_threshold_db)
        first_high_hz, _ = scan_from_top(power[0], freqs, peak_power_db + high_thr)
    if first_high_hz is None or first_high_hz < peak_hz:
        reaching = find_threshold_reaching(power[0], freqs, peak_power_db, peak_hz)
        if reaching is not None:
            high_thr = reaching
            high_warning = False
    high_hz, high_frame = highest_crossing(call_matrix, peak_power_db + high_thr)
    if high_hz is None or high_hz < peak_hz:
        high_hz, high_frame = peak_hz, peak_frame

    skip_hz = NOISE_GUARD_MAX_START_HZ if peak_hz >= NOISE_GUARD_MIN_PEAK_HZ else None
    start_hz, _ = scan_from_bottom(
        power[0],
        freqs,
        peak_power_db + START_FREQ_THRESHOLD_DB,
        skip_at_or_below_hz=skip_hz,
    )
    if start_hz is None or start_hz >= peak_hz:
        start_hz = high_hz

    # CF-FM: a high frequency this close to the peak means a long CF phase
    # that the protection window would truncate.
    anti_rebounce = bool(config.enable_backward_end_freq_scan) and (
        abs(peak_hz - high_hz) / 1000.0 >= CF_FM_PEAK_HIGH_DELTA_KHZ
    )

    # 3. End frame
    if anti_rebounce:
        end_frame = resolve_end_frame(
            call_matrix,
            peak_frame,
            config.low_freq_threshold_db,
            max_frequency_drop_khz=config.max_frequency_drop_threshold_khz,
            protection_window_ms=config.protection_window_after_peak_ms,
            peak_power_db=peak_power_db,
        )
    else:
        end_frame = last_frame_above(call_matrix, peak_power_db + config.low_freq_threshold_db)

    # 4. Low / end
    low_warning = False
    if config.low_freq_threshold_is_auto:
        low_search = find_low_freq_threshold(call_matrix, end_frame, peak_power_db)
        low_thr = low_search.threshold_db
        low_warning = low_search.warning
        low_hz = low_search.frequency_hz
    else:
        low_thr = float(config.low_freq_threshold_db)
        low_hz, _ = scan_from_bottom(power[end_frame], freqs, peak_power_db + low_thr)
    if low_hz is None:
        low_hz = float(freqs[0])
    end_hz = low_hz
    low_frame = end_frame
    if start_hz < low_hz:
        low_hz = start_hz
        low_frame = 0

    # 5. Duration
    duration_ms = rel_ms(end_frame)

    # 6. Characteristic frequency
    char_hz, char_frame = characteristic_frequency(call_matrix, end_frame, config.characteristic_freq_percent_end)
    if char_hz is None:
        char_hz, char_frame = low_hz, low_frame
    char_hz = min(max(char_hz, low_hz), peak_hz)

    # 7. Bandwidth
    bandwidth_khz = (high_hz - low_hz) / 1000.0

    # 8. Knee
    knee = find_knee(peak_frequency_contour(call_matrix), times, 0, end_frame)

    logger.debug(
        "segment %d-%d: peak %.2f kHz, thresholds high %.1f / low %.1f dB, end frame %d, anti-rebounce %s",
        segment.start_frame,
        segment.end_frame,
        peak_hz / 1000.0,
        high_thr,
        low_thr,
        end_frame,
        anti_rebounce,
    )

    return BatCall(
        start_time_s=t0,
        end_time_s=float(times[end_frame]),
        duration_ms=duration_ms,
        peak_freq_khz=peak_hz / 1000.0,
        peak_time_ms=rel_ms(peak_frame),
        start_freq_khz=start_hz / 1000.0,
        start_time_ms=0.0,
        end_freq_khz=end_hz / 1000.0,
        end_time_ms=rel_ms(end_frame),
        high_freq_khz=high_hz / 1000.0,
        high_time_ms=rel_ms(high_frame),
        low_freq_khz=low_hz / 1000.0,
        low_time_ms=rel_ms(low_frame),
        characteristic_freq_khz=char_hz / 1000.0,
        characteristic_time_ms=rel_ms(char_frame),
        knee_freq_khz=knee[0] if knee else None,
        knee_time_ms=knee[1] if knee else None,
        bandwidth_khz=bandwidth_khz,
        peak_power_db=peak_power_db,
        call_type=classify_call_type(bandwidth_khz),
        high_freq_threshold_db_used=high_thr,
        low_freq_threshold_db_used=low_thr,
        high_threshold_warning=high_warning,
        low_threshold_warning=low_warning,
        anti_rebounce_used=anti_rebounce,
    )
