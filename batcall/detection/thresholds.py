"""Edge threshold search for the leading (high) and trailing (low) call edges.

Both edges sweep a dB-below-peak threshold from -24 to -70 dB and keep the
deepest threshold whose edge frequency still moves smoothly. A frequency jump
between neighbouring thresholds means the reading has left the call and
entered noise or an echo, so the threshold just before it is kept.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from batcall.detection.types import PowerMatrix, ThresholdSearchResult
from batcall.util.logging import get_logger

logger = get_logger(__name__)

THRESHOLD_MAX_DB = -24.0
THRESHOLD_MIN_DB = -70.0
THRESHOLD_STEP_DB = 0.5
SAFETY_THRESHOLD_DB = -30.0
# Clean steps that clear a provisional (minor) anomaly.
STABLE_STEPS_REQUIRED = 3

Crossing = Tuple[Optional[float], Optional[int]]


@dataclass(frozen=True)
class EdgeSearch:
    name: str
    from_top: bool
    major_jump_khz: float
    minor_anomaly_khz: float
    safety_threshold_db: float = SAFETY_THRESHOLD_DB


HIGH_EDGE = EdgeSearch(name="high", from_top=True, major_jump_khz=4.0, minor_anomaly_khz=2.5)
LOW_EDGE = EdgeSearch(name="low", from_top=False, major_jump_khz=2.0, minor_anomaly_khz=1.5)


def threshold_range() -> List[float]:
    """Test thresholds from -24 down to -70 dB inclusive, 0.5 dB apart."""
    count = int(round((THRESHOLD_MAX_DB - THRESHOLD_MIN_DB) / THRESHOLD_STEP_DB)) + 1
    return [THRESHOLD_MAX_DB - THRESHOLD_STEP_DB * i for i in range(count)]


def scan_from_top(frame_power: np.ndarray, freq_bins: np.ndarray, threshold_db: float) -> Crossing:
    """Highest bin strictly above ``threshold_db``, interpolated toward the bin above it."""
    power = np.asarray(frame_power, dtype=np.float64)
    above = np.flatnonzero(power > threshold_db)
    if above.size == 0:
        return None, None
    idx = int(above[-1])
    freq = float(freq_bins[idx])
    if idx < power.size - 1:
        this_power = float(power[idx])
        next_power = float(power[idx + 1])
        if next_power < threshold_db:
            ratio = (this_power - threshold_db) / (this_power - next_power)
            freq += ratio * float(freq_bins[idx + 1] - freq_bins[idx])
    return freq, idx


def scan_from_bottom(
    frame_power: np.ndarray,
    freq_bins: np.ndarray,
    threshold_db: float,
    *,
    skip_at_or_below_hz: Optional[float] = None,
) -> Crossing:
    """Lowest bin strictly above ``threshold_db``, interpolated toward the bin below it.

    Bins at or below ``skip_at_or_below_hz`` are never candidates.
    """
    power = np.asarray(frame_power, dtype=np.float64)
    mask = power > threshold_db
    if skip_at_or_below_hz is not None:
        mask &= np.asarray(freq_bins) > skip_at_or_below_hz
    above = np.flatnonzero(mask)
    if above.size == 0:
        return None, None
    idx = int(above[0])
    freq = float(freq_bins[idx])
    if idx > 0:
        this_power = float(power[idx])
        prev_power = float(power[idx - 1])
        if prev_power < threshold_db:
            ratio = (this_power - threshold_db) / (this_power - prev_power)
            freq -= ratio * float(freq_bins[idx] - freq_bins[idx - 1])
    return freq, idx


def select_stable_threshold(
    measurements: Sequence[Tuple[float, float]],
    major_jump_khz: float,
    minor_anomaly_khz: float,
) -> Optional[float]:
    """Pick the last threshold before the first confirmed anomaly.

    ``measurements`` holds (threshold_db, frequency_hz) pairs ordered from -24
    outward. A step larger than ``major_jump_khz`` stops immediately. A step
    larger than ``minor_anomaly_khz`` is provisional: it is forgotten after
    STABLE_STEPS_REQUIRED clean steps and confirmed by any further anomaly or
    by running out of measurements first.
    """
    if not measurements:
        return None
    pending: Optional[float] = None
    clean_steps = 0
    for i in range(1, len(measurements)):
        step_khz = abs(measurements[i][1] - measurements[i - 1][1]) / 1000.0
        if step_khz > major_jump_khz:
            return pending if pending is not None else measurements[i - 1][0]
        if step_khz > minor_anomaly_khz:
            if pending is not None:
                return pending
            pending = measurements[i - 1][0]
            clean_steps = 0
            continue
        if pending is not None:
            clean_steps += 1
            if clean_steps >= STABLE_STEPS_REQUIRED:
                pending = None
    if pending is not None:
        return pending
    return measurements[-1][0]


def search_edge_threshold(
    frame_power: np.ndarray,
    freq_bins: np.ndarray,
    peak_power_db: float,
    edge: EdgeSearch,
) -> ThresholdSearchResult:
    """Run the threshold sweep on one edge frame."""
    scan = scan_from_top if edge.from_top else scan_from_bottom
    measurements: List[Tuple[float, float]] = []
    for test_db in threshold_range():
        freq, _ = scan(frame_power, freq_bins, peak_power_db + test_db)
        if freq is not None:
            measurements.append((test_db, freq))

    chosen = select_stable_threshold(measurements, edge.major_jump_khz, edge.minor_anomaly_khz)
    if chosen is None:
        chosen = THRESHOLD_MIN_DB
    chosen = float(min(max(chosen, THRESHOLD_MIN_DB), THRESHOLD_MAX_DB))
    warning = False
    if chosen <= THRESHOLD_MIN_DB:
        logger.debug(
            "%s-edge search exhausted at %.1f dB, using safety threshold %.1f dB",
            edge.name,
            THRESHOLD_MIN_DB,
            edge.safety_threshold_db,
        )
        chosen = edge.safety_threshold_db
        warning = True

    freq, idx = scan(frame_power, freq_bins, peak_power_db + chosen)
    paired: Optional[float] = None
    if edge.from_top:
        paired, _ = scan_from_bottom(frame_power, freq_bins, peak_power_db + chosen)
    return ThresholdSearchResult(
        threshold_db=chosen,
        frequency_hz=freq,
        bin_idx=idx,
        paired_frequency_hz=paired,
        warning=warning,
    )


def find_high_freq_threshold(matrix: PowerMatrix, first_frame: int, peak_power_db: float) -> ThresholdSearchResult:
    return search_edge_threshold(matrix.power_db[int(first_frame)], matrix.freq_bins_hz, peak_power_db, HIGH_EDGE)


def find_low_freq_threshold(matrix: PowerMatrix, last_frame: int, peak_power_db: float) -> ThresholdSearchResult:
    return search_edge_threshold(matrix.power_db[int(last_frame)], matrix.freq_bins_hz, peak_power_db, LOW_EDGE)


def find_threshold_reaching(
    frame_power: np.ndarray,
    freq_bins: np.ndarray,
    peak_power_db: float,
    min_freq_hz: float,
) -> Optional[float]:
    """First threshold from -24 toward -70 whose top-down crossing reaches ``min_freq_hz``."""
    for test_db in threshold_range():
        freq, _ = scan_from_top(frame_power, freq_bins, peak_power_db + test_db)
        if freq is not None and freq >= min_freq_hz:
            return test_db
    return None
