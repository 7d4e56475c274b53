"""Dataclasses shared across the spectrum, segmentation and measurement layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np


class CallType(str, Enum):
    CF = "CF"
    FM = "FM"
    CF_FM = "CF-FM"


class CallQuality(str, Enum):
    VERY_POOR = "Very Poor"
    POOR = "Poor"
    NORMAL = "Normal"
    GOOD = "Good"
    EXCELLENT = "Excellent"


@dataclass(frozen=True, eq=False)
class PowerMatrix:
    """Band-limited power in dB, one row per frame, one column per frequency bin."""

    power_db: np.ndarray
    freq_bins_hz: np.ndarray
    time_frames_s: np.ndarray
    freq_resolution_hz: float

    def __post_init__(self) -> None:
        power = np.asarray(self.power_db)
        if power.ndim != 2:
            raise ValueError(f"power_db must be 2D, got shape {power.shape}")
        if power.shape[0] != np.asarray(self.time_frames_s).size:
            raise ValueError(
                f"{power.shape[0]} frames but {np.asarray(self.time_frames_s).size} frame times"
            )
        if power.shape[1] != np.asarray(self.freq_bins_hz).size:
            raise ValueError(
                f"{power.shape[1]} bins per frame but {np.asarray(self.freq_bins_hz).size} bin frequencies"
            )

    @property
    def num_frames(self) -> int:
        return int(self.power_db.shape[0])

    @property
    def num_bins(self) -> int:
        return int(self.power_db.shape[1])

    @property
    def frame_step_s(self) -> float:
        if self.num_frames < 2:
            return 0.0
        return float(self.time_frames_s[1] - self.time_frames_s[0])

    def frames(self, start_frame: int, end_frame: int) -> "PowerMatrix":
        """Return the inclusive frame range as its own matrix (views, no copy)."""
        sl = slice(int(start_frame), int(end_frame) + 1)
        return PowerMatrix(
            power_db=self.power_db[sl],
            freq_bins_hz=self.freq_bins_hz,
            time_frames_s=self.time_frames_s[sl],
            freq_resolution_hz=self.freq_resolution_hz,
        )


@dataclass(frozen=True)
class Segment:
    start_frame: int
    end_frame: int

    @property
    def num_frames(self) -> int:
        return self.end_frame - self.start_frame + 1


@dataclass(frozen=True)
class ThresholdSearchResult:
    threshold_db: float
    frequency_hz: Optional[float]
    bin_idx: Optional[int]
    paired_frequency_hz: Optional[float] = None
    warning: bool = False


def _fmt(value: Optional[float], places: int) -> str:
    if value is None:
        return "-"
    return f"{value:.{places}f}"


@dataclass(frozen=True)
class BatCall:
    """One measured call.

    Frequencies are in kHz. ``*_time_ms`` values are relative to the first
    frame of the call's segment; ``start_time_s``/``end_time_s`` are absolute
    within the analysed buffer.
    """

    start_time_s: Optional[float] = None
    end_time_s: Optional[float] = None
    duration_ms: Optional[float] = None

    peak_freq_khz: Optional[float] = None
    peak_time_ms: Optional[float] = None
    start_freq_khz: Optional[float] = None
    start_time_ms: Optional[float] = None
    end_freq_khz: Optional[float] = None
    end_time_ms: Optional[float] = None
    high_freq_khz: Optional[float] = None
    high_time_ms: Optional[float] = None
    low_freq_khz: Optional[float] = None
    low_time_ms: Optional[float] = None
    characteristic_freq_khz: Optional[float] = None
    characteristic_time_ms: Optional[float] = None
    knee_freq_khz: Optional[float] = None
    knee_time_ms: Optional[float] = None
    bandwidth_khz: Optional[float] = None

    peak_power_db: Optional[float] = None
    noise_floor_db: Optional[float] = None
    snr_db: Optional[float] = None
    quality: Optional[CallQuality] = None
    call_type: Optional[CallType] = None

    high_freq_threshold_db_used: Optional[float] = None
    low_freq_threshold_db_used: Optional[float] = None
    high_threshold_warning: bool = False
    low_threshold_warning: bool = False
    anti_rebounce_used: Optional[bool] = None

    @property
    def knee(self) -> Optional[Tuple[float, float]]:
        if self.knee_freq_khz is None or self.knee_time_ms is None:
            return None
        return self.knee_freq_khz, self.knee_time_ms

    def validate(self, min_call_duration_ms: float = 1.0) -> Tuple[bool, str]:
        """Return (valid, reason); reason is empty when valid."""
        if self.duration_ms is None or self.duration_ms < 0.0:
            return False, "missing_duration"
        if self.peak_freq_khz is None or self.high_freq_khz is None or self.low_freq_khz is None:
            return False, "missing_frequency"
        if self.duration_ms < min_call_duration_ms:
            return False, "duration_below_minimum"
        ordered = self.low_freq_khz <= self.peak_freq_khz <= self.high_freq_khz
        if ordered and self.characteristic_freq_khz is not None:
            ordered = self.low_freq_khz <= self.characteristic_freq_khz <= self.peak_freq_khz
        if not ordered:
            return False, "invalid_frequency_order"
        return True, ""

    def to_analysis_record(self) -> Dict[str, str]:
        return {
            "Start Time [s]": _fmt(self.start_time_s, 4),
            "End Time [s]": _fmt(self.end_time_s, 4),
            "Duration [ms]": _fmt(self.duration_ms, 2),
            "Peak Freq [kHz]": _fmt(self.peak_freq_khz, 2),
            "Peak Time [ms]": _fmt(self.peak_time_ms, 2),
            "Start Freq [kHz]": _fmt(self.start_freq_khz, 2),
            "End Freq [kHz]": _fmt(self.end_freq_khz, 2),
            "High Freq [kHz]": _fmt(self.high_freq_khz, 2),
            "Low Freq [kHz]": _fmt(self.low_freq_khz, 2),
            "Characteristic Freq [kHz]": _fmt(self.characteristic_freq_khz, 2),
            "Knee Freq [kHz]": _fmt(self.knee_freq_khz, 2),
            "Knee Time [ms]": _fmt(self.knee_time_ms, 2),
            "Bandwidth [kHz]": _fmt(self.bandwidth_khz, 2),
            "Peak Power [dB]": _fmt(self.peak_power_db, 1),
            "Noise Floor [dB]": _fmt(self.noise_floor_db, 1),
            "SNR [dB]": _fmt(self.snr_db, 1),
            "Quality": self.quality.value if self.quality is not None else "-",
            "Call Type": self.call_type.value if self.call_type is not None else "-",
            "High Threshold [dB]": _fmt(self.high_freq_threshold_db_used, 1),
            "Low Threshold [dB]": _fmt(self.low_freq_threshold_db_used, 1),
        }


def classify_call_type(bandwidth_khz: Optional[float]) -> CallType:
    """Coarse shape tag: < 5 kHz CF, > 20 kHz FM, otherwise CF-FM."""
    if not bandwidth_khz or bandwidth_khz < 5.0:
        return CallType.CF
    if bandwidth_khz > 20.0:
        return CallType.FM
    return CallType.CF_FM
