"""Detection engine coordinating spectrum, segmentation and per-call measurement."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from functools import partial
from typing import Any, List, Optional, TYPE_CHECKING

import numpy as np

from batcall.detection.measure import measure_call
from batcall.detection.quality import noise_floor_db, partition_by_snr
from batcall.detection.types import BatCall, PowerMatrix, classify_call_type
from batcall.dsp.segmentation import detect_call_segments, gap_frames_for
from batcall.dsp.spectrum import band_bins_hz, compute_power_matrix, frame_power_db
from batcall.dsp.windowing import get_window
from batcall.errors import SpectrumError
from batcall.io.profiles import DetectionConfig
from batcall.util.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - type hint only
    from batcall.util.event_log import DetectionEventLog

logger = get_logger(__name__)

DIRECT_SELECTION_THRESHOLD_DB = -24.0


class BatCallDetector:
    def __init__(
        self,
        config: Optional[DetectionConfig] = None,
        *,
        event_log: Optional["DetectionEventLog"] = None,
        profile_name: Optional[str] = None,
    ):
        self.config = config if config is not None else DetectionConfig()
        self.event_log = event_log
        self.profile_name = profile_name

    def _log(self, event: str, **fields: Any) -> None:
        if not self.event_log:
            return
        payload = dict(fields)
        if self.profile_name:
            payload.setdefault("profile", self.profile_name)
        self.event_log.log(event, **payload)

    def power_matrix(self, samples: np.ndarray, sample_rate: float, flow_khz: float, fhigh_khz: float) -> PowerMatrix:
        return compute_power_matrix(
            samples,
            sample_rate,
            flow_khz,
            fhigh_khz,
            fft_size=self.config.fft_size,
            hop_percent=self.config.hop_percent,
            window_type=self.config.window_type,
        )

    def detect(
        self,
        samples: Optional[np.ndarray],
        sample_rate: float,
        flow_khz: float,
        fhigh_khz: float,
    ) -> List[BatCall]:
        """Detect and measure every call in ``samples``.

        Returns calls ordered by start time. Buffers too short for one FFT
        frame, or a band with no bins, yield an empty list.
        """
        if samples is None:
            return []
        x = np.asarray(samples, dtype=np.float64)
        if x.size == 0:
            return []
        try:
            matrix = self.power_matrix(x, sample_rate, flow_khz, fhigh_khz)
        except SpectrumError as exc:
            logger.debug("No power matrix: %s", exc, extra={"error_type": type(exc).__name__})
            return []
        if matrix.num_frames == 0:
            return []

        config = self.config
        max_gap_frames = gap_frames_for(config.max_gap_bridge_ms, matrix.frame_step_s)
        segments = detect_call_segments(matrix, config.call_threshold_db, max_gap_frames=max_gap_frames)
        logger.debug("%d candidate segments", len(segments), extra={"num_calls": len(segments)})

        measured: List[BatCall] = []
        for seg in segments:
            call = measure_call(matrix, seg, config)
            ok, reason = call.validate(config.min_call_duration_ms)
            if not ok:
                logger.debug(
                    "Rejecting segment %d-%d: %s",
                    seg.start_frame,
                    seg.end_frame,
                    reason,
                    extra={"segment": f"{seg.start_frame}-{seg.end_frame}", "reason": reason},
                )
                self._log(
                    "call_reject",
                    start_frame=seg.start_frame,
                    end_frame=seg.end_frame,
                    start_time_s=call.start_time_s,
                    duration_ms=call.duration_ms,
                    peak_freq_khz=call.peak_freq_khz,
                    reasons=[reason],
                )
                continue
            measured.append(call)

        floor_db = noise_floor_db(matrix)
        accepted, dropped = partition_by_snr(measured, floor_db, config.min_snr_db)
        for call in dropped:
            self._log(
                "call_reject",
                start_time_s=call.start_time_s,
                duration_ms=call.duration_ms,
                peak_freq_khz=call.peak_freq_khz,
                snr_db=call.snr_db,
                noise_floor_db=floor_db,
                reasons=["snr_below_minimum"],
            )
        logger.debug(
            "%d calls accepted, %d below %.1f dB SNR",
            len(accepted),
            len(dropped),
            config.min_snr_db,
            extra={"num_calls": len(accepted)},
        )
        for call in accepted:
            self._log(
                "call_emit",
                start_time_s=call.start_time_s,
                duration_ms=call.duration_ms,
                peak_freq_khz=call.peak_freq_khz,
                snr_db=call.snr_db,
                call_type=call.call_type.value if call.call_type else None,
            )
        accepted.sort(key=lambda c: c.start_time_s)
        self._log(
            "detection_done",
            segments=len(segments),
            calls=len(accepted),
            noise_floor_db=floor_db,
        )
        return accepted

    async def detect_async(
        self,
        samples: Optional[np.ndarray],
        sample_rate: float,
        flow_khz: float,
        fhigh_khz: float,
    ) -> List[BatCall]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(self.detect, samples, sample_rate, flow_khz, fhigh_khz)
        )

    def measure_selection(
        self,
        samples: np.ndarray,
        sample_rate: float,
        start_time_s: float,
        end_time_s: float,
        flow_khz: float,
        fhigh_khz: float,
    ) -> Optional[BatCall]:
        """Measure the longest call inside a time selection of ``samples``.

        Times on the result refer to the full buffer. When the selection holds
        no detectable call, a single-window measurement of the whole selection
        is returned instead.
        """
        x = np.asarray(samples, dtype=np.float64)
        start_idx = max(0, int(round(start_time_s * sample_rate)))
        end_idx = min(x.size, int(round(end_time_s * sample_rate)))
        if end_idx <= start_idx:
            return None
        selection = x[start_idx:end_idx]
        offset_s = start_idx / float(sample_rate)

        calls = self.detect(selection, sample_rate, flow_khz, fhigh_khz)
        if calls:
            longest = max(calls, key=lambda c: c.duration_ms or 0.0)
            return replace(
                longest,
                start_time_s=longest.start_time_s + offset_s,
                end_time_s=longest.end_time_s + offset_s,
            )

        direct = self.measure_direct_selection(selection, sample_rate, flow_khz, fhigh_khz)
        if direct is None:
            return None
        return replace(
            direct,
            start_time_s=offset_s,
            end_time_s=offset_s + (end_idx - start_idx) / float(sample_rate),
        )

    def measure_direct_selection(
        self,
        samples: np.ndarray,
        sample_rate: float,
        flow_khz: float,
        fhigh_khz: float,
    ) -> Optional[BatCall]:
        """Single-window measurement over the whole selection.

        Bins are spaced at ``sample_rate / fft_size`` across the band; the
        highest and lowest bins within 24 dB of the peak bound the call, with
        the band edges as fallback.
        """
        x = np.asarray(samples, dtype=np.float64)
        if x.size == 0:
            return None
        try:
            freq_bins = band_bins_hz(sample_rate, self.config.fft_size, flow_khz, fhigh_khz)
        except SpectrumError as exc:
            logger.debug("No bins for direct selection: %s", exc)
            return None
        window = get_window(self.config.window_type, x.size)
        power = frame_power_db(x, sample_rate, freq_bins, window, self.config.fft_size)[0]

        peak_idx = int(np.argmax(power))
        peak_power_db = float(power[peak_idx])
        above = np.flatnonzero(power > peak_power_db + DIRECT_SELECTION_THRESHOLD_DB)
        if above.size:
            low_hz = float(freq_bins[above[0]])
            high_hz = float(freq_bins[above[-1]])
        else:
            low_hz = flow_khz * 1000.0
            high_hz = fhigh_khz * 1000.0
        bandwidth_khz = (high_hz - low_hz) / 1000.0
        duration_ms = x.size / float(sample_rate) * 1000.0
        return BatCall(
            start_time_s=0.0,
            end_time_s=x.size / float(sample_rate),
            duration_ms=duration_ms,
            peak_freq_khz=float(freq_bins[peak_idx]) / 1000.0,
            high_freq_khz=high_hz / 1000.0,
            low_freq_khz=low_hz / 1000.0,
            start_freq_khz=high_hz / 1000.0,
            end_freq_khz=low_hz / 1000.0,
            bandwidth_khz=bandwidth_khz,
            peak_power_db=peak_power_db,
            call_type=classify_call_type(bandwidth_khz),
            high_freq_threshold_db_used=DIRECT_SELECTION_THRESHOLD_DB,
            low_freq_threshold_db_used=DIRECT_SELECTION_THRESHOLD_DB,
        )


def detect_calls(
    samples: Optional[np.ndarray],
    sample_rate: float,
    flow_khz: float,
    fhigh_khz: float,
    config: Optional[DetectionConfig] = None,
) -> List[BatCall]:
    """Convenience wrapper around ``BatCallDetector(config).detect``."""
    return BatCallDetector(config).detect(samples, sample_rate, flow_khz, fhigh_khz)
