import asyncio
import json

import numpy as np
import pytest

from batcall import BatCallDetector, DetectionConfig, detect_calls
from batcall.util.event_log import DetectionEventLog

SR = 256_000
TONE_HZ = 45_000.0
BURST_STARTS_S = (0.020, 0.060)


def _burst(num_samples: int, freq_hz: float = TONE_HZ, amplitude: float = 0.5, ramp: int = 128) -> np.ndarray:
    t = np.arange(num_samples) / SR
    env = np.ones(num_samples)
    taper = np.hanning(2 * ramp)
    env[:ramp] = taper[:ramp]
    env[-ramp:] = taper[ramp:]
    return amplitude * env * np.sin(2.0 * np.pi * freq_hz * t)


def _recording(num_samples: int = SR // 10, noise: float = 1e-3, seed: int = 3) -> np.ndarray:
    rng = np.random.default_rng(seed)
    x = noise * rng.standard_normal(num_samples)
    for start_s in BURST_STARTS_S:
        burst = _burst(SR // 200)
        i0 = int(round(start_s * SR))
        x[i0 : i0 + burst.size] += burst
    return x


@pytest.fixture(scope="module")
def recording() -> np.ndarray:
    return _recording()


@pytest.fixture(scope="module")
def calls(recording):
    return BatCallDetector().detect(recording, SR, 20.0, 80.0)


def test_detects_each_burst(calls) -> None:
    assert len(calls) == 2
    for call, burst_start in zip(calls, BURST_STARTS_S):
        assert call.peak_freq_khz == pytest.approx(TONE_HZ / 1000.0, abs=0.5)
        assert burst_start - 0.005 <= call.start_time_s <= burst_start + 0.005
        assert call.duration_ms >= 1.0


def test_calls_are_ordered_and_valid(calls) -> None:
    starts = [call.start_time_s for call in calls]
    assert starts == sorted(starts)
    for call in calls:
        assert call.validate() == (True, "")
        assert call.low_freq_khz <= call.peak_freq_khz <= call.high_freq_khz
        assert call.low_freq_khz <= call.characteristic_freq_khz <= call.peak_freq_khz


def test_thresholds_used_stay_in_search_range(calls) -> None:
    for call in calls:
        assert -70.0 <= call.high_freq_threshold_db_used <= -24.0
        assert -70.0 <= call.low_freq_threshold_db_used <= -24.0


def test_every_reported_call_meets_minimum_snr(calls) -> None:
    assert all(call.snr_db >= 20.0 for call in calls)
    assert all(call.quality is not None for call in calls)


def test_detection_is_deterministic(recording, calls) -> None:
    again = detect_calls(recording, SR, 20.0, 80.0)
    assert [c.to_analysis_record() for c in again] == [c.to_analysis_record() for c in calls]


def test_min_snr_filter_can_reject_everything(recording) -> None:
    config = DetectionConfig(min_snr_db=200.0)
    assert detect_calls(recording, SR, 20.0, 80.0, config) == []


def test_empty_and_degenerate_input_yield_no_calls() -> None:
    assert detect_calls(None, SR, 20.0, 80.0) == []
    assert detect_calls(np.array([]), SR, 20.0, 80.0) == []
    assert detect_calls(np.zeros(500), SR, 20.0, 80.0) == []
    assert detect_calls(_recording(), SR, 80.0, 20.0) == []


def test_noise_only_input_is_rejected_on_snr() -> None:
    rng = np.random.default_rng(11)
    assert detect_calls(1e-3 * rng.standard_normal(SR // 10), SR, 20.0, 80.0) == []


def test_detect_async_matches_detect(recording, calls) -> None:
    result = asyncio.run(BatCallDetector().detect_async(recording, SR, 20.0, 80.0))
    assert [c.to_analysis_record() for c in result] == [c.to_analysis_record() for c in calls]


def test_measure_selection_returns_call_in_buffer_time(recording) -> None:
    call = BatCallDetector().measure_selection(recording, SR, 0.010, 0.040, 20.0, 80.0)
    assert call is not None
    assert 0.010 <= call.start_time_s <= 0.040
    assert call.peak_freq_khz == pytest.approx(TONE_HZ / 1000.0, abs=0.5)


def test_short_selection_falls_back_to_single_window() -> None:
    x = np.zeros(SR // 100)
    x[1000:1500] = _burst(500, ramp=51)
    call = BatCallDetector().measure_selection(x, SR, 1000 / SR, 1500 / SR, 20.0, 80.0)
    assert call is not None
    assert call.peak_freq_khz == pytest.approx(TONE_HZ / 1000.0, abs=0.5)
    assert call.low_freq_khz <= call.peak_freq_khz <= call.high_freq_khz
    assert call.start_time_s == pytest.approx(1000 / SR)
    assert call.duration_ms == pytest.approx(500 / SR * 1000.0)


def test_empty_selection_returns_none(recording) -> None:
    assert BatCallDetector().measure_selection(recording, SR, 0.05, 0.05, 20.0, 80.0) is None


def test_event_log_records_emitted_calls(tmp_path, recording) -> None:
    log_path = tmp_path / "events.jsonl"
    event_log = DetectionEventLog(log_path)
    event_log.start_source("synthetic", sample_rate=SR)
    BatCallDetector(event_log=event_log, profile_name="default").detect(recording, SR, 20.0, 80.0)
    events = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    names = [e["event"] for e in events]
    assert names[0] == "detection_start"
    assert names.count("call_emit") == 2
    assert names[-1] == "detection_done"
    assert all(e["run_id"] == event_log.run_id for e in events)
    assert events[-1]["profile"] == "default"
