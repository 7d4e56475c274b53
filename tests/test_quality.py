import numpy as np
import pytest

from batcall.detection.quality import assess_calls, noise_floor_db, partition_by_snr, quality_for_snr, score_call
from batcall.detection.types import BatCall, CallQuality, PowerMatrix


def _matrix(power: np.ndarray) -> PowerMatrix:
    return PowerMatrix(
        power_db=power,
        freq_bins_hz=np.arange(power.shape[1], dtype=np.float64) * 250.0,
        time_frames_s=np.arange(power.shape[0]) * 0.000125,
        freq_resolution_hz=250.0,
    )


def test_noise_floor_is_lower_quartile() -> None:
    power = np.tile(np.array([-60.0, -50.0, -40.0, -30.0, -20.0]), (4, 1))
    assert noise_floor_db(_matrix(power)) == pytest.approx(-50.0)


def test_noise_floor_is_clamped_at_minus_80() -> None:
    assert noise_floor_db(_matrix(np.full((4, 8), -120.0))) == -80.0


@pytest.mark.parametrize(
    "snr_db, expected",
    [
        (5.0, CallQuality.VERY_POOR),
        (10.0, CallQuality.POOR),
        (19.9, CallQuality.POOR),
        (20.0, CallQuality.NORMAL),
        (40.0, CallQuality.GOOD),
        (59.9, CallQuality.GOOD),
        (60.0, CallQuality.EXCELLENT),
    ],
)
def test_quality_bands(snr_db: float, expected: CallQuality) -> None:
    assert quality_for_snr(snr_db) is expected


def test_score_call_fills_snr_and_quality() -> None:
    scored = score_call(BatCall(peak_power_db=-30.0), -80.0)
    assert scored.noise_floor_db == -80.0
    assert scored.snr_db == pytest.approx(50.0)
    assert scored.quality is CallQuality.GOOD


def test_assess_calls_drops_low_snr() -> None:
    matrix = _matrix(np.full((4, 8), -100.0))
    calls = [BatCall(start_time_s=0.0, peak_power_db=-50.0), BatCall(start_time_s=0.1, peak_power_db=-65.0)]
    kept = assess_calls(calls, matrix)
    assert [c.start_time_s for c in kept] == [0.0]
    assert kept[0].snr_db == pytest.approx(30.0)
    assert all(c.snr_db >= 20.0 for c in kept)


def test_partition_by_snr_returns_dropped_calls() -> None:
    calls = [BatCall(peak_power_db=-50.0), BatCall(peak_power_db=-65.0), BatCall()]
    kept, dropped = partition_by_snr(calls, -80.0, 20.0)
    assert len(kept) == 1
    assert len(dropped) == 2
    assert dropped[0].quality is CallQuality.POOR
