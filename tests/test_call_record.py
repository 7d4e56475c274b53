import pytest

from batcall.detection.types import BatCall, CallQuality, CallType, classify_call_type


def _valid_call(**changes) -> BatCall:
    values = dict(
        start_time_s=0.0123456,
        end_time_s=0.0183456,
        duration_ms=6.0,
        peak_freq_khz=45.0,
        high_freq_khz=52.5,
        low_freq_khz=38.25,
        characteristic_freq_khz=40.0,
        bandwidth_khz=14.25,
        peak_power_db=-12.34,
        quality=CallQuality.GOOD,
        call_type=CallType.CF_FM,
        high_freq_threshold_db_used=-30.0,
        low_freq_threshold_db_used=-27.5,
    )
    values.update(changes)
    return BatCall(**values)


def test_valid_call_passes() -> None:
    assert _valid_call().validate() == (True, "")


@pytest.mark.parametrize(
    "changes, reason",
    [
        ({"duration_ms": None}, "missing_duration"),
        ({"duration_ms": -1.0}, "missing_duration"),
        ({"duration_ms": 0.0}, "duration_below_minimum"),
        ({"peak_freq_khz": None}, "missing_frequency"),
        ({"duration_ms": 0.5}, "duration_below_minimum"),
        ({"high_freq_khz": 44.0}, "invalid_frequency_order"),
        ({"low_freq_khz": 46.0}, "invalid_frequency_order"),
        ({"characteristic_freq_khz": 47.0}, "invalid_frequency_order"),
    ],
)
def test_invalid_calls_report_reason(changes, reason: str) -> None:
    assert _valid_call(**changes).validate() == (False, reason)


def test_minimum_duration_is_configurable() -> None:
    assert _valid_call().validate(min_call_duration_ms=10.0) == (False, "duration_below_minimum")


def test_analysis_record_formatting() -> None:
    record = _valid_call().to_analysis_record()
    assert record["Start Time [s]"] == "0.0123"
    assert record["Duration [ms]"] == "6.00"
    assert record["Low Freq [kHz]"] == "38.25"
    assert record["Peak Power [dB]"] == "-12.3"
    assert record["Quality"] == "Good"
    assert record["Call Type"] == "CF-FM"
    assert record["Low Threshold [dB]"] == "-27.5"


def test_analysis_record_marks_missing_values() -> None:
    record = BatCall().to_analysis_record()
    assert record["Knee Freq [kHz]"] == "-"
    assert record["SNR [dB]"] == "-"
    assert record["Quality"] == "-"
    assert set(record.values()) == {"-"}


def test_knee_property() -> None:
    assert _valid_call().knee is None
    assert _valid_call(knee_freq_khz=41.0, knee_time_ms=2.5).knee == (41.0, 2.5)


@pytest.mark.parametrize(
    "bandwidth, expected",
    [(None, CallType.CF), (4.99, CallType.CF), (5.0, CallType.CF_FM), (20.0, CallType.CF_FM), (20.01, CallType.FM)],
)
def test_call_type_from_bandwidth(bandwidth, expected: CallType) -> None:
    assert classify_call_type(bandwidth) is expected
