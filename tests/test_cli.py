import argparse
import json

import numpy as np
import pytest
import soundfile as sf

from batcall.cli import config_overrides, main, parse_args
from batcall.util.duration import parse_time_to_seconds
from batcall.util.exit_codes import ExitCode

SR = 256_000


def _write_tone_file(path, pad_samples: int = SR // 50) -> None:
    n_burst = SR // 200
    t = np.arange(n_burst) / SR
    burst = 0.5 * np.hanning(n_burst) ** 0.25 * np.sin(2.0 * np.pi * 45_000.0 * t)
    pad = np.zeros(pad_samples)
    rng = np.random.default_rng(5)
    data = np.concatenate([pad, burst, pad])
    data = data + 1e-3 * rng.standard_normal(data.size)
    sf.write(str(path), data, SR, subtype="FLOAT")


@pytest.mark.parametrize(
    "text, expected",
    [("0.25", 0.25), ("12ms", 0.012), ("1.5s", 1.5), ("2m", 120.0), (None, None), (3, 3.0)],
)
def test_parse_time_to_seconds(text, expected) -> None:
    result = parse_time_to_seconds(text)
    if expected is None:
        assert result is None
    else:
        assert result == pytest.approx(expected)


@pytest.mark.parametrize("text", ["abc", "5x", "-1s"])
def test_parse_time_to_seconds_rejects_bad_input(text) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        parse_time_to_seconds(text)


def test_fixed_threshold_option_disables_auto_search() -> None:
    args = parse_args(["rec.wav", "--high-threshold", "-20", "--fft", "512"])
    overrides = config_overrides(args)
    assert overrides["high_freq_threshold_db"] == -20.0
    assert overrides["high_freq_threshold_is_auto"] is False
    assert overrides["fft_size"] == 512
    assert "low_freq_threshold_is_auto" not in overrides
    assert args.flow == 10.0
    assert "flow" not in args._cli_overrides


def test_missing_audio_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as exc:
        parse_args([])
    assert exc.value.code == ExitCode.INVALID_ARGS


def test_list_profiles_prints_json(capsys) -> None:
    assert main(["--list-profiles"]) == ExitCode.SUCCESS
    payload = json.loads(capsys.readouterr().out)
    assert {p["name"] for p in payload["profiles"]} >= {"default", "sensitive", "cf_bats", "fm_bats"}


def test_main_prints_detected_calls(tmp_path, capsys) -> None:
    path = tmp_path / "call.wav"
    _write_tone_file(path)
    assert main([str(path), "--flow", "20", "--fhigh", "80"]) == ExitCode.SUCCESS
    records = json.loads(capsys.readouterr().out)
    assert len(records) == 1
    assert float(records[0]["Peak Freq [kHz]"]) == pytest.approx(45.0, abs=0.5)


def test_main_writes_csv_output(tmp_path) -> None:
    path = tmp_path / "call.wav"
    out = tmp_path / "calls.csv"
    _write_tone_file(path)
    assert main([str(path), "--flow", "20", "--fhigh", "80", "--format", "csv", "--output", str(out)]) == ExitCode.SUCCESS
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("Start Time [s],End Time [s]")
    assert len(lines) == 2


def test_unreadable_audio_exit_code(tmp_path) -> None:
    bogus = tmp_path / "not_audio.wav"
    bogus.write_text("definitely not audio", encoding="utf-8")
    assert main([str(bogus)]) == ExitCode.AUDIO_UNREADABLE


def test_fail_on_empty_exit_code(tmp_path, capsys) -> None:
    path = tmp_path / "silence.wav"
    sf.write(str(path), np.zeros(SR // 20), SR, subtype="FLOAT")
    assert main([str(path), "--fail-on-empty"]) == ExitCode.NO_CALLS
    assert json.loads(capsys.readouterr().out) == []


def test_event_log_option_writes_events(tmp_path, capsys) -> None:
    path = tmp_path / "call.wav"
    events = tmp_path / "logs" / "events.jsonl"
    _write_tone_file(path)
    assert main([str(path), "--flow", "20", "--fhigh", "80", "--event-log", str(events)]) == ExitCode.SUCCESS
    names = [json.loads(line)["event"] for line in events.read_text(encoding="utf-8").splitlines()]
    assert names[0] == "detection_start"
    assert "detection_done" in names


def test_event_log_mirror_receives_the_same_events(tmp_path, capsys) -> None:
    path = tmp_path / "call.wav"
    events = tmp_path / "events.jsonl"
    mirror = tmp_path / "shared" / "events.jsonl"
    _write_tone_file(path)
    argv = [str(path), "--flow", "20", "--fhigh", "80", "--event-log", str(events), "--event-log-mirror", str(mirror)]
    assert main(argv) == ExitCode.SUCCESS
    assert mirror.read_text(encoding="utf-8") == events.read_text(encoding="utf-8")


def test_event_log_mirror_needs_event_log() -> None:
    with pytest.raises(SystemExit) as exc:
        parse_args(["rec.wav", "--event-log-mirror", "copy.jsonl"])
    assert exc.value.code == ExitCode.INVALID_ARGS


def test_non_zero_exit_is_logged_with_its_meaning(tmp_path, capsys) -> None:
    path = tmp_path / "silence.wav"
    sf.write(str(path), np.zeros(SR // 20), SR, subtype="FLOAT")
    assert main([str(path), "--fail-on-empty", "--log-level", "WARNING"]) == ExitCode.NO_CALLS
    err = capsys.readouterr().err
    assert "Exiting with status 4: No calls detected" in err
