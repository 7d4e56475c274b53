#!/usr/bin/env python3
"""batcall command-line entrypoint: detect and measure calls in an audio file."""

from __future__ import annotations

import argparse
import csv
import json
import sys
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np
import soundfile as sf

from batcall.detection.engine import BatCallDetector
from batcall.detection.types import BatCall
from batcall.errors import AudioReadError
from batcall.io.profiles import DetectionConfig, WINDOW_TYPES, config_from_env, resolve_config, serialize_profiles
from batcall.util.duration import parse_time_to_seconds
from batcall.util.event_log import DetectionEventLog
from batcall.util.exit_codes import ExitCode
from batcall.util.logging import configure_logging, get_logger, log_exception

logger = get_logger(__name__)

CONFIG_FIELDS = {f.name for f in fields(DetectionConfig)}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    if argv is None:
        argv = sys.argv[1:]

    p = argparse.ArgumentParser(
        description="Detect bat echolocation calls in a mono recording and print their parameters",
        argument_default=argparse.SUPPRESS,
    )
    p.add_argument("audio", nargs="?", help="WAV/FLAC file to analyse (first channel is used)")
    p.add_argument("--flow", type=float, help="Lower band edge in kHz (default 10)")
    p.add_argument("--fhigh", type=float, help="Upper band edge in kHz (default: Nyquist)")
    p.add_argument("--start", type=parse_time_to_seconds, help="Selection start offset (e.g. 0.5s, 120ms)")
    p.add_argument("--end", type=parse_time_to_seconds, help="Selection end offset (e.g. 1.2s)")
    p.add_argument(
        "--selection",
        action="store_true",
        help="Measure only the longest call in --start/--end (single-window fallback when none)",
    )

    p.add_argument("--profile", help="Detection profile name (see --list-profiles)")
    p.add_argument("--list-profiles", dest="list_profiles", action="store_true", help="Print built-in detection profiles as JSON and exit")

    p.add_argument("--call-threshold", dest="call_threshold_db", type=float, help="Segmentation threshold in dB below the global max (default -24)")
    p.add_argument("--high-threshold", dest="high_freq_threshold_db", type=float, help="Fixed high-frequency threshold in dB below peak; disables the automatic search")
    p.add_argument("--low-threshold", dest="low_freq_threshold_db", type=float, help="Fixed low-frequency threshold in dB below peak; disables the automatic search")
    p.add_argument("--char-percent", dest="characteristic_freq_percent_end", type=float, help="Terminal share of the call used for the characteristic frequency (default 20)")
    p.add_argument("--min-duration", dest="min_call_duration_ms", type=float, help="Minimum call duration in ms (default 1)")
    p.add_argument("--gap-bridge", dest="max_gap_bridge_ms", type=float, help="Merge segments separated by at most this many ms (default 0, off)")
    p.add_argument("--fft", dest="fft_size", type=int, help="FFT size (default 1024)")
    p.add_argument("--hop-percent", dest="hop_percent", type=float, help="Hop size as a percentage of the FFT size (default 3.125)")
    p.add_argument("--window", dest="window_type", choices=WINDOW_TYPES, help="Window function (default hann)")
    p.add_argument("--no-anti-rebounce", dest="enable_backward_end_freq_scan", action="store_false", help="Disable anti-rebounce end-frame resolution")
    p.add_argument("--max-freq-drop", dest="max_frequency_drop_threshold_khz", type=float, help="FM end rule frequency drop in kHz (default 10)")
    p.add_argument("--protection-window", dest="protection_window_after_peak_ms", type=float, help="Protection window after the peak in ms (default 10)")
    p.add_argument("--min-snr", dest="min_snr_db", type=float, help="Discard calls below this SNR in dB (default 20)")

    p.add_argument("--format", dest="output_format", choices=("json", "csv"), help="Output format (default json)")
    p.add_argument("--output", help="Write records to this file instead of stdout")
    p.add_argument("--log-level", dest="log_level", choices=("DEBUG", "INFO", "WARNING", "ERROR"), help="Console log level")
    p.add_argument("--json-log", dest="json_log", help="Append structured JSON log lines to this file")
    p.add_argument("--event-log", dest="event_log", help="Append detection events (JSONL) to this file")
    p.add_argument(
        "--event-log-mirror",
        dest="event_log_mirrors",
        action="append",
        help="Also append detection events to this file (repeatable, needs --event-log)",
    )
    p.add_argument("--fail-on-empty", dest="fail_on_empty", action="store_true", help="Exit with a non-zero status when no call is found")

    args = p.parse_args(argv)
    args._cli_overrides = set()

    _set_default(args, args._cli_overrides, "audio", None)
    _set_default(args, args._cli_overrides, "flow", 10.0)
    _set_default(args, args._cli_overrides, "fhigh", None)
    _set_default(args, args._cli_overrides, "start", None)
    _set_default(args, args._cli_overrides, "end", None)
    _set_default(args, args._cli_overrides, "selection", False)
    _set_default(args, args._cli_overrides, "profile", None)
    _set_default(args, args._cli_overrides, "list_profiles", False)
    _set_default(args, args._cli_overrides, "output_format", "json")
    _set_default(args, args._cli_overrides, "output", None)
    _set_default(args, args._cli_overrides, "log_level", None)
    _set_default(args, args._cli_overrides, "json_log", None)
    _set_default(args, args._cli_overrides, "event_log", None)
    _set_default(args, args._cli_overrides, "event_log_mirrors", [])
    _set_default(args, args._cli_overrides, "fail_on_empty", False)

    if args.list_profiles:
        return args
    if not args.audio:
        p.error("an audio file is required unless --list-profiles is given")
    if args.start is not None and args.end is not None and args.end <= args.start:
        p.error("--end must be after --start")
    if args.event_log_mirrors and not args.event_log:
        p.error("--event-log-mirror needs --event-log")
    if args.selection and (args.start is None or args.end is None):
        p.error("--selection needs both --start and --end")
    if args.fhigh is not None and args.fhigh <= args.flow:
        p.error("--fhigh must be above --flow")

    return args


def _set_default(args: argparse.Namespace, overrides: Set[str], attr: str, value: Any) -> None:
    if hasattr(args, attr):
        overrides.add(attr)
    else:
        setattr(args, attr, value)


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect DetectionConfig fields given on the command line.

    A fixed edge threshold switches that edge's automatic search off.
    """
    overrides = {name: getattr(args, name) for name in CONFIG_FIELDS if hasattr(args, name)}
    if "high_freq_threshold_db" in overrides:
        overrides["high_freq_threshold_is_auto"] = False
    if "low_freq_threshold_db" in overrides:
        overrides["low_freq_threshold_is_auto"] = False
    return overrides


def build_config(args: argparse.Namespace) -> DetectionConfig:
    base = config_from_env()
    return resolve_config(args.profile, config_overrides(args), base=base)


def read_audio(path: str) -> Tuple[np.ndarray, int]:
    """Decode ``path`` and return (first channel as float64, sample rate)."""
    try:
        data, sample_rate = sf.read(path, dtype="float64", always_2d=True)
    except (RuntimeError, OSError) as exc:
        raise AudioReadError(f"cannot read audio file {path}: {exc}") from exc
    if data.shape[0] == 0:
        raise AudioReadError(f"audio file {path} holds no samples")
    return np.ascontiguousarray(data[:, 0]), int(sample_rate)


def _shift(call: BatCall, offset_s: float) -> BatCall:
    if offset_s == 0.0:
        return call
    return replace(
        call,
        start_time_s=None if call.start_time_s is None else call.start_time_s + offset_s,
        end_time_s=None if call.end_time_s is None else call.end_time_s + offset_s,
    )


def analyse(args: argparse.Namespace, detector: BatCallDetector) -> List[BatCall]:
    samples, sample_rate = read_audio(args.audio)
    fhigh = args.fhigh if args.fhigh is not None else sample_rate / 2000.0
    start_s = args.start if args.start is not None else 0.0
    end_s = args.end if args.end is not None else samples.size / float(sample_rate)

    if args.selection:
        call = detector.measure_selection(samples, sample_rate, start_s, end_s, args.flow, fhigh)
        return [call] if call is not None else []

    start_idx = int(round(start_s * sample_rate))
    end_idx = min(samples.size, int(round(end_s * sample_rate)))
    offset_s = start_idx / float(sample_rate)
    calls = detector.detect(samples[start_idx:end_idx], sample_rate, args.flow, fhigh)
    return [_shift(call, offset_s) for call in calls]


def write_records(calls: List[BatCall], output_format: str, stream) -> None:
    records = [call.to_analysis_record() for call in calls]
    if output_format == "csv":
        if not records:
            return
        writer = csv.DictWriter(stream, fieldnames=list(records[0].keys()))
        writer.writeheader()
        writer.writerows(records)
        return
    json.dump(records, stream, indent=2)
    stream.write("\n")


def _emit_profiles_json() -> None:
    json.dump(serialize_profiles(), sys.stdout, indent=2)
    sys.stdout.write("\n")


def run(args: argparse.Namespace) -> int:
    """Run one analysis and return the process exit code."""
    if args.list_profiles:
        _emit_profiles_json()
        return ExitCode.SUCCESS

    try:
        config = build_config(args)
    except (KeyError, TypeError, ValueError) as exc:
        logger.error("Invalid detection configuration: %s", exc)
        return ExitCode.INVALID_ARGS

    event_log = None
    if args.event_log:
        event_log = DetectionEventLog(
            Path(args.event_log),
            mirror_paths=[Path(m) for m in args.event_log_mirrors],
        )
        event_log.start_source(str(args.audio), profile=args.profile)
    detector = BatCallDetector(config, event_log=event_log, profile_name=args.profile)

    try:
        calls = analyse(args, detector)
    except AudioReadError as exc:
        logger.error("%s", exc, extra={"source": args.audio, "error_type": type(exc).__name__})
        return ExitCode.AUDIO_UNREADABLE

    logger.info("%d calls detected in %s", len(calls), args.audio, extra={"num_calls": len(calls), "source": args.audio})
    if args.output:
        with open(args.output, "w", encoding="utf-8", newline="") as fh:
            write_records(calls, args.output_format, fh)
    else:
        write_records(calls, args.output_format, sys.stdout)

    if not calls and args.fail_on_empty:
        return ExitCode.NO_CALLS
    return ExitCode.SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_file=args.json_log)
    try:
        code = run(args)
    except KeyboardInterrupt:
        code = ExitCode.GENERAL_ERROR
    except Exception:
        log_exception(logger, "Unhandled error during analysis", error_type="unhandled")
        code = ExitCode.GENERAL_ERROR
    if code != ExitCode.SUCCESS:
        logger.warning("Exiting with status %d: %s", code, ExitCode.message(code))
    return code


if __name__ == "__main__":
    sys.exit(main())
