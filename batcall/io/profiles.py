"""Detection configuration dataclass, named presets and override helpers."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

WINDOW_TYPES = ("hann", "hamming", "blackman", "triangular", "rectangular", "gauss")


@dataclass(frozen=True)
class DetectionConfig:
    """Read-only snapshot of every knob the detection pipeline consults.

    Auto threshold modes never write back into this object; the thresholds a
    call actually used are recorded on the returned BatCall.
    """

    # Segmentation: dB below the global maximum a frame must exceed.
    call_threshold_db: float = -24.0
    high_freq_threshold_db: float = -24.0
    high_freq_threshold_is_auto: bool = True
    low_freq_threshold_db: float = -27.0
    low_freq_threshold_is_auto: bool = True
    characteristic_freq_percent_end: float = 20.0
    min_call_duration_ms: float = 1.0
    max_gap_bridge_ms: float = 0.0
    freq_resolution_hz: float = 1.0
    window_type: str = "hann"
    fft_size: int = 1024
    hop_percent: float = 3.125
    enable_backward_end_freq_scan: bool = True
    max_frequency_drop_threshold_khz: float = 10.0
    protection_window_after_peak_ms: float = 10.0
    min_snr_db: float = 20.0

    def __post_init__(self) -> None:
        if int(self.fft_size) < 1:
            raise ValueError(f"fft_size must be >= 1, got {self.fft_size}")
        if not 0.0 < float(self.characteristic_freq_percent_end) <= 100.0:
            raise ValueError(
                f"characteristic_freq_percent_end must be in (0, 100], got {self.characteristic_freq_percent_end}"
            )
        if float(self.max_gap_bridge_ms) < 0.0:
            raise ValueError(f"max_gap_bridge_ms must be >= 0, got {self.max_gap_bridge_ms}")


def default_detection_profiles() -> Dict[str, DetectionConfig]:
    profiles = {
        "default": DetectionConfig(),
        # Avisoft-style -18 dB call threshold, fixed edge thresholds.
        "sensitive": DetectionConfig(
            call_threshold_db=-18.0,
            high_freq_threshold_db=-18.0,
            high_freq_threshold_is_auto=False,
            low_freq_threshold_db=-24.0,
            low_freq_threshold_is_auto=False,
        ),
        # Rhinolophids/hipposiderids: long CF phase, terminal FM is short.
        "cf_bats": DetectionConfig(
            characteristic_freq_percent_end=10.0,
            enable_backward_end_freq_scan=False,
            fft_size=2048,
            hop_percent=1.5625,
        ),
        # Vespertilionids: steep sweeps, tighter drop rule.
        "fm_bats": DetectionConfig(
            fft_size=512,
            hop_percent=6.25,
            max_frequency_drop_threshold_khz=8.0,
            protection_window_after_peak_ms=8.0,
        ),
    }
    return profiles


def serialize_profiles() -> Dict[str, Any]:
    """Return ordered JSON-serializable description of built-in profiles."""

    profiles = default_detection_profiles()
    payload = {
        "profiles": [
            {"name": name, **asdict(profiles[name])}
            for name in sorted(profiles)
        ]
    }
    return payload


def resolve_config(
    profile: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    base: Optional[DetectionConfig] = None,
) -> DetectionConfig:
    """Start from a named profile (or ``base``) and apply non-None overrides.

    Raises KeyError for an unknown profile name and TypeError for an override
    key that is not a DetectionConfig field.
    """
    if profile:
        profiles = default_detection_profiles()
        key = str(profile).lower()
        if key not in profiles:
            raise KeyError(f"Unknown detection profile '{profile}'")
        config = profiles[key]
    else:
        config = base if base is not None else DetectionConfig()
    if not overrides:
        return config
    known = {f.name for f in fields(DetectionConfig)}
    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key not in known:
            raise TypeError(f"'{key}' is not a detection config option")
        changes[key] = value
    return replace(config, **changes) if changes else config


def _float_env(name: str) -> Optional[float]:
    val = os.getenv(name)
    if not val:
        return None
    try:
        return float(val)
    except ValueError:
        return None


def _bool_env(name: str) -> Optional[bool]:
    val = os.getenv(name)
    if val is None or not val.strip():
        return None
    return val.strip().lower() in ("1", "true", "yes", "on")


def config_from_env(base: Optional[DetectionConfig] = None) -> DetectionConfig:
    """Apply BATCALL_<FIELD> environment variables on top of ``base``.

    Invalid numeric values are ignored and the base value is kept.
    """
    config = base if base is not None else DetectionConfig()
    overrides: Dict[str, Any] = {}
    for f in fields(DetectionConfig):
        env_name = f"BATCALL_{f.name.upper()}"
        current = getattr(config, f.name)
        if isinstance(current, bool):
            value: Any = _bool_env(env_name)
        elif isinstance(current, int):
            raw = _float_env(env_name)
            value = int(raw) if raw is not None else None
        elif isinstance(current, float):
            value = _float_env(env_name)
        else:
            value = os.getenv(env_name) or None
        if value is not None:
            overrides[f.name] = value
    return resolve_config(overrides=overrides, base=config)
