"""Time-offset parsing helpers for CLI arguments."""

from __future__ import annotations

import argparse
from typing import Any, Optional


def parse_time_to_seconds(offset: Optional[Any]) -> Optional[float]:
    """Parse strings like '0.25', '12ms', '1.5s', '2m', returning seconds as float."""

    if offset is None:
        return None
    if isinstance(offset, (int, float)):
        return float(offset)
    text = str(offset).strip().lower()
    if not text:
        return None
    if text.endswith("ms"):
        unit = "ms"
        value_part = text[:-2]
    elif text[-1].isalpha():
        unit = text[-1]
        value_part = text[:-1]
    else:
        unit = "s"
        value_part = text
    try:
        value = float(value_part)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid time offset '{offset}'") from exc
    multipliers = {
        "ms": 0.001,
        "s": 1.0,
        "m": 60.0,
        "h": 3600.0,
    }
    if unit not in multipliers:
        raise argparse.ArgumentTypeError(f"Unsupported time suffix '{unit}'")
    if value < 0:
        raise argparse.ArgumentTypeError(f"Time offset must be >= 0, got '{offset}'")
    return value * multipliers[unit]
