"""Logging setup for batcall.

Everything logs under the ``batcall`` logger tree:
- stderr console output, coloured when attached to a terminal
- an optional JSON-lines file for machine parsing
- level from the caller, else BATCALL_DEBUG / BATCALL_LOG_LEVEL

Pipeline stages attach context through ``extra`` (segment, num_calls,
reason, ...); both formatters surface those keys.

Usage:
    from batcall.util.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", json_file="/tmp/batcall.log")
    logger = get_logger(__name__)
    logger.debug("Rejecting segment", extra={"segment": "12-40", "reason": "missing_duration"})
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

ROOT_LOGGER = "batcall"
DEFAULT_LEVEL = "WARNING"

# Keys copied from ``extra`` into formatted output.
CONTEXT_KEYS = ("segment", "num_calls", "reason", "error_type", "duration_ms", "source")

_configured = False


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_KEYS if hasattr(record, key)}


def _format_traceback(record: logging.LogRecord) -> Optional[str]:
    if not record.exc_info:
        return None
    return "".join(traceback.format_exception(*record.exc_info))


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context(record))
        tb = _format_traceback(record)
        if tb:
            payload["traceback"] = tb
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``[time] LEVEL [module] message key=value ...`` for humans."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color and sys.stderr.isatty()

    def _level(self, levelname: str) -> str:
        if not self.use_color:
            return f"{levelname:8}"
        return f"{self.COLORS.get(levelname, '')}{levelname:8}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        module = record.name[len(ROOT_LOGGER) + 1 :] if record.name.startswith(ROOT_LOGGER + ".") else record.name
        parts: List[str] = [f"[{ts}] {self._level(record.levelname)} [{module}] {record.getMessage()}"]
        context = _context(record)
        if context:
            parts.append(" ".join(f"{k}={v}" for k, v in context.items()))
        line = "  ".join(parts)
        tb = _format_traceback(record)
        return f"{line}\n{tb}" if tb else line


def level_from_env() -> str:
    """BATCALL_DEBUG wins over BATCALL_LOG_LEVEL; WARNING when neither is set."""
    if os.environ.get("BATCALL_DEBUG", "").strip().lower() in ("1", "true", "yes"):
        return "DEBUG"
    return os.environ.get("BATCALL_LOG_LEVEL", DEFAULT_LEVEL).strip().upper() or DEFAULT_LEVEL


def configure_logging(
    *,
    level: Optional[str] = None,
    json_file: Optional[str] = None,
    use_color: bool = True,
) -> None:
    """(Re)install the batcall handlers.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Falls back to ``level_from_env()``.
        json_file: Append JSON-formatted records to this path as well.
        use_color: Colour console levels (ignored when stderr is not a TTY).
    """
    global _configured

    numeric_level = getattr(logging, (level or level_from_env()).upper(), logging.WARNING)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ConsoleFormatter(use_color=use_color))
    root.addHandler(console)

    if json_file:
        try:
            file_handler = logging.FileHandler(json_file, mode="a", encoding="utf-8")
        except OSError as exc:
            root.warning("Cannot open JSON log %s: %s", json_file, exc)
        else:
            file_handler.setFormatter(JSONFormatter())
            root.addHandler(file_handler)

    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger under the batcall tree; configures defaults on first use."""
    if not _configured:
        configure_logging()
    if name == "__main__":
        name = f"{ROOT_LOGGER}.main"
    elif name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def log_exception(
    logger: logging.Logger,
    message: str,
    *,
    error_type: Optional[str] = None,
    **extra: Any,
) -> None:
    """``logger.exception`` with context keys; call from inside an except block."""
    if error_type:
        extra["error_type"] = error_type
    logger.exception(message, extra=extra)
