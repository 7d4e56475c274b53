"""Append-only JSONL log of detection pipeline events."""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Set


def utc_now_str() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class DetectionEventLog:
    def __init__(self, log_path: Path, mirror_paths: Optional[List[Path]] = None):
        self.log_path = Path(log_path)
        self.mirror_paths: List[Path] = []
        self._ensure_parent(self.log_path)
        seen: Set[str] = {str(self.log_path)}
        for mirror in mirror_paths or []:
            resolved = Path(mirror).expanduser()
            if not resolved.is_absolute():
                resolved = (Path.cwd() / resolved).absolute()
            if str(resolved) in seen:
                continue
            self._ensure_parent(resolved)
            self.mirror_paths.append(resolved)
            seen.add(str(resolved))
        self.run_id = f"run-{int(time.time() * 1000)}-pid{os.getpid()}"
        self.current_source: Optional[str] = None

    @staticmethod
    def _ensure_parent(path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)

    def start_source(self, source: str, **metadata: Any) -> None:
        self.current_source = source
        self.log("detection_start", **metadata)

    def log(self, event: str, **fields: Any) -> None:
        record = {
            "ts": utc_now_str(),
            "run_id": self.run_id,
            "source": self.current_source,
            "event": event,
            **fields,
        }
        line = json.dumps(record, default=str) + "\n"
        for target in [self.log_path] + self.mirror_paths:
            with target.open("a", encoding="utf-8") as fh:
                fh.write(line)
