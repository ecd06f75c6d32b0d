"""Cross-process shared state (disk-backed, last-writer-wins).

Design
- One JSON file per key under a fixed temp directory (created on first write).
- Writers replace whole files (temp file then rename); nobody read-modify-writes,
  so no cross-process locking is needed.
- Best-effort: missing or corrupt files read as absent, write failures are logged.

Only the connection record expires: a ``connected=true`` entry older than the
staleness threshold reads as disconnected, which bounds how long a crashed
Leader can look alive.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path
from typing import Any

from .config import default_state_dir

logger = logging.getLogger("mcp.clueprint.shared_state")

SELECTION_KEY = "current-selection"
RECORDING_KEY = "current-recording"
RECORDING_STATE_KEY = "is-recording"
CONNECTION_KEY = "connection"

STALE_THRESHOLD_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


class SharedStateStore:
    def __init__(
        self,
        directory: Path | str | None = None,
        *,
        clock: Callable[[], int] | None = None,
        stale_threshold_ms: int = STALE_THRESHOLD_MS,
    ) -> None:
        self.directory = Path(directory) if directory is not None else default_state_dir()
        self._clock = clock or _now_ms
        self.stale_threshold_ms = int(stale_threshold_ms)

    def path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    # ─────────────────────────────────────────────────────────────────────────
    # Generic keyed access
    # ─────────────────────────────────────────────────────────────────────────

    def save(self, key: str, value: Any) -> bool:
        p = self.path(key)
        # Per-writer temp name: concurrent processes must not share one.
        tmp = p.with_name(f".{p.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, p)
        except Exception as exc:  # noqa: BLE001
            logger.error("shared_state save failed key=%s error=%s", key, exc)
            with suppress(OSError):
                tmp.unlink()
            return False
        return True

    def load(self, key: str) -> Any | None:
        p = self.path(key)
        try:
            if not p.is_file():
                return None
            raw = p.read_text(encoding="utf-8", errors="replace")
            return json.loads(raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning("shared_state load failed key=%s error=%s", key, exc)
            return None

    # ─────────────────────────────────────────────────────────────────────────
    # Typed records
    # ─────────────────────────────────────────────────────────────────────────

    def save_selection(self, selection: dict[str, Any] | None) -> bool:
        return self.save(SELECTION_KEY, selection)

    def load_selection(self) -> dict[str, Any] | None:
        value = self.load(SELECTION_KEY)
        return value if isinstance(value, dict) else None

    def save_recording(self, recording: dict[str, Any] | None) -> bool:
        return self.save(RECORDING_KEY, recording)

    def load_recording(self) -> dict[str, Any] | None:
        value = self.load(RECORDING_KEY)
        return value if isinstance(value, dict) else None

    def save_recording_state(self, is_recording: bool) -> bool:
        return self.save(RECORDING_STATE_KEY, {"isRecording": bool(is_recording)})

    def load_recording_state(self) -> bool:
        value = self.load(RECORDING_STATE_KEY)
        if not isinstance(value, dict):
            return False
        return bool(value.get("isRecording"))

    def save_connection_state(self, connected: bool) -> bool:
        return self.save(CONNECTION_KEY, {"connected": bool(connected), "timestamp": int(self._clock())})

    def load_connection_record(self) -> dict[str, Any] | None:
        value = self.load(CONNECTION_KEY)
        return value if isinstance(value, dict) else None

    def load_connection_state(self) -> bool:
        record = self.load_connection_record()
        if record is None:
            return False
        try:
            stamp = int(record.get("timestamp") or 0)
        except Exception:
            stamp = 0
        if int(self._clock()) - stamp > self.stale_threshold_ms:
            return False
        return bool(record.get("connected"))


__all__ = [
    "CONNECTION_KEY",
    "RECORDING_KEY",
    "RECORDING_STATE_KEY",
    "SELECTION_KEY",
    "STALE_THRESHOLD_MS",
    "SharedStateStore",
]
