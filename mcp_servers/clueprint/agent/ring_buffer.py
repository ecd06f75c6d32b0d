from __future__ import annotations

import bisect
import logging
import time
from collections.abc import Callable
from typing import Any

from .flow import build_recording, make_event

logger = logging.getLogger("mcp.clueprint.agent.ring_buffer")


def _now_ms() -> int:
    return int(time.time() * 1000)


class RingBuffer:
    """Continuous capture of the last ``max_age_ms`` of activity.

    Entries carry absolute timestamps and are appended in non-decreasing time
    order. Expiry happens on ``sweep`` (periodic, on overflow past
    ``max_entries`` and before every read); between sweeps the buffer may briefly
    hold stale or excess entries.
    """

    def __init__(
        self,
        *,
        max_age_ms: int = 30_000,
        max_entries: int = 5_000,
        enabled: bool = True,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.max_age_ms = int(max_age_ms)
        self.max_entries = int(max_entries)
        self._clock = clock or _now_ms
        self._enabled = bool(enabled)
        self._events: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        # Both transitions start from an empty buffer.
        self._events = []

    def toggle(self) -> bool:
        self.set_enabled(not self._enabled)
        return self._enabled

    def append(self, event_type: str, data: dict[str, Any] | None = None) -> bool:
        if not self._enabled:
            return False
        self._events.append(make_event(int(self._clock()), event_type, data))
        if len(self._events) > self.max_entries:
            self.sweep()
        return True

    def sweep(self) -> int:
        """Drop entries older than the age window; returns how many were dropped."""
        if not self._events:
            return 0
        cutoff = int(self._clock()) - self.max_age_ms
        first_valid = bisect.bisect_left(self._events, cutoff, key=lambda e: e["time"])
        if first_valid == 0:
            return 0
        dropped = first_valid
        self._events = self._events[first_valid:]
        logger.debug("ring buffer swept dropped=%s kept=%s", dropped, len(self._events))
        return dropped

    def snapshot(self) -> list[dict[str, Any]]:
        self.sweep()
        return [dict(e) for e in self._events]

    def as_recording(self) -> dict[str, Any] | None:
        events = self.snapshot()
        if not events:
            return None
        oldest = int(events[0]["time"])
        newest = int(events[-1]["time"])
        for e in events:
            e["time"] = int(e["time"]) - oldest
        return build_recording(events, start_time=oldest, duration=newest - oldest)


__all__ = ["RingBuffer"]
