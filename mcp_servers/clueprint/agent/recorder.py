from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from .flow import build_recording, make_event

logger = logging.getLogger("mcp.clueprint.agent.recorder")


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


class FlowRecorder:
    """Explicit start/stop recording with recording-relative event times."""

    def __init__(self, *, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or _now_ms
        self._state = RecordingState.IDLE
        self._start_ms: int | None = None
        self._events: list[dict[str, Any]] = []

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is RecordingState.RECORDING

    @property
    def event_count(self) -> int:
        return len(self._events)

    def start(self, *, url: str | None = None, title: str | None = None) -> None:
        self._start_ms = int(self._clock())
        self._events = [make_event(0, "navigation", {"url": url, "title": title, "event": "recording_start"})]
        self._state = RecordingState.RECORDING
        logger.info("flow recording started url=%s", url)

    def record(self, event_type: str, data: dict[str, Any] | None = None) -> bool:
        if self._state is not RecordingState.RECORDING or self._start_ms is None:
            return False
        self._events.append(make_event(int(self._clock()) - self._start_ms, event_type, data))
        return True

    def stop(self, *, final_selection: dict[str, Any] | None = None) -> dict[str, Any] | None:
        if self._state is not RecordingState.RECORDING or self._start_ms is None:
            return None
        start = self._start_ms
        events = self._events
        recording = build_recording(
            events,
            start_time=start,
            duration=int(self._clock()) - start,
            final_selection=final_selection,
        )
        self._state = RecordingState.IDLE
        self._start_ms = None
        self._events = []
        logger.info("flow recording stopped events=%s", len(events))
        return recording


__all__ = ["FlowRecorder", "RecordingState"]
