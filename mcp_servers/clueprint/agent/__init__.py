"""Browser-side session manager: connection, ring buffer, flow recorder."""

from __future__ import annotations

from .probe import PageProbe, StaticPageProbe
from .recorder import FlowRecorder, RecordingState
from .ring_buffer import RingBuffer
from .session import SessionManager
from .snapshots import SnapshotStore

__all__ = [
    "FlowRecorder",
    "PageProbe",
    "RecordingState",
    "RingBuffer",
    "SessionManager",
    "SnapshotStore",
    "StaticPageProbe",
]
