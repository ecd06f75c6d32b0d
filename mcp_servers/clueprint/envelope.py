"""Wire envelope shared by the bridge and the browser agent.

Every frame is one JSON object: ``{"type", "id"?, "payload"?, "error"?}``.
An ``id`` marks a request or its response; frames without one are pushes.
"""

from __future__ import annotations

import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("mcp.clueprint.envelope")


class MessageType:
    # Bridge -> agent requests
    GET_SELECTION = "GET_SELECTION"
    GET_DIAGNOSTICS = "GET_DIAGNOSTICS"
    START_RECORDING = "START_RECORDING"
    STOP_RECORDING = "STOP_RECORDING"
    GET_RECORDING = "GET_RECORDING"
    SNAPSHOT_DOM = "SNAPSHOT_DOM"
    DIFF_SNAPSHOTS = "DIFF_SNAPSHOTS"
    GET_RECENT_ACTIVITY = "GET_RECENT_ACTIVITY"

    # Agent -> bridge responses
    SELECTION_RESPONSE = "SELECTION_RESPONSE"
    DIAGNOSTICS_RESPONSE = "DIAGNOSTICS_RESPONSE"
    RECORDING_RESPONSE = "RECORDING_RESPONSE"
    SNAPSHOT_RESPONSE = "SNAPSHOT_RESPONSE"
    DIFF_RESPONSE = "DIFF_RESPONSE"
    RECENT_ACTIVITY_RESPONSE = "RECENT_ACTIVITY_RESPONSE"

    # Agent -> bridge pushes
    ELEMENT_SELECTED = "ELEMENT_SELECTED"
    REGION_SELECTED = "REGION_SELECTED"
    CONSOLE_EVENT = "CONSOLE_EVENT"
    NETWORK_EVENT = "NETWORK_EVENT"
    RECORDING_STARTED = "RECORDING_STARTED"
    RECORDING_STOPPED = "RECORDING_STOPPED"
    BUFFER_RECORDING = "BUFFER_RECORDING"

    # Liveness and relay handshake
    PING = "PING"
    PONG = "PONG"
    MCP_RELAY_IDENTIFY = "MCP_RELAY_IDENTIFY"


# Request type -> the type the agent stamps on its reply.
RESPONSE_TYPES: dict[str, str] = {
    MessageType.GET_SELECTION: MessageType.SELECTION_RESPONSE,
    MessageType.GET_DIAGNOSTICS: MessageType.DIAGNOSTICS_RESPONSE,
    MessageType.START_RECORDING: MessageType.RECORDING_STARTED,
    MessageType.STOP_RECORDING: MessageType.RECORDING_RESPONSE,
    MessageType.GET_RECORDING: MessageType.RECORDING_RESPONSE,
    MessageType.SNAPSHOT_DOM: MessageType.SNAPSHOT_RESPONSE,
    MessageType.DIFF_SNAPSHOTS: MessageType.DIFF_RESPONSE,
    MessageType.GET_RECENT_ACTIVITY: MessageType.RECENT_ACTIVITY_RESPONSE,
    MessageType.PING: MessageType.PONG,
}


@dataclass(frozen=True, slots=True)
class Envelope:
    type: str = ""
    id: str | None = None
    payload: Any = None
    error: str | None = None

    @property
    def is_push(self) -> bool:
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.type:
            out["type"] = self.type
        if self.id is not None:
            out["id"] = self.id
        if self.payload is not None:
            out["payload"] = self.payload
        if self.error is not None:
            out["error"] = self.error
        return out

    def encode(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, msg: Any) -> Envelope | None:
        if not isinstance(msg, dict):
            return None
        mtype = msg.get("type")
        raw_id = msg.get("id")
        req_id: str | None = None
        if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id):
            req_id = str(raw_id)
        err = msg.get("error")
        if isinstance(err, dict):
            err = err.get("message")
        return cls(
            type=mtype if isinstance(mtype, str) else "",
            id=req_id,
            payload=msg.get("payload"),
            error=str(err) if err else None,
        )


def parse_envelope(raw: str | bytes) -> Envelope | None:
    """Decode one frame; malformed frames are logged and yield ``None``."""
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        msg = json.loads(raw)
    except Exception as exc:  # noqa: BLE001
        logger.warning("malformed frame dropped: %s", exc)
        return None
    env = Envelope.from_dict(msg)
    if env is None:
        logger.warning("non-object frame dropped")
    return env


class RequestIdFactory:
    """Per-process request ids: ``req_<counter>_<ms>``."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"req_{next(self._counter)}_{int(time.time() * 1000)}"


__all__ = ["Envelope", "MessageType", "RESPONSE_TYPES", "RequestIdFactory", "parse_envelope"]
