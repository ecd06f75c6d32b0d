from __future__ import annotations

import json
import re


def test_envelope_omits_absent_fields() -> None:
    from mcp_servers.clueprint.envelope import Envelope, MessageType

    assert Envelope(type=MessageType.PING).to_dict() == {"type": "PING"}
    assert json.loads(Envelope(id="r1", error="boom").encode()) == {"id": "r1", "error": "boom"}
    assert Envelope(type="X").is_push is True
    assert Envelope(type="X", id="1").is_push is False


def test_envelope_from_dict_normalizes_ids_and_errors() -> None:
    from mcp_servers.clueprint.envelope import Envelope

    env = Envelope.from_dict({"type": "PONG", "id": 7})
    assert env is not None and env.id == "7"

    env = Envelope.from_dict({"type": "PONG", "id": True})
    assert env is not None and env.id is None

    env = Envelope.from_dict({"id": "r", "error": {"message": "nope"}})
    assert env is not None and env.error == "nope" and env.type == ""

    assert Envelope.from_dict(["not", "an", "object"]) is None


def test_parse_envelope_drops_malformed_frames() -> None:
    from mcp_servers.clueprint.envelope import parse_envelope

    assert parse_envelope("{oops") is None
    assert parse_envelope("42") is None
    env = parse_envelope(b'{"type": "ELEMENT_SELECTED", "payload": {"mode": "inspect"}}')
    assert env is not None
    assert env.type == "ELEMENT_SELECTED"
    assert env.payload == {"mode": "inspect"}


def test_request_ids_are_unique_and_shaped() -> None:
    from mcp_servers.clueprint.envelope import RequestIdFactory

    ids = RequestIdFactory()
    seen = [ids() for _ in range(50)]
    assert len(set(seen)) == 50
    assert all(re.fullmatch(r"req_\d+_\d+", x) for x in seen)
    assert seen[0].startswith("req_1_")


def test_every_request_type_has_a_response_type() -> None:
    from mcp_servers.clueprint.envelope import RESPONSE_TYPES, MessageType

    assert RESPONSE_TYPES[MessageType.START_RECORDING] == MessageType.RECORDING_STARTED
    assert RESPONSE_TYPES[MessageType.STOP_RECORDING] == MessageType.RECORDING_RESPONSE
    assert RESPONSE_TYPES[MessageType.GET_RECENT_ACTIVITY] == MessageType.RECENT_ACTIVITY_RESPONSE
    assert RESPONSE_TYPES[MessageType.PING] == MessageType.PONG
