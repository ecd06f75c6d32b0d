"""What the clueprint server advertises during the MCP handshake.

Protocol negotiation picks the client's version when we support it and
otherwise answers with the newest one we know.
"""

from __future__ import annotations

from typing import Any

from .definitions import PROMPTS, TOOLS

SERVER_INFO: dict[str, str] = {"name": "clueprint", "version": "0.1.0"}

SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2025-03-26", "2024-11-05"]
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]
DEFAULT_PROTOCOL_VERSION = LATEST_PROTOCOL_VERSION

CAPABILITIES: dict[str, Any] = {
    "prompts": {"listChanged": False},
    "tools": {"listChanged": False},
}


def select_protocol(requested: Any) -> str:
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return DEFAULT_PROTOCOL_VERSION


def initialize_result(protocol: str) -> dict[str, Any]:
    return {
        "protocolVersion": protocol,
        "serverInfo": SERVER_INFO,
        "capabilities": CAPABILITIES,
    }


def tools_list() -> list[dict[str, Any]]:
    return TOOLS


def prompts_list() -> list[dict[str, Any]]:
    return [{"name": p["name"], "description": p["description"]} for p in PROMPTS]
