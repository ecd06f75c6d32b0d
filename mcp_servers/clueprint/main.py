"""
MCP server exposing the live browser session to an AI coding assistant.

This module provides the main entry point and protocol handling.
Tool dispatch is handled via registry pattern in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import IO, Any

from .bridge import SharedBridge
from .errors import BridgeError
from .server.contract import initialize_result, prompts_list, select_protocol, tools_list
from .server.definitions import get_prompt
from .server.registry import create_default_registry
from .server.types import ToolResult

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("mcp.clueprint")

__all__ = ["McpServer", "main", "serve"]


def _write_message(payload: dict[str, Any], out: IO[bytes] | None = None) -> None:
    """Write JSON-RPC message to stdout."""
    data = json.dumps(payload, ensure_ascii=False)
    stream = out if out is not None else sys.stdout.buffer
    stream.write((data + "\n").encode())
    stream.flush()


def _read_message(inp: IO[bytes] | None = None) -> dict[str, Any] | None:
    """Read JSON-RPC message from stdin; ``{}`` for a blank line, None at EOF."""
    stream = inp if inp is not None else sys.stdin.buffer
    line = stream.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    msg = json.loads(line.decode())
    if os.environ.get("MCP_TRACE"):
        logger.info("recv %s", msg)
    return msg if isinstance(msg, dict) else {}


class McpServer:
    """MCP Server with registry-based tool dispatch."""

    def __init__(self, bridge: SharedBridge | None = None, *, out: IO[bytes] | None = None) -> None:
        self._out = out
        self.registry = create_default_registry()
        self.bridge_error: str | None = None
        self.bridge = bridge or SharedBridge()
        try:
            role = self.bridge.start()
            logger.info("bridge started role=%s port=%s", role.value, self.bridge.config.port)
        except Exception as exc:  # noqa: BLE001
            # Fail-soft: do not crash the MCP handshake; return actionable errors on tool calls.
            self.bridge_error = str(exc)
            logger.error("bridge_start_failed: %s", exc)

    def _reply(self, request_id: Any, result: dict[str, Any]) -> None:
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": result}, self._out)

    def _fail(self, request_id: Any, code: int, message: str) -> None:
        _write_message({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}, self._out)

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        self._reply(request_id, initialize_result(select_protocol(requested)))

    def handle_list_tools(self, request_id: Any) -> None:
        self._reply(request_id, {"tools": tools_list()})

    def handle_list_prompts(self, request_id: Any) -> None:
        self._reply(request_id, {"prompts": prompts_list()})

    def handle_get_prompt(self, request_id: Any, name: str) -> None:
        prompt = get_prompt(name)
        if prompt is None:
            self._fail(request_id, -32602, f"Unknown prompt: {name}")
            return
        self._reply(request_id, prompt)

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        logger.info("tool=%s args=%s", name, arguments)
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(f"Unknown tool: {name}")
            if self.bridge_error:
                return ToolResult.error(f"Bridge unavailable: {self.bridge_error}")
            return self.registry.dispatch(name, self.bridge, arguments)
        except BridgeError as exc:
            logger.info("bridge_error tool=%s: %s", name, exc)
            return ToolResult.error(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc))

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        result = self.call_tool(name, arguments)
        self._reply(request_id, {"content": result.to_content_list(), "isError": result.is_error})

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}
        if not isinstance(params, dict):
            self._fail(request_id, -32602, "Invalid params: expected an object")
            return

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif isinstance(method, str) and method.startswith("notifications/"):
            return
        elif method == "tools/list":
            self.handle_list_tools(request_id)
        elif method == "tools/call":
            name = params.get("name")
            arguments = params.get("arguments") or {}
            self.handle_call_tool(request_id, name or "", arguments if isinstance(arguments, dict) else {})
        elif method == "prompts/list":
            self.handle_list_prompts(request_id)
        elif method == "prompts/get":
            self.handle_get_prompt(request_id, str(params.get("name") or ""))
        elif method == "ping":
            self._reply(request_id, {})
        else:
            self._fail(request_id, -32601, f"Method {method} not found")

    def close(self) -> None:
        self.bridge.stop()


def serve(server: McpServer, inp: IO[bytes] | None = None) -> None:
    """Dispatch frames until EOF; undecodable lines are logged and skipped."""
    while True:
        try:
            message = _read_message(inp)
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError both land here.
            logger.warning("invalid JSON-RPC frame: %s", exc)
            continue
        if message is None:
            break
        server.dispatch(message)


def main() -> None:
    """Main entry point for MCP server."""
    server = McpServer()
    try:
        serve(server)
    finally:
        server.close()


if __name__ == "__main__":
    main()
