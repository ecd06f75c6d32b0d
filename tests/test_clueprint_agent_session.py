from __future__ import annotations

import asyncio
import socket
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest


def _free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = int(s.getsockname()[1])
    s.close()
    return port


def _wait_until(pred: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if pred():
            return True
        time.sleep(0.02)
    return bool(pred())


class _Clock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class _AgentThread:
    """Runs a SessionManager on its own event loop, like a browser background page."""

    def __init__(self, session: Any) -> None:
        self.session = session
        self.loop: asyncio.AbstractEventLoop | None = None
        self._ready = threading.Event()
        self._stop: asyncio.Event | None = None
        self._thread = threading.Thread(target=lambda: asyncio.run(self._main()), daemon=True)

    def start(self) -> _AgentThread:
        self._thread.start()
        assert self._ready.wait(timeout=5)
        return self

    def local(self, mtype: str, payload: Any = None) -> dict[str, Any]:
        assert self.loop is not None
        msg = {"type": mtype, "payload": payload}
        return asyncio.run_coroutine_threadsafe(self.session.handle_local_message(msg), self.loop).result(5)

    def close(self) -> None:
        if self.loop is not None and self._stop is not None:
            self.loop.call_soon_threadsafe(self._stop.set)
        self._thread.join(timeout=5)

    async def _main(self) -> None:
        self.loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        await self.session.start()
        self._ready.set()
        try:
            await self._stop.wait()
        finally:
            await self.session.stop()


def _run(coro):
    return asyncio.run(coro)


def test_local_messages_without_bridge_connection() -> None:
    from mcp_servers.clueprint.agent.session import SessionManager
    from mcp_servers.clueprint.config import AgentConfig

    clock = _Clock(1_000)
    session = SessionManager(config=AgentConfig(server_url="ws://127.0.0.1:9"), clock=clock)

    async def _main() -> None:
        assert await session.handle_local_message({"type": "NOPE"}) == {"error": "Unknown message type"}
        assert await session.handle_local_message({"type": "CONTENT_READY"}) == {"success": True}

        sel = {"mode": "inspect", "element": {"selector": "#x"}}
        assert await session.handle_local_message({"type": "ELEMENT_SELECTED", "payload": sel}) == {"success": True}
        assert session.selection == sel

        await session.handle_local_message(
            {"type": "CONSOLE_EVENT", "payload": {"type": "error", "message": "bad", "source": "app.js:1"}}
        )
        await session.handle_local_message({"type": "CONSOLE_EVENT", "payload": {"type": "log", "message": "hi"}})
        await session.handle_local_message(
            {"type": "NETWORK_EVENT", "payload": {"url": "http://a/api", "method": "GET", "status": 404}}
        )
        await session.handle_local_message(
            {"type": "NETWORK_EVENT", "payload": {"url": "http://a/ok", "method": "GET", "status": 200}}
        )

        ctx = await session.handle_local_message({"type": "GET_BROWSER_CONTEXT"})
        assert [e["message"] for e in ctx["errors"]] == ["bad"]
        assert [n["status"] for n in ctx["networkFailures"]] == [404]

        status = await session.handle_local_message({"type": "GET_STATUS"})
        assert status == {
            "isActive": True,
            "isRecording": False,
            "isBuffering": True,
            "hasSelection": True,
            "mcpConnected": False,
        }

        await session.handle_local_message({"type": "TAB_UPDATED", "payload": {"status": "loading", "url": "http://b/"}})
        assert session.selection is None

        sent = await session.handle_local_message({"type": "SEND_BUFFER"})
        types = [e["type"] for e in sent["recording"]["events"]]
        assert types == ["element_select", "console_error", "console_log", "network_error", "network_response", "navigation"]
        assert session.current_recording == sent["recording"]

        assert await session.handle_local_message({"type": "TOGGLE_BUFFER"}) == {"success": True, "isBuffering": False}
        assert len(session.buffer) == 0
        assert (await session.handle_local_message({"type": "SEND_BUFFER"}))["recording"] is None

        stopped = await session.handle_local_message({"type": "STOP_RECORDING"})
        assert stopped == {"success": True, "recording": None}

    _run(_main())


def test_local_recording_captures_interactions() -> None:
    from mcp_servers.clueprint.agent.probe import StaticPageProbe
    from mcp_servers.clueprint.agent.session import SessionManager
    from mcp_servers.clueprint.config import AgentConfig

    clock = _Clock(10_000)
    session = SessionManager(
        config=AgentConfig(server_url="ws://127.0.0.1:9"),
        probe=StaticPageProbe(url="http://shop/cart", title="Cart"),
        clock=clock,
    )

    async def _main() -> dict[str, Any]:
        await session.handle_local_message({"type": "START_RECORDING"})
        clock.now = 11_000
        await session.handle_local_message(
            {"type": "INTERACTION_EVENT", "payload": {"type": "click", "data": {"selector": "#checkout"}}}
        )
        clock.now = 11_250
        await session.handle_local_message({"type": "CONSOLE_EVENT", "payload": {"type": "error", "message": "X is null"}})
        clock.now = 13_000
        return await session.handle_local_message({"type": "STOP_RECORDING"})

    out = _run(_main())
    rec = out["recording"]
    assert rec["duration"] == 3_000
    assert rec["summary"]["totalEvents"] == 3
    assert rec["events"][0]["data"] == {"url": "http://shop/cart", "title": "Cart", "event": "recording_start"}
    assert rec["diagnosis"]["suspectedIssue"] == "Error occurred after clicking #checkout"
    assert rec["diagnosis"]["rootCause"] == "X is null"
    assert session.current_recording == rec


def test_session_serves_bridge_requests(tmp_path: Path) -> None:
    try:
        import websockets  # noqa: F401
    except Exception:
        pytest.skip("websockets not installed")

    from mcp_servers.clueprint.agent.probe import StaticPageProbe
    from mcp_servers.clueprint.agent.session import SessionManager
    from mcp_servers.clueprint.bridge import Role, SharedBridge
    from mcp_servers.clueprint.config import AgentConfig, BridgeConfig

    port = _free_port()
    bridge = SharedBridge(
        config=BridgeConfig(host="127.0.0.1", port=port, state_dir=tmp_path, request_timeout_s=3.0)
    )
    clock = _Clock(50_000)
    probe = StaticPageProbe(
        url="http://shop/",
        title="Shop",
        elements={"#buy": {"classes": ["btn"], "size": {"width": 80, "height": 30}}},
    )
    session = SessionManager(
        config=AgentConfig(server_url=f"ws://127.0.0.1:{port}", reconnect_delay_s=0.05),
        probe=probe,
        clock=clock,
    )
    agent = None
    try:
        assert bridge.start() is Role.LEADER
        agent = _AgentThread(session).start()
        assert _wait_until(bridge.is_extension_connected)

        diagnostics = bridge.request_diagnostics()
        assert diagnostics["url"] == "http://shop/"

        bridge.start_recording()
        assert bridge.is_recording_active() is True
        clock.now = 51_000
        agent.local("INTERACTION_EVENT", {"type": "click", "data": {"selector": "#buy"}})
        clock.now = 51_300
        agent.local("CONSOLE_EVENT", {"type": "error", "message": "cart is undefined"})
        clock.now = 52_000
        recording = bridge.stop_recording()
        assert recording is not None
        assert recording["summary"]["totalEvents"] == 3
        assert recording["diagnosis"]["rootCause"] == "cart is undefined"
        assert bridge.is_recording_active() is False
        assert bridge.get_current_recording() == recording
        assert _wait_until(lambda: bridge.status()["consoleEvents"] == 1)

        selection = {"mode": "inspect", "timestamp": 1, "element": {"selector": "#buy", "tag": "button"}}
        agent.local("ELEMENT_SELECTED", selection)
        assert _wait_until(lambda: bridge.get_current_selection() == selection)

        before = bridge.request_snapshot()
        probe.elements["#buy"] = {"classes": ["btn", "loading"], "size": {"width": 80, "height": 30}}
        after = bridge.request_snapshot()
        assert before["id"] != after["id"]
        diff = bridge.request_diff(before["id"], after["id"])
        assert diff["changes"] == [
            {"selector": "#buy", "type": "changed", "changes": {"classes": {"added": ["loading"], "removed": []}}}
        ]
        assert bridge.request_diff(before["id"], "snap_missing") == {"error": "Snapshot not found"}

        activity = bridge.request_recent_activity()
        assert activity is not None
        assert "element_select" in [e["type"] for e in activity["events"]]
    finally:
        if agent is not None:
            agent.close()
        bridge.stop()


def test_session_reconnects_when_leader_appears(tmp_path: Path) -> None:
    try:
        import websockets  # noqa: F401
    except Exception:
        pytest.skip("websockets not installed")

    from mcp_servers.clueprint.agent.session import SessionManager
    from mcp_servers.clueprint.bridge import Role, SharedBridge
    from mcp_servers.clueprint.config import AgentConfig, BridgeConfig

    port = _free_port()
    session = SessionManager(config=AgentConfig(server_url=f"ws://127.0.0.1:{port}", reconnect_delay_s=0.05))
    agent = _AgentThread(session).start()
    bridge = SharedBridge(config=BridgeConfig(host="127.0.0.1", port=port, state_dir=tmp_path))
    try:
        time.sleep(0.2)
        assert session.connected is False
        assert bridge.start() is Role.LEADER
        assert asyncio.run_coroutine_threadsafe(session.wait_connected(timeout=5), agent.loop).result(6) is True
        assert session.connected is True
        assert _wait_until(bridge.is_extension_connected)
        assert agent.local("GET_STATUS")["mcpConnected"] is True
    finally:
        agent.close()
        bridge.stop()
