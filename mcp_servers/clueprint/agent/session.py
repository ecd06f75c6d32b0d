from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import AgentConfig
from ..envelope import RESPONSE_TYPES, Envelope, MessageType, parse_envelope
from ..transport import import_websockets, is_open, ws_send_envelope
from .probe import PageProbe, StaticPageProbe
from .recorder import FlowRecorder
from .ring_buffer import RingBuffer
from .snapshots import SnapshotStore

logger = logging.getLogger("mcp.clueprint.agent.session")

RequestHandler = Callable[[Any], Awaitable[Any]]
LocalHandler = Callable[[Any], Awaitable[dict[str, Any]]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionManager:
    """Browser-side end of the bridge.

    Owns the single outbound connection to the bridge Leader and everything
    captured from the page: current selection, console/network logs, the
    continuous ring buffer and the flow recorder.

    Lifecycle:
    - ``start()`` connects and launches the keepalive and buffer-sweep tasks.
    - A closed or failed connection schedules one reconnect after
      ``reconnect_delay_s``; the keepalive independently reconnects when no
      connection exists. ``connect()`` is a no-op while one is open or pending.
    - ``stop()`` cancels everything and closes the socket.
    """

    def __init__(
        self,
        *,
        config: AgentConfig | None = None,
        probe: PageProbe | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.config = config or AgentConfig.from_env()
        self.probe: PageProbe = probe or StaticPageProbe()
        self._clock = clock or _now_ms

        self.buffer = RingBuffer(
            max_age_ms=self.config.buffer_max_age_ms,
            max_entries=self.config.buffer_max_entries,
            enabled=self.config.buffering,
            clock=self._clock,
        )
        self.recorder = FlowRecorder(clock=self._clock)
        self.snapshots = SnapshotStore()

        self._ws: Any | None = None
        self._conn_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._background: list[asyncio.Task] = []
        self._tasks: set[asyncio.Task] = set()
        self._stopped = True
        self._connected = asyncio.Event()

        self._active = False
        self._selection: dict[str, Any] | None = None
        self._recording: dict[str, Any] | None = None
        self._console: deque[dict[str, Any]] = deque(maxlen=max(1, self.config.max_console_entries))
        self._network: deque[dict[str, Any]] = deque(maxlen=max(1, self.config.max_network_entries))

        self._requests: dict[str, RequestHandler] = {
            MessageType.GET_SELECTION: self._req_get_selection,
            MessageType.GET_DIAGNOSTICS: self._req_get_diagnostics,
            MessageType.START_RECORDING: self._req_start_recording,
            MessageType.STOP_RECORDING: self._req_stop_recording,
            MessageType.GET_RECORDING: self._req_get_recording,
            MessageType.SNAPSHOT_DOM: self._req_snapshot_dom,
            MessageType.DIFF_SNAPSHOTS: self._req_diff_snapshots,
            MessageType.GET_RECENT_ACTIVITY: self._req_recent_activity,
        }
        self._local: dict[str, LocalHandler] = {
            "ELEMENT_SELECTED": self._local_element_selected,
            "REGION_SELECTED": self._local_region_selected,
            "CONSOLE_EVENT": self._local_console_event,
            "NETWORK_EVENT": self._local_network_event,
            "INTERACTION_EVENT": self._local_interaction_event,
            "TAB_UPDATED": self._local_tab_updated,
            "GET_BROWSER_CONTEXT": self._local_browser_context,
            "GET_STATUS": self._local_status,
            "START_RECORDING": self._local_start_recording,
            "STOP_RECORDING": self._local_stop_recording,
            "CONTENT_READY": self._local_content_ready,
            "TOGGLE_BUFFER": self._local_toggle_buffer,
            "SEND_BUFFER": self._local_send_buffer,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        return is_open(self._ws)

    @property
    def selection(self) -> dict[str, Any] | None:
        return self._selection

    @property
    def current_recording(self) -> dict[str, Any] | None:
        return self._recording

    async def start(self) -> None:
        if not self._stopped:
            return
        self._stopped = False
        self.connect()
        self._background = [
            asyncio.create_task(self._keepalive_loop()),
            asyncio.create_task(self._sweep_loop()),
        ]

    async def stop(self) -> None:
        self._stopped = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        for task in self._background:
            task.cancel()
        for task in self._background:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._background = []

        ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        task = self._conn_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._conn_task = None

    async def wait_connected(self, *, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=max(0.0, float(timeout)))
        except asyncio.TimeoutError:
            return False
        return True

    def connect(self) -> None:
        if self._stopped:
            return
        task = self._conn_task
        if task is not None and not task.done():
            return
        self._conn_task = asyncio.get_running_loop().create_task(self._run_connection())

    async def _run_connection(self) -> None:
        websockets = import_websockets()
        try:
            async with websockets.connect(self.config.server_url, ping_interval=None, max_size=8_000_000) as ws:
                self._ws = ws
                self._connected.set()
                logger.info("Connected to bridge server %s", self.config.server_url)
                async for raw in ws:
                    self._on_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("bridge connection failed: %s", exc)
        finally:
            was_open = self._ws is not None
            self._ws = None
            self._connected.clear()
            if was_open:
                logger.info("Disconnected from bridge server")
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._stopped:
            return
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(max(0.05, float(self.config.reconnect_delay_s)), self.connect)

    async def _keepalive_loop(self) -> None:
        interval = max(0.05, float(self.config.keepalive_interval_s))
        while not self._stopped:
            await asyncio.sleep(interval)
            if self._ws is None:
                self.connect()

    async def _sweep_loop(self) -> None:
        interval = max(0.05, float(self.config.buffer_sweep_interval_s))
        while not self._stopped:
            await asyncio.sleep(interval)
            if self.buffer.enabled:
                self.buffer.sweep()

    # ─────────────────────────────────────────────────────────────────────────
    # Bridge traffic
    # ─────────────────────────────────────────────────────────────────────────

    def _on_frame(self, raw: Any) -> None:
        env = parse_envelope(raw)
        if env is None:
            return
        if env.type == MessageType.PING:
            self._send(Envelope(type=MessageType.PONG, id=env.id))
            return
        handler = self._requests.get(env.type)
        if handler is None:
            logger.debug("dropped bridge message type=%s", env.type)
            return
        self._spawn(self._answer(env, handler))

    async def _answer(self, env: Envelope, handler: RequestHandler) -> None:
        try:
            payload = await handler(env.payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("request handler failed type=%s: %s", env.type, exc)
            reply = Envelope(id=env.id, error=str(exc) or type(exc).__name__)
        else:
            reply = Envelope(type=RESPONSE_TYPES.get(env.type, ""), id=env.id, payload=payload)
        await self._send_now(reply)

    def push(self, msg_type: str, payload: Any = None) -> bool:
        """Send a push if the connection is open; dropped otherwise."""
        if not self.connected:
            logger.debug("push dropped (no connection) type=%s", msg_type)
            return False
        self._send(Envelope(type=msg_type, payload=payload))
        return True

    def _send(self, env: Envelope) -> None:
        self._spawn(self._send_now(env))

    async def _send_now(self, env: Envelope) -> None:
        ws = self._ws
        if ws is None or not is_open(ws):
            logger.debug("send dropped (no connection) type=%s id=%s", env.type, env.id)
            return
        try:
            await ws_send_envelope(ws, env)
        except Exception as exc:  # noqa: BLE001
            logger.debug("send failed type=%s: %s", env.type, exc)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _req_get_selection(self, _payload: Any) -> Any:
        return self._selection

    async def _req_get_diagnostics(self, _payload: Any) -> Any:
        return await self.probe.diagnostics()

    async def _req_start_recording(self, _payload: Any) -> Any:
        await self.start_recording()
        return None

    async def _req_stop_recording(self, _payload: Any) -> Any:
        return self.stop_recording()

    async def _req_get_recording(self, _payload: Any) -> Any:
        return self._recording

    async def _req_snapshot_dom(self, payload: Any) -> Any:
        selector = payload.get("selector") if isinstance(payload, dict) else None
        snapshot = await self.probe.snapshot_dom(selector or None)
        if snapshot:
            self.snapshots.add(snapshot)
        return snapshot

    async def _req_diff_snapshots(self, payload: Any) -> Any:
        args = payload if isinstance(payload, dict) else {}
        return self.snapshots.diff(str(args.get("before") or ""), str(args.get("after") or ""))

    async def _req_recent_activity(self, _payload: Any) -> Any:
        return self.buffer.as_recording()

    # ─────────────────────────────────────────────────────────────────────────
    # Recording
    # ─────────────────────────────────────────────────────────────────────────

    async def start_recording(self) -> None:
        info: dict[str, Any] | None = None
        try:
            info = await self.probe.page_info()
        except Exception as exc:  # noqa: BLE001
            logger.debug("page info unavailable: %s", exc)
        info = info or {}
        self._recording = None
        self.recorder.start(url=info.get("url"), title=info.get("title"))

    def stop_recording(self) -> dict[str, Any] | None:
        recording = self.recorder.stop(final_selection=self._selection)
        if recording is not None:
            self._recording = recording
        return recording

    def _capture(self, event_type: str, data: dict[str, Any]) -> None:
        self.recorder.record(event_type, data)
        self.buffer.append(event_type, data)

    # ─────────────────────────────────────────────────────────────────────────
    # Local (page / popup) messages
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_local_message(self, message: dict[str, Any]) -> dict[str, Any]:
        mtype = message.get("type") if isinstance(message, dict) else None
        handler = self._local.get(mtype) if isinstance(mtype, str) else None
        if handler is None:
            return {"error": "Unknown message type"}
        return await handler(message.get("payload"))

    async def _local_element_selected(self, payload: Any) -> dict[str, Any]:
        selection = payload if isinstance(payload, dict) else None
        self._selection = selection
        self.push(MessageType.ELEMENT_SELECTED, selection)
        selector = ((selection or {}).get("element") or {}).get("selector")
        self._capture("element_select", {"selector": selector})
        return {"success": True}

    async def _local_region_selected(self, payload: Any) -> dict[str, Any]:
        self._selection = payload if isinstance(payload, dict) else None
        self.push(MessageType.REGION_SELECTED, self._selection)
        return {"success": True}

    async def _local_console_event(self, payload: Any) -> dict[str, Any]:
        entry = payload if isinstance(payload, dict) else {}
        self._console.append(entry)
        self.push(MessageType.CONSOLE_EVENT, entry)
        level = str(entry.get("type") or "log")
        self._capture(f"console_{level}", {"message": entry.get("message"), "source": entry.get("source")})
        return {"success": True}

    async def _local_network_event(self, payload: Any) -> dict[str, Any]:
        entry = payload if isinstance(payload, dict) else {}
        self._network.append(entry)
        self.push(MessageType.NETWORK_EVENT, entry)
        status = entry.get("status")
        failed = isinstance(status, int) and status >= 400
        self._capture(
            "network_error" if failed else "network_response",
            {
                "url": entry.get("url"),
                "method": entry.get("method"),
                "status": status,
                "statusText": entry.get("statusText"),
            },
        )
        return {"success": True}

    async def _local_interaction_event(self, payload: Any) -> dict[str, Any]:
        interaction = payload if isinstance(payload, dict) else {}
        etype = str(interaction.get("type") or "")
        data = interaction.get("data")
        if etype:
            self._capture(etype, data if isinstance(data, dict) else {})
        return {"success": True}

    async def _local_tab_updated(self, payload: Any) -> dict[str, Any]:
        change = payload if isinstance(payload, dict) else {}
        if change.get("status") == "loading":
            self._selection = None
            url = change.get("url")
            self._capture("navigation" if url else "refresh", {"url": url})
        return {"success": True}

    async def _local_browser_context(self, _payload: Any) -> dict[str, Any]:
        return {
            "errors": [e for e in self._console if e.get("type") == "error"],
            "networkFailures": [
                n for n in self._network if isinstance(n.get("status"), int) and n["status"] >= 400
            ],
        }

    async def _local_status(self, _payload: Any) -> dict[str, Any]:
        return {
            "isActive": self._active,
            "isRecording": self.recorder.is_recording,
            "isBuffering": self.buffer.enabled,
            "hasSelection": self._selection is not None,
            "mcpConnected": self.connected,
        }

    async def _local_start_recording(self, _payload: Any) -> dict[str, Any]:
        await self.start_recording()
        self.push(MessageType.RECORDING_STARTED)
        return {"success": True}

    async def _local_stop_recording(self, _payload: Any) -> dict[str, Any]:
        recording = self.stop_recording()
        self.push(MessageType.RECORDING_STOPPED, recording)
        return {"success": True, "recording": recording}

    async def _local_content_ready(self, _payload: Any) -> dict[str, Any]:
        self._active = True
        return {"success": True}

    async def _local_toggle_buffer(self, _payload: Any) -> dict[str, Any]:
        enabled = self.buffer.toggle()
        logger.info("background buffering %s", "on" if enabled else "off")
        return {"success": True, "isBuffering": enabled}

    async def _local_send_buffer(self, _payload: Any) -> dict[str, Any]:
        recording = self.buffer.as_recording()
        if recording is not None:
            self._recording = recording
            self.push(MessageType.BUFFER_RECORDING, recording)
        return {"success": True, "recording": recording}


__all__ = ["SessionManager"]
