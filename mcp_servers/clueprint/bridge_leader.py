from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import threading
import time
from collections import deque
from collections.abc import Callable, Coroutine
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .config import BridgeConfig
from .envelope import Envelope, MessageType, RequestIdFactory, parse_envelope
from .errors import BridgeError, ExtensionNotConnectedError, RequestTimeoutError
from .leader_lease import PortLease
from .pending import PendingRequests, future_callbacks
from .shared_state import SharedStateStore
from .transport import import_websockets, is_open, ws_send_envelope

logger = logging.getLogger("mcp.clueprint.bridge_leader")

RELAY_NOT_CONNECTED = "Extension not connected to primary server"


def _now_ms() -> int:
    return int(time.time() * 1000)


class BridgeLeader:
    """Local WebSocket server holding the single browser-agent connection.

    Design goals:
    - Sync API for the tool surface (blocking ``request``), async server internally
      (runs in a dedicated daemon thread).
    - At most one socket is "the agent". The first inbound socket takes the slot;
      later ones queue as candidates until they identify as relays or the slot frees.
    - Relay peers never talk to the agent directly: their requests are re-issued
      under Leader-minted ids and answered under the peer's original id.
    - Every state-changing agent push is mirrored into the shared state store.
    """

    def __init__(
        self,
        lease: PortLease,
        *,
        config: BridgeConfig | None = None,
        store: SharedStateStore | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.store = store or SharedStateStore(
            self.config.state_dir, stale_threshold_ms=int(self.config.stale_threshold_s * 1000)
        )
        self._lease = lease
        self._started_at_ms = _now_ms()

        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._writer: ThreadPoolExecutor | None = None
        self._done: asyncio.Event | None = None
        self._server: Any | None = None
        self._start_error: str | None = None

        self._agent: Any | None = None
        self._candidates: list[Any] = []
        self._relays: set[Any] = set()
        self._agent_last_seen_ms = 0
        self._last_heartbeat_ms = 0

        self._ids = RequestIdFactory()
        self._pending = PendingRequests()
        self._tasks: set[asyncio.Task] = set()

        self._selection: dict[str, Any] | None = None
        self._recording_active = False
        self._console: deque[Any] = deque(maxlen=100)
        self._network: deque[Any] = deque(maxlen=200)
        self._logs: deque[dict[str, Any]] = deque(maxlen=200)

        self._push_handlers: dict[str, Callable[[Any, Envelope], None]] = {
            MessageType.ELEMENT_SELECTED: self._on_selection,
            MessageType.REGION_SELECTED: self._on_selection,
            MessageType.RECORDING_STARTED: self._on_recording_started,
            MessageType.RECORDING_STOPPED: self._on_recording_stopped,
            MessageType.BUFFER_RECORDING: self._on_buffer_recording,
            MessageType.CONSOLE_EVENT: self._on_console_event,
            MessageType.NETWORK_EVENT: self._on_network_event,
            MessageType.PONG: self._on_pong,
            MessageType.PING: self._on_ping,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self, *, wait_timeout: float = 5.0) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        if self._lease.listening_socket() is None:
            raise BridgeError(f"Leader started without holding {self.config.host}:{self.config.port}")

        self._ready.clear()
        if self._writer is None:
            # Single worker: store writes land in the order the loop issued them.
            self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="clueprint-store")
        t = threading.Thread(target=self._run_thread, name="clueprint-bridge-leader", daemon=True)
        self._thread = t
        t.start()

        if not self._ready.wait(timeout=max(0.05, float(wait_timeout))):
            raise BridgeError(f"Bridge leader failed to start on {self.config.host}:{self.config.port}")
        with self._lock:
            err = self._start_error
        if err:
            raise BridgeError(f"Bridge leader failed to start on {self.config.host}:{self.config.port}: {err}")

    def stop(self, *, timeout: float = 2.0) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            with contextlib.suppress(Exception):
                asyncio.run_coroutine_threadsafe(self._shutdown_async(), loop).result(timeout=timeout)
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.shutdown(wait=True)
        self._lease.release()

    def status(self) -> dict[str, Any]:
        with self._lock:
            connected = self._agent is not None
            return {
                "role": "leader",
                "listening": self._server is not None,
                "host": self.config.host,
                "port": int(self.config.port),
                "pid": int(os.getpid()),
                "connected": bool(connected),
                "relayCount": len(self._relays),
                "candidateCount": len(self._candidates),
                "pendingRequests": len(self._pending),
                "recording": bool(self._recording_active),
                "consoleEvents": len(self._console),
                "networkEvents": len(self._network),
                "serverStartedAtMs": int(self._started_at_ms),
                **({"agentLastSeenMs": self._agent_last_seen_ms} if self._agent_last_seen_ms else {}),
                **({"lastHeartbeatMs": self._last_heartbeat_ms} if self._last_heartbeat_ms else {}),
                "logs": list(self._logs)[-10:],
            }

    def is_connected(self) -> bool:
        with self._lock:
            return is_open(self._agent)

    # ─────────────────────────────────────────────────────────────────────────
    # Mirrored state
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def selection(self) -> dict[str, Any] | None:
        with self._lock:
            return self._selection

    def clear_selection(self) -> None:
        """Drop the mirrored selection; returns once the store holds ``null``."""
        with self._lock:
            self._selection = None
        writer = self._writer
        if writer is None:
            self.store.save_selection(None)
            return
        # Queued behind any selection push still on its way to the store.
        writer.submit(self.store.save_selection, None).result(timeout=5.0)

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    def request(self, req_type: str, payload: Any = None, *, timeout: float | None = None) -> Any:
        if not isinstance(req_type, str) or not req_type.strip():
            raise BridgeError("Request type is required")
        loop = self._loop
        if loop is None or loop.is_closed():
            raise ExtensionNotConnectedError()
        timeout_s = float(timeout if timeout is not None else self.config.request_timeout_s)

        cf = asyncio.run_coroutine_threadsafe(self.request_async(req_type, payload, timeout=timeout_s), loop)
        try:
            # The loop-side deadline fires first; the margin only guards a wedged loop.
            return cf.result(timeout=timeout_s + 2.0)
        except TimeoutError as exc:
            cf.cancel()
            raise RequestTimeoutError(req_type) from exc

    async def request_async(self, req_type: str, payload: Any = None, *, timeout: float | None = None) -> Any:
        with self._lock:
            ws = self._agent
        if ws is None:
            raise ExtensionNotConnectedError()

        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        resolve, reject = future_callbacks(fut)
        req_id = self._ids()
        timeout_s = float(timeout if timeout is not None else self.config.request_timeout_s)
        self._pending.add(loop, req_id, req_type, timeout=timeout_s, resolve=resolve, reject=reject)

        try:
            await ws_send_envelope(ws, Envelope(type=req_type, id=req_id, payload=payload))
        except Exception as exc:  # noqa: BLE001
            self._pending.discard(req_id)
            raise BridgeError(f"Extension send failed: {exc}") from exc
        return await fut

    # ─────────────────────────────────────────────────────────────────────────
    # Internals (async)
    # ─────────────────────────────────────────────────────────────────────────

    def _run_thread(self) -> None:
        asyncio.run(self._run_async())

    async def _run_async(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._done = asyncio.Event()
        try:
            websockets = import_websockets()
            server = await websockets.serve(
                self._handler,
                sock=self._lease.listening_socket(),
                max_size=8_000_000,
                ping_interval=None,
            )
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                self._start_error = str(exc)
            self._log("error", f"bridge listen failed: {exc}")
            self._ready.set()
            return

        with self._lock:
            self._server = server
        self._log("info", f"WebSocket server listening on port {self.config.port}")
        self._ready.set()

        try:
            await self._done.wait()
        finally:
            await self._shutdown_async()

    async def _shutdown_async(self) -> None:
        with self._lock:
            srv = self._server
            self._server = None
        if srv is not None:
            with contextlib.suppress(Exception):
                srv.close()
                await srv.wait_closed()
        self._pending.fail_all(BridgeError("Bridge leader stopped"))
        with self._lock:
            had_agent = self._agent is not None
            self._agent = None
            self._candidates.clear()
            self._relays.clear()
        if had_agent:
            self._persist(self.store.save_connection_state, False)
        if self._done is not None:
            self._done.set()

    async def _handler(self, ws) -> None:  # type: ignore[no-untyped-def]
        self._on_open(ws)
        ping_task = asyncio.create_task(self._ping_loop(ws))
        try:
            async for raw in ws:
                await self._on_frame(ws, raw)
        except Exception as exc:  # noqa: BLE001
            logger.debug("socket receive loop ended: %s", exc)
        finally:
            ping_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ping_task
            self._on_close(ws)

    def _on_open(self, ws: Any) -> None:
        with self._lock:
            if self._agent is None or not is_open(self._agent):
                self._agent = ws
                claimed = True
            else:
                self._candidates.append(ws)
                claimed = False
        if claimed:
            self._agent_connected()

    def _agent_connected(self) -> None:
        self._log("info", "Extension connected")
        self._heartbeat()

    def _heartbeat(self) -> None:
        with self._lock:
            self._last_heartbeat_ms = _now_ms()
        self._persist(self.store.save_connection_state, True)

    def _persist(self, write: Callable[..., bool], *args: Any) -> None:
        writer = self._writer
        if writer is None:
            write(*args)
            return
        writer.submit(write, *args)

    def _promote_candidate_locked(self) -> Any | None:
        while self._candidates:
            nxt = self._candidates.pop(0)
            if is_open(nxt):
                self._agent = nxt
                return nxt
        return None

    def _release_agent_slot(self, ws: Any) -> None:
        with self._lock:
            if self._agent is not ws:
                return
            self._agent = None
            promoted = self._promote_candidate_locked()
        if promoted is not None:
            self._agent_connected()
        else:
            self._persist(self.store.save_connection_state, False)

    def _on_close(self, ws: Any) -> None:
        with self._lock:
            was_relay = ws in self._relays
            self._relays.discard(ws)
            if ws in self._candidates:
                self._candidates.remove(ws)
            was_agent = self._agent is ws
        if was_relay:
            self._log("info", "Relay client disconnected")
        elif was_agent:
            self._log("info", "Extension disconnected")
            self._release_agent_slot(ws)

    def _identify_relay(self, ws: Any) -> None:
        with self._lock:
            self._relays.add(ws)
            if ws in self._candidates:
                self._candidates.remove(ws)
            was_agent = self._agent is ws
        self._log("info", "Client re-identified as relay")
        if was_agent:
            self._release_agent_slot(ws)

    async def _on_frame(self, ws: Any, raw: Any) -> None:
        env = parse_envelope(raw)
        if env is None:
            return
        if env.type == MessageType.MCP_RELAY_IDENTIFY:
            self._identify_relay(ws)
            return
        with self._lock:
            from_relay = ws in self._relays
        if from_relay:
            await self._forward_relay_request(ws, env)
            return
        self._on_agent_message(ws, env)

    def _on_agent_message(self, ws: Any, env: Envelope) -> None:
        with self._lock:
            is_agent = ws is self._agent
            if is_agent:
                self._agent_last_seen_ms = _now_ms()

        if env.id is not None:
            if env.error is not None:
                matched = self._pending.reject(env.id, BridgeError(env.error))
            else:
                matched = self._pending.resolve(env.id, env.payload)
            if matched:
                return

        # Queued candidates may answer requests but never drive mirrored state.
        if not is_agent:
            logger.debug("candidate push dropped type=%s", env.type)
            return
        handler = self._push_handlers.get(env.type)
        if handler is None:
            logger.debug("unhandled message type=%s id=%s", env.type, env.id)
            return
        handler(ws, env)

    async def _forward_relay_request(self, relay_ws: Any, env: Envelope) -> None:
        if env.id is None:
            logger.debug("relay push dropped type=%s", env.type)
            return
        origin_id = env.id

        with self._lock:
            agent = self._agent
        if agent is None or not is_open(agent):
            await self._send_quietly(relay_ws, Envelope(id=origin_id, error=RELAY_NOT_CONNECTED))
            return

        loop = asyncio.get_running_loop()
        remapped = self._ids()

        def _resolve(value: Any) -> None:
            self._spawn(self._send_quietly(relay_ws, Envelope(id=origin_id, payload=value)))

        def _reject(exc: BaseException) -> None:
            self._spawn(self._send_quietly(relay_ws, Envelope(id=origin_id, error=str(exc))))

        self._pending.add(
            loop,
            remapped,
            env.type,
            timeout=self.config.request_timeout_s,
            resolve=_resolve,
            reject=_reject,
        )
        try:
            await ws_send_envelope(agent, Envelope(type=env.type, id=remapped, payload=env.payload))
        except Exception as exc:  # noqa: BLE001
            self._pending.reject(remapped, BridgeError(f"Extension send failed: {exc}"))

    async def _ping_loop(self, ws: Any) -> None:
        interval = max(0.05, float(self.config.ping_interval_s))
        while True:
            await asyncio.sleep(interval)
            with self._lock:
                is_agent = self._agent is ws
            if not is_agent or not is_open(ws):
                continue
            try:
                await ws_send_envelope(ws, Envelope(type=MessageType.PING))
            except Exception as exc:  # noqa: BLE001
                logger.debug("ping failed: %s", exc)
                continue
            self._heartbeat()

    async def _send_quietly(self, ws: Any, env: Envelope) -> None:
        try:
            await ws_send_envelope(ws, env)
        except Exception as exc:  # noqa: BLE001
            logger.debug("send failed type=%s id=%s: %s", env.type, env.id, exc)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _log(self, level: str, message: str) -> None:
        getattr(logger, "error" if level == "error" else "info")("%s", message)
        with self._lock:
            self._logs.append({"ts": _now_ms(), "level": level, "message": message[:2000]})

    # ─────────────────────────────────────────────────────────────────────────
    # Push handlers
    # ─────────────────────────────────────────────────────────────────────────

    def _on_selection(self, _ws: Any, env: Envelope) -> None:
        selection = env.payload if isinstance(env.payload, dict) else None
        with self._lock:
            self._selection = selection
        self._persist(self.store.save_selection, selection)
        if env.type == MessageType.REGION_SELECTED:
            region = (selection or {}).get("region") or {}
            self._log("info", f"Region selected: {region.get('width')}x{region.get('height')}")
        else:
            element = (selection or {}).get("element") or {}
            self._log("info", f"Element selected: {element.get('selector')}")

    def _on_recording_started(self, _ws: Any, _env: Envelope) -> None:
        with self._lock:
            self._recording_active = True
        self._persist(self.store.save_recording_state, True)
        self._persist(self.store.save_recording, None)
        self._log("info", "Recording started")

    def _on_recording_stopped(self, _ws: Any, env: Envelope) -> None:
        recording = env.payload if isinstance(env.payload, dict) else None
        with self._lock:
            self._recording_active = False
        self._persist(self.store.save_recording, recording)
        self._persist(self.store.save_recording_state, False)
        total = ((recording or {}).get("summary") or {}).get("totalEvents")
        self._log("info", f"Recording stopped: {total} events")

    def _on_buffer_recording(self, _ws: Any, env: Envelope) -> None:
        recording = env.payload if isinstance(env.payload, dict) else None
        self._persist(self.store.save_recording, recording)
        total = ((recording or {}).get("summary") or {}).get("totalEvents")
        self._log("info", f"Buffer recording received: {total} events")

    def _on_console_event(self, _ws: Any, env: Envelope) -> None:
        with self._lock:
            self._console.append(env.payload)

    def _on_network_event(self, _ws: Any, env: Envelope) -> None:
        with self._lock:
            self._network.append(env.payload)

    def _on_pong(self, ws: Any, _env: Envelope) -> None:
        with self._lock:
            is_agent = self._agent is ws
        if is_agent:
            self._heartbeat()

    def _on_ping(self, ws: Any, _env: Envelope) -> None:
        self._spawn(self._send_quietly(ws, Envelope(type=MessageType.PONG)))


__all__ = ["BridgeLeader", "RELAY_NOT_CONNECTED"]
