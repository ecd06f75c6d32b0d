from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import threading
import time
from typing import Any

from .config import BridgeConfig
from .envelope import Envelope, MessageType, RequestIdFactory, parse_envelope
from .errors import BridgeError, ExtensionNotConnectedError, RequestTimeoutError
from .pending import PendingRequests, future_callbacks
from .transport import import_websockets, is_open, ws_send_envelope

logger = logging.getLogger("mcp.clueprint.bridge_relay")

RELAY_UNREACHABLE = "Primary bridge server is not reachable. Another tool process owns the port but is not answering."


def _now_ms() -> int:
    return int(time.time() * 1000)


class BridgeRelay:
    """Relay client that reaches the browser agent through the Leader.

    Used when another process already holds the well-known port. The relay
    identifies itself once per connection, issues requests under its own ids,
    and relies on the Leader to remap them for the agent hop. The link is
    re-established every ``reconnect_delay_s`` for as long as the relay runs.
    """

    def __init__(self, *, config: BridgeConfig | None = None) -> None:
        self.config = config or BridgeConfig.from_env()

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._linked = threading.Event()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ws: Any | None = None

        self._ids = RequestIdFactory()
        self._pending = PendingRequests()

        self._connect_attempts = 0
        self._linked_at_ms: int | None = None
        self._last_error: str | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self, *, wait_timeout: float = 0.2) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._linked.clear()

        t = threading.Thread(target=self._run_thread, name="clueprint-bridge-relay", daemon=True)
        self._thread = t
        t.start()

        # Best-effort: don't block the MCP initialize handshake.
        self._linked.wait(timeout=max(0.0, float(wait_timeout)))

    def stop(self, *, timeout: float = 2.0) -> None:
        self._stop.set()
        loop = self._loop
        if loop is not None and not loop.is_closed():
            with contextlib.suppress(Exception):
                asyncio.run_coroutine_threadsafe(self._shutdown_async(), loop).result(timeout=timeout)
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "role": "relay",
                "listening": False,
                "linked": self._linked.is_set(),
                "leaderUrl": self.config.url,
                "pid": int(os.getpid()),
                "pendingRequests": len(self._pending),
                "connectAttempts": int(self._connect_attempts),
                **({"linkedAtMs": self._linked_at_ms} if isinstance(self._linked_at_ms, int) else {}),
                **({"lastError": self._last_error} if self._last_error else {}),
            }

    def is_linked(self) -> bool:
        with self._lock:
            return is_open(self._ws)

    def wait_for_link(self, *, timeout: float) -> bool:
        return bool(self._linked.wait(timeout=max(0.0, float(timeout))))

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    def request(self, req_type: str, payload: Any = None, *, timeout: float | None = None) -> Any:
        if not isinstance(req_type, str) or not req_type.strip():
            raise BridgeError("Request type is required")
        timeout_s = float(timeout if timeout is not None else self.config.request_timeout_s)

        # Give the background thread a short chance to (re)link.
        if not self.is_linked():
            self.wait_for_link(timeout=1.5)
        loop = self._loop
        if loop is None or loop.is_closed() or not self.is_linked():
            raise ExtensionNotConnectedError(RELAY_UNREACHABLE)

        cf = asyncio.run_coroutine_threadsafe(self.request_async(req_type, payload, timeout=timeout_s), loop)
        try:
            return cf.result(timeout=timeout_s + 2.0)
        except TimeoutError as exc:
            cf.cancel()
            raise RequestTimeoutError(req_type) from exc

    async def request_async(self, req_type: str, payload: Any = None, *, timeout: float | None = None) -> Any:
        with self._lock:
            ws = self._ws
        if ws is None or not is_open(ws):
            raise ExtensionNotConnectedError(RELAY_UNREACHABLE)

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
            raise BridgeError(f"Relay send failed: {exc}") from exc
        return await fut

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _run_thread(self) -> None:
        asyncio.run(self._run_async())

    async def _run_async(self) -> None:
        self._loop = asyncio.get_running_loop()
        websockets = import_websockets()
        delay = max(0.05, float(self.config.reconnect_delay_s))

        while not self._stop.is_set():
            with self._lock:
                self._connect_attempts += 1
            try:
                async with websockets.connect(
                    self.config.url,
                    ping_interval=None,
                    open_timeout=2.0,
                    max_size=8_000_000,
                ) as ws:
                    await ws_send_envelope(ws, Envelope(type=MessageType.MCP_RELAY_IDENTIFY))
                    with self._lock:
                        self._ws = ws
                        self._linked_at_ms = _now_ms()
                        self._last_error = None
                    self._linked.set()
                    logger.info("Connected to primary server as relay: %s", self.config.url)

                    async for raw in ws:
                        self._on_frame(raw)
            except Exception as exc:  # noqa: BLE001
                with self._lock:
                    self._last_error = str(exc)
                logger.debug("relay link failed: %s", exc)
            finally:
                self._unlink()

            if self._stop.is_set():
                break
            await asyncio.sleep(delay)

    async def _shutdown_async(self) -> None:
        with self._lock:
            ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        self._pending.fail_all(BridgeError("Bridge relay stopped"))
        self._unlink()

    def _unlink(self) -> None:
        with self._lock:
            was_linked = self._ws is not None
            self._ws = None
            self._linked.clear()
        if was_linked:
            logger.info("Relay disconnected from primary server")

    def _on_frame(self, raw: Any) -> None:
        env = parse_envelope(raw)
        if env is None:
            return
        if env.id is None:
            logger.debug("relay ignored push type=%s", env.type)
            return
        entry = self._pending.get(env.id)
        if entry is None:
            logger.debug("relay dropped late response id=%s", env.id)
            return
        if env.error is None:
            self._pending.resolve(env.id, env.payload)
        else:
            self._pending.reject(env.id, self._error_for(entry.type, env.error))

    @staticmethod
    def _error_for(req_type: str, message: str) -> BridgeError:
        if message.startswith("Request timed out"):
            return RequestTimeoutError(req_type)
        if message.startswith("Extension not connected"):
            return ExtensionNotConnectedError(message)
        return BridgeError(message)


__all__ = ["BridgeRelay", "RELAY_UNREACHABLE"]
