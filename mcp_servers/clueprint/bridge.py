from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any

from .bridge_leader import BridgeLeader
from .bridge_relay import BridgeRelay
from .config import BridgeConfig
from .envelope import MessageType
from .errors import BridgeError
from .leader_lease import PortLease
from .shared_state import SharedStateStore

logger = logging.getLogger("mcp.clueprint.bridge")


class Role(str, Enum):
    LEADER = "leader"
    RELAY = "relay"


class SharedBridge:
    """Multi-process bridge manager.

    Goal: let many tool-invocation processes share one browser agent connection.

    - Exactly one process becomes the Leader (binds the well-known port and accepts the agent).
    - Other processes run as Relay Clients and forward every request through the Leader.
    - Promotion: a Relay Client whose Leader has gone away re-attempts the bind on its
      next use and takes over the port when it succeeds.

    Read-side operations (selection, recording, connection) consult the shared state
    store first, so idle siblings see what the Leader mirrored.
    """

    def __init__(
        self,
        *,
        config: BridgeConfig | None = None,
        store: SharedStateStore | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.store = store or SharedStateStore(
            self.config.state_dir, stale_threshold_ms=int(self.config.stale_threshold_s * 1000)
        )
        self._lock = threading.RLock()
        self._lease = PortLease(self.config.host, self.config.port)

        self._role: Role | None = None
        self._leader: BridgeLeader | None = None
        self._relay: BridgeRelay | None = None

        # Per-process cache; the store wins whenever it holds a value.
        self._selection: dict[str, Any] | None = None
        self._recording: dict[str, Any] | None = None
        self._recording_active = False

    @property
    def role(self) -> Role | None:
        with self._lock:
            return self._role

    # ─────────────────────────────────────────────────────────────────────────
    # Role management
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_backend(self) -> None:
        with self._lock:
            if self._role is Role.LEADER and self._leader is not None:
                return
            if self._role is Role.RELAY and self._relay is not None and self._relay.is_linked():
                return

            if self._lease.try_acquire():
                self._become_leader()
                return

            if self._relay is None:
                self._relay = BridgeRelay(config=self.config)
                logger.info("Port %s already in use - connecting as relay client", self.config.port)
            self._role = Role.RELAY
            self._relay.start(wait_timeout=0.2)

    def _become_leader(self) -> None:
        promoted = self._role is Role.RELAY
        if self._relay is not None:
            self._relay.stop(timeout=0.5)
            self._relay = None
        self._leader = BridgeLeader(self._lease, config=self.config, store=self.store)
        self._role = Role.LEADER
        self._leader.start()
        if promoted:
            logger.info("Promoted from relay to leader on port %s", self.config.port)

    def _backend(self) -> BridgeLeader | BridgeRelay:
        self._ensure_backend()
        with self._lock:
            backend = self._leader if self._role is Role.LEADER else self._relay
        if backend is None:
            raise BridgeError("Bridge backend unavailable")
        return backend

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> Role:
        self._ensure_backend()
        role = self.role
        if role is None:
            raise BridgeError("Bridge failed to start")
        return role

    def stop(self, *, timeout: float = 2.0) -> None:
        with self._lock:
            if self._relay is not None:
                self._relay.stop(timeout=timeout)
                self._relay = None
            if self._leader is not None:
                self._leader.stop(timeout=timeout)
                self._leader = None
            self._lease.release()
            self._role = None

    def status(self) -> dict[str, Any]:
        backend = self._backend()
        st = backend.status()
        st["role"] = self.role.value if self.role else None
        st["extensionConnected"] = self.is_extension_connected()
        st["recordingActive"] = self.is_recording_active()
        st["stateDir"] = str(self.store.directory)
        return st

    def request(self, req_type: str, payload: Any = None, *, timeout: float | None = None) -> Any:
        return self._backend().request(req_type, payload, timeout=timeout)

    # ─────────────────────────────────────────────────────────────────────────
    # Bridge operations
    # ─────────────────────────────────────────────────────────────────────────

    def is_extension_connected(self) -> bool:
        """Layered check: own agent socket, then relay link, then the shared record.

        Counts as a use of the bridge, so a Relay Client whose Leader has gone
        away takes over the port here.
        """
        try:
            self._ensure_backend()
        except (BridgeError, OSError) as exc:
            logger.warning("bridge backend unavailable: %s", exc)
        with self._lock:
            leader = self._leader
            relay = self._relay
        if leader is not None and leader.is_connected():
            return True
        if relay is not None and relay.is_linked():
            return True
        return self.store.load_connection_state()

    def get_current_selection(self) -> dict[str, Any] | None:
        shared = self.store.load_selection()
        with self._lock:
            if shared is not None:
                self._selection = shared
            elif self._leader is not None and self._leader.selection is not None:
                self._selection = self._leader.selection
            else:
                self._selection = None
            return self._selection

    def clear_selection(self) -> None:
        with self._lock:
            self._selection = None
            leader = self._leader
        if leader is not None:
            leader.clear_selection()
        else:
            self.store.save_selection(None)

    def get_current_recording(self) -> dict[str, Any] | None:
        shared = self.store.load_recording()
        with self._lock:
            if shared is not None:
                self._recording = shared
            return self._recording

    def is_recording_active(self) -> bool:
        active = self.store.load_recording_state()
        with self._lock:
            self._recording_active = active
        return active

    def request_diagnostics(self) -> dict[str, Any]:
        res = self.request(MessageType.GET_DIAGNOSTICS)
        return res if isinstance(res, dict) else {}

    def start_recording(self) -> None:
        self.request(MessageType.START_RECORDING)
        with self._lock:
            self._recording_active = True
            self._recording = None
        self.store.save_recording_state(True)
        self.store.save_recording(None)

    def stop_recording(self) -> dict[str, Any] | None:
        recording = self.request(MessageType.STOP_RECORDING)
        if not isinstance(recording, dict):
            recording = None
        with self._lock:
            self._recording_active = False
            self._recording = recording
        self.store.save_recording_state(False)
        self.store.save_recording(recording)
        return recording

    def request_recent_activity(self) -> dict[str, Any] | None:
        res = self.request(MessageType.GET_RECENT_ACTIVITY)
        return res if isinstance(res, dict) else None

    def request_snapshot(self, selector: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if selector:
            payload["selector"] = selector
        res = self.request(MessageType.SNAPSHOT_DOM, payload)
        return res if isinstance(res, dict) else {}

    def request_diff(self, before: str, after: str) -> dict[str, Any]:
        res = self.request(MessageType.DIFF_SNAPSHOTS, {"before": before, "after": after})
        return res if isinstance(res, dict) else {}


__all__ = ["Role", "SharedBridge"]
