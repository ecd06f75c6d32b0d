from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7007
STATE_DIR_NAME = "ai-browser-devtools"


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def default_state_dir() -> Path:
    return Path(tempfile.gettempdir()) / STATE_DIR_NAME


def _bool_env(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


def _port_env(name: str, *, default: int) -> int:
    try:
        port = int(os.environ.get(name) or default)
    except Exception:
        port = default
    if port < 1 or port > 65535:
        return default
    return port


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Settings shared by every tool-invocation process on the host."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    state_dir: Path | None = None
    request_timeout_s: float = 10.0
    reconnect_delay_s: float = 3.0
    ping_interval_s: float = 30.0
    stale_threshold_s: float = 60.0

    @classmethod
    def from_env(cls) -> BridgeConfig:
        host = (os.environ.get("CLUEPRINT_HOST") or DEFAULT_HOST).strip() or DEFAULT_HOST
        raw_dir = (os.environ.get("CLUEPRINT_STATE_DIR") or "").strip()
        return cls(
            host=host,
            port=_port_env("CLUEPRINT_PORT", default=DEFAULT_PORT),
            state_dir=Path(expand_path(raw_dir)) if raw_dir else None,
            request_timeout_s=_float_env("CLUEPRINT_REQUEST_TIMEOUT", default=10.0, lo=0.1, hi=300.0),
            reconnect_delay_s=_float_env("CLUEPRINT_RECONNECT_DELAY", default=3.0, lo=0.05, hi=60.0),
            ping_interval_s=_float_env("CLUEPRINT_PING_INTERVAL", default=30.0, lo=0.05, hi=600.0),
            stale_threshold_s=_float_env("CLUEPRINT_STALE_THRESHOLD", default=60.0, lo=1.0, hi=3600.0),
        )

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{int(self.port)}"


@dataclass(frozen=True, slots=True)
class AgentConfig:
    """Browser-side session manager settings."""

    server_url: str = f"ws://localhost:{DEFAULT_PORT}"
    reconnect_delay_s: float = 3.0
    keepalive_interval_s: float = 30.0
    buffer_max_age_ms: int = 30_000
    buffer_max_entries: int = 5_000
    buffer_sweep_interval_s: float = 5.0
    max_console_entries: int = 100
    max_network_entries: int = 200
    buffering: bool = True

    @classmethod
    def from_env(cls) -> AgentConfig:
        host = (os.environ.get("CLUEPRINT_HOST") or "localhost").strip() or "localhost"
        port = _port_env("CLUEPRINT_PORT", default=DEFAULT_PORT)
        return cls(
            server_url=f"ws://{host}:{port}",
            reconnect_delay_s=_float_env("CLUEPRINT_RECONNECT_DELAY", default=3.0, lo=0.05, hi=60.0),
            keepalive_interval_s=_float_env("CLUEPRINT_KEEPALIVE_INTERVAL", default=30.0, lo=0.05, hi=600.0),
            buffering=_bool_env("CLUEPRINT_BUFFERING", default=True),
        )


__all__ = ["AgentConfig", "BridgeConfig", "DEFAULT_HOST", "DEFAULT_PORT", "default_state_dir"]
