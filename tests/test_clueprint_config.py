from __future__ import annotations

import tempfile
from pathlib import Path

import pytest


def test_bridge_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CLUEPRINT_HOST", "CLUEPRINT_PORT", "CLUEPRINT_STATE_DIR", "CLUEPRINT_REQUEST_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)

    from mcp_servers.clueprint.config import BridgeConfig, default_state_dir

    cfg = BridgeConfig.from_env()
    assert cfg.host == "127.0.0.1"
    assert cfg.port == 7007
    assert cfg.state_dir is None
    assert cfg.request_timeout_s == 10.0
    assert cfg.url == "ws://127.0.0.1:7007"
    assert default_state_dir() == Path(tempfile.gettempdir()) / "ai-browser-devtools"


def test_bridge_config_env_overrides_are_clamped(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CLUEPRINT_PORT", "not-a-port")
    monkeypatch.setenv("CLUEPRINT_REQUEST_TIMEOUT", "0")
    monkeypatch.setenv("CLUEPRINT_PING_INTERVAL", "99999")
    monkeypatch.setenv("CLUEPRINT_STATE_DIR", str(tmp_path))

    from mcp_servers.clueprint.config import BridgeConfig

    cfg = BridgeConfig.from_env()
    assert cfg.port == 7007
    assert cfg.request_timeout_s == 0.1
    assert cfg.ping_interval_s == 600.0
    assert cfg.state_dir == tmp_path


def test_agent_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLUEPRINT_PORT", "7111")
    monkeypatch.setenv("CLUEPRINT_BUFFERING", "off")
    monkeypatch.delenv("CLUEPRINT_HOST", raising=False)

    from mcp_servers.clueprint.config import AgentConfig

    cfg = AgentConfig.from_env()
    assert cfg.server_url == "ws://localhost:7111"
    assert cfg.buffering is False
    assert cfg.buffer_max_age_ms == 30_000
    assert cfg.buffer_max_entries == 5_000
