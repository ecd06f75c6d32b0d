from __future__ import annotations

import asyncio
import socket


def _free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = int(s.getsockname()[1])
    s.close()
    return port


def test_pending_request_times_out_exactly_once() -> None:
    from mcp_servers.clueprint.errors import RequestTimeoutError
    from mcp_servers.clueprint.pending import PendingRequests

    rejected: list[BaseException] = []
    resolved: list[object] = []

    async def _main() -> None:
        table = PendingRequests()
        table.add(
            asyncio.get_running_loop(),
            "req_1_1",
            "GET_DIAGNOSTICS",
            timeout=0.05,
            resolve=resolved.append,
            reject=rejected.append,
        )
        await asyncio.sleep(0.2)
        assert len(table) == 0
        assert table.resolve("req_1_1", {"late": True}) is False

    asyncio.run(_main())
    assert resolved == []
    assert len(rejected) == 1
    assert isinstance(rejected[0], RequestTimeoutError)
    assert str(rejected[0]) == "Request timed out: GET_DIAGNOSTICS"


def test_pending_resolve_cancels_timer() -> None:
    from mcp_servers.clueprint.pending import PendingRequests, future_callbacks

    async def _main() -> object:
        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        resolve, reject = future_callbacks(fut)
        table = PendingRequests()
        table.add(loop, "r", "SNAPSHOT_DOM", timeout=0.05, resolve=resolve, reject=reject)
        assert "r" in table
        assert table.resolve("r", {"id": "snap"}) is True
        await asyncio.sleep(0.1)
        return fut.result()

    assert asyncio.run(_main()) == {"id": "snap"}


def test_pending_fail_all_rejects_everything() -> None:
    from mcp_servers.clueprint.errors import BridgeError
    from mcp_servers.clueprint.pending import PendingRequests

    rejected: list[BaseException] = []

    async def _main() -> int:
        loop = asyncio.get_running_loop()
        table = PendingRequests()
        for i in range(3):
            table.add(loop, f"r{i}", "GET_SELECTION", timeout=5, resolve=lambda _v: None, reject=rejected.append)
        return table.fail_all(BridgeError("shutting down"))

    assert asyncio.run(_main()) == 3
    assert [str(e) for e in rejected] == ["shutting down"] * 3


def test_port_lease_is_exclusive_until_released() -> None:
    from mcp_servers.clueprint.leader_lease import PortLease

    port = _free_port()
    first = PortLease("127.0.0.1", port)
    second = PortLease("127.0.0.1", port)
    try:
        assert first.try_acquire() is True
        assert first.held is True
        assert first.try_acquire() is True
        assert second.try_acquire() is False
        assert second.listening_socket() is None

        first.release()
        assert first.held is False
        assert second.try_acquire() is True
    finally:
        first.release()
        second.release()
