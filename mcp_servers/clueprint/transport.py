from __future__ import annotations

from typing import Any

from .envelope import Envelope


def import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "Clueprint requires the 'websockets' Python package. Install it (pip install websockets)."
        ) from exc


def is_open(ws: Any) -> bool:
    if ws is None:
        return False
    from websockets.protocol import State  # type: ignore[import-not-found]

    return getattr(ws, "state", None) is State.OPEN


async def ws_send_envelope(ws: Any, env: Envelope) -> None:
    await ws.send(env.encode())


__all__ = ["import_websockets", "is_open", "ws_send_envelope"]
