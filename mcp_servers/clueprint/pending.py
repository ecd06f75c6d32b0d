from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import RequestTimeoutError

logger = logging.getLogger("mcp.clueprint.pending")


@dataclass(slots=True)
class PendingRequest:
    id: str
    type: str
    resolve: Callable[[Any], None]
    reject: Callable[[BaseException], None]
    deadline: float
    timer: asyncio.TimerHandle | None = None


class PendingRequests:
    """In-flight requests keyed by correlation id.

    Must only be touched from the owning event loop. Every entry completes
    exactly once: by ``resolve``/``reject`` on a matching reply, or by its
    deadline timer, whichever pops it first.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, req_id: object) -> bool:
        return req_id in self._entries

    def get(self, req_id: str) -> PendingRequest | None:
        return self._entries.get(req_id)

    def add(
        self,
        loop: asyncio.AbstractEventLoop,
        req_id: str,
        req_type: str,
        *,
        timeout: float,
        resolve: Callable[[Any], None],
        reject: Callable[[BaseException], None],
    ) -> PendingRequest:
        timeout = max(0.0, float(timeout))
        entry = PendingRequest(
            id=req_id,
            type=req_type,
            resolve=resolve,
            reject=reject,
            deadline=loop.time() + timeout,
        )
        self._entries[req_id] = entry
        entry.timer = loop.call_later(timeout, self._expire, req_id)
        return entry

    def resolve(self, req_id: str, value: Any) -> bool:
        entry = self._take(req_id)
        if entry is None:
            return False
        self._complete(entry, entry.resolve, value)
        return True

    def reject(self, req_id: str, exc: BaseException) -> bool:
        entry = self._take(req_id)
        if entry is None:
            return False
        self._complete(entry, entry.reject, exc)
        return True

    def discard(self, req_id: str) -> None:
        self._take(req_id)

    def fail_all(self, exc: BaseException) -> int:
        ids = list(self._entries)
        for req_id in ids:
            self.reject(req_id, exc)
        return len(ids)

    def _take(self, req_id: str) -> PendingRequest | None:
        entry = self._entries.pop(req_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _expire(self, req_id: str) -> None:
        entry = self._entries.pop(req_id, None)
        if entry is None:
            return
        logger.info("request timed out id=%s type=%s", entry.id, entry.type)
        self._complete(entry, entry.reject, RequestTimeoutError(entry.type))

    @staticmethod
    def _complete(entry: PendingRequest, callback: Callable[[Any], None], value: Any) -> None:
        try:
            callback(value)
        except Exception:  # noqa: BLE001
            logger.exception("pending callback failed id=%s type=%s", entry.id, entry.type)


def future_callbacks(fut: asyncio.Future) -> tuple[Callable[[Any], None], Callable[[BaseException], None]]:
    """resolve/reject pair that settles an asyncio future at most once."""

    def _resolve(value: Any) -> None:
        if not fut.done():
            fut.set_result(value)

    def _reject(exc: BaseException) -> None:
        if not fut.done():
            fut.set_exception(exc)

    return _resolve, _reject


__all__ = ["PendingRequest", "PendingRequests", "future_callbacks"]
