from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("mcp.agentmd.pending")


class BridgeDisconnected(Exception):
    pass


class RequestTimeout(Exception):
    pass


@dataclass(slots=True)
class PendingRequest:
    request_id: int
    method: str
    future: asyncio.Future
    created_at: float
    timer: asyncio.TimerHandle | None = None


class PendingRequests:
    """Outbound requests awaiting a response, keyed by a strictly increasing id.

    Entries leave the table exactly once: on a matching response, on timeout
    (rejected with RequestTimeout) or on teardown (rejected with the given error).
    Late responses for removed ids are reported as unmatched.
    """

    def __init__(self, *, timeout: float) -> None:
        self.timeout = float(timeout)
        self._next_id = 1
        self._entries: dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def open(self, method: str = "") -> PendingRequest:
        loop = asyncio.get_running_loop()
        request_id = self._next_id
        self._next_id += 1
        entry = PendingRequest(
            request_id=request_id,
            method=method,
            future=loop.create_future(),
            created_at=time.monotonic(),
        )
        entry.timer = loop.call_later(self.timeout, self._expire, request_id)
        self._entries[request_id] = entry
        return entry

    def _pop(self, request_id: Any) -> PendingRequest | None:
        if isinstance(request_id, bool) or not isinstance(request_id, int):
            return None
        entry = self._entries.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def resolve(self, request_id: Any, message: Any) -> bool:
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_result(message)
        return True

    def reject(self, request_id: Any, exc: BaseException) -> bool:
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(exc)
        return True

    def reject_all(self, exc: BaseException) -> int:
        ids = list(self._entries)
        for request_id in ids:
            self.reject(request_id, exc)
        return len(ids)

    def _expire(self, request_id: int) -> None:
        entry = self._entries.get(request_id)
        if entry is None:
            return
        age = time.monotonic() - entry.created_at
        logger.info("request_timeout id=%d method=%s age=%.2fs", request_id, entry.method, age)
        self.reject(request_id, RequestTimeout(f"Request timeout: {entry.method or request_id}"))
