"""Correlated request/response tracking with per-request deadlines"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RequestTimeoutError(TimeoutError):
    """Raised into a pending request's future when no response arrives in time."""


def _mark_retrieved(future: asyncio.Future) -> None:
    # Expired requests may have no awaiter; mark their exception as seen.
    if not future.cancelled():
        future.exception()


@dataclass
class PendingRequest(Generic[T]):
    id: str
    created_at: float
    future: asyncio.Future
    timeout_handle: asyncio.TimerHandle
    context: dict[str, Any] = field(default_factory=dict)


class PendingRequests(Generic[T]):
    """Outstanding requests of one kind (uploads, renames, URL edits).

    Each registered request gets a correlation id, a future for its answer, and a
    timer that discards the entry and fails the future with RequestTimeoutError.
    """

    def __init__(self, kind: str, timeout: float) -> None:
        self.kind = kind
        self.timeout = timeout
        self._requests: dict[str, PendingRequest[T]] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests

    def new_id(self) -> str:
        return f"{self.kind}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"

    def register(self, request_id: str | None = None, **context: Any) -> PendingRequest[T]:
        """Track a new request. Must be called from inside a running event loop."""
        loop = asyncio.get_running_loop()
        request_id = request_id or self.new_id()
        future = loop.create_future()
        future.add_done_callback(_mark_retrieved)
        handle = loop.call_later(self.timeout, self._expire, request_id)
        request = PendingRequest(id=request_id, created_at=time.monotonic(), future=future,
                                 timeout_handle=handle, context=context)
        self._requests[request_id] = request
        return request

    def get(self, request_id: str) -> PendingRequest[T] | None:
        return self._requests.get(request_id)

    def resolve(self, request_id: str, value: T) -> PendingRequest[T] | None:
        """Deliver a response. Returns the request, or None when it is unknown or already expired."""
        request = self._requests.pop(request_id, None)
        if request is None:
            return None
        request.timeout_handle.cancel()
        if not request.future.done():
            request.future.set_result(value)
        return request

    def reject(self, request_id: str, error: BaseException) -> PendingRequest[T] | None:
        request = self._requests.pop(request_id, None)
        if request is None:
            return None
        request.timeout_handle.cancel()
        if not request.future.done():
            request.future.set_exception(error)
        return request

    def _expire(self, request_id: str) -> None:
        request = self._requests.pop(request_id, None)
        if request is None:
            return
        LOGGER.warning("%s request %s timed out after %.1fs, discarding", self.kind, request_id, self.timeout)
        if not request.future.done():
            request.future.set_exception(RequestTimeoutError(f"{self.kind} request {request_id} timed out"))

    def clear(self) -> None:
        """Drop every pending request, cancelling timers and futures."""
        for request in self._requests.values():
            request.timeout_handle.cancel()
            request.future.cancel()
        self._requests.clear()
