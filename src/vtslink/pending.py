"""PendingCallTable — correlates inbound responses with the calls awaiting them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from uuid import uuid4

from .errors import RequestTimeoutError
from .models import ResponseEnvelope
from .timers import TimerRegistry

logger = logging.getLogger(__name__)


@dataclass
class PendingCall:
    request_id: str
    future: asyncio.Future[ResponseEnvelope]
    timer: asyncio.TimerHandle | None = None


class PendingCallTable:
    """In-flight requests keyed by request id.

    Every entry is settled at most once: whichever of response, rejection or
    timeout reaches the table first wins and removes the entry; anything that
    arrives later for the same id is dropped.
    """

    def __init__(self, timers: TimerRegistry) -> None:
        self._timers = timers
        self._calls: dict[str, PendingCall] = {}

    def new_request_id(self) -> str:
        while True:
            request_id = uuid4().hex
            if request_id not in self._calls:
                return request_id

    def register(
        self, request_id: str, timeout: float
    ) -> asyncio.Future[ResponseEnvelope]:
        if request_id in self._calls:
            raise ValueError(f"request id already pending: {request_id}")
        future: asyncio.Future[ResponseEnvelope] = (
            asyncio.get_running_loop().create_future()
        )
        call = PendingCall(request_id=request_id, future=future)
        call.timer = self._timers.schedule(timeout, self._expire, request_id)
        self._calls[request_id] = call
        return future

    def resolve(self, request_id: str | None, response: ResponseEnvelope) -> bool:
        call = self._pop(request_id)
        if call is None:
            logger.debug("Dropping response for unknown request %s", request_id)
            return False
        call.future.set_result(response)
        return True

    def reject(self, request_id: str | None, error: BaseException) -> bool:
        call = self._pop(request_id)
        if call is None:
            return False
        call.future.set_exception(error)
        return True

    def discard(self, request_id: str) -> None:
        """Forget an entry without settling it (its caller has gone away)."""
        call = self._pop(request_id)
        if call is not None:
            call.future.cancel()

    def drain_all(self, error: BaseException) -> int:
        """Reject every pending call with *error*. Returns how many there were."""
        calls = list(self._calls.values())
        self._calls.clear()
        for call in calls:
            self._timers.cancel(call.timer)
            if not call.future.done():
                call.future.set_exception(error)
        if calls:
            logger.debug("Rejected %d pending call(s): %s", len(calls), error)
        return len(calls)

    def _expire(self, request_id: str) -> None:
        if request_id in self._calls:
            logger.warning("Request %s timed out", request_id)
        self.reject(request_id, RequestTimeoutError("Request timeout"))

    def _pop(self, request_id: str | None) -> PendingCall | None:
        if request_id is None:
            return None
        call = self._calls.pop(request_id, None)
        if call is None:
            return None
        self._timers.cancel(call.timer)
        if call.future.done():
            # Caller cancelled while waiting; nothing left to settle.
            return None
        return call

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)
