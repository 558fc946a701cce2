"""RequestRunner — turns incoming messages into API calls on a shared connection.

Each runner is one attached caller. ``handle(message)`` works out the request
type and payload for that message, issues the call and returns a pair
``(ok, err)`` where exactly one side is set:

  - success   → ``{**message, "topic": <messageType>, "payload": <data>}``
  - APIError  → ``{**message, "topic": "APIError", "payload": <error data>}``
  - otherwise → ``{**message, "topic": "ClientError", "payload": serialize_error(exc)}``
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any
from uuid import uuid4

from .connection import PluginConnection, StatusCallback
from .errors import APIError, ClientError

logger = logging.getLogger(__name__)

Message = dict[str, Any]
Result = tuple[Message | None, Message | None]


def serialize_error(exc: BaseException) -> dict[str, Any]:
    """Plain-JSON description of an exception, following ``__cause__``."""
    out: dict[str, Any] = {"name": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, APIError):
        out["code"] = exc.code
    cause = exc.__cause__
    if cause is not None and cause is not exc:
        out["cause"] = serialize_error(cause)
    return out


def _evaluate(source: Any, message: Message) -> Any:
    return source(message) if callable(source) else source


class RequestRunner:
    """Attached caller that maps messages to API requests.

    ``request`` and ``payload`` are either fixed values or callables taking
    the incoming message, e.g. ``lambda msg: msg["payload"]``.
    """

    def __init__(
        self,
        connection: PluginConnection,
        request: str | Callable[[Message], str],
        payload: Any = None,
        *,
        caller_id: str | None = None,
        on_status: StatusCallback | None = None,
        timeout: float | None = None,
    ) -> None:
        self.connection = connection
        self.request = request
        self.payload = payload
        self.caller_id = caller_id or f"runner-{uuid4().hex[:8]}"
        self.timeout = timeout
        self._on_status = on_status

    async def start(self) -> None:
        await self.connection.attach(self.caller_id, self._on_status)

    async def aclose(self) -> None:
        await self.connection.detach(self.caller_id)

    async def __aenter__(self) -> RequestRunner:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def handle(self, message: Message) -> Result:
        out = dict(message)
        try:
            request_type = _evaluate(self.request, message)
            if not isinstance(request_type, str) or not request_type:
                raise ClientError(f"invalid request type: {request_type!r}")
            result = await self.connection.call(
                request_type, _evaluate(self.payload, message), self.timeout
            )
        except APIError as exc:
            logger.info("[%s] API error %s", self.caller_id, exc)
            out["topic"] = exc.original.message_type
            out["payload"] = exc.original.data
            return None, out
        except Exception as exc:
            logger.warning("[%s] request failed: %s", self.caller_id, exc)
            out["topic"] = "ClientError"
            out["payload"] = serialize_error(exc)
            return None, out

        out["topic"] = result.message_type
        out["payload"] = result.data
        return out, None
