"""TransportSession — one WebSocket connection to the API endpoint.

The session owns the socket and a reader task; it never interprets frames.
Lifecycle events are delivered to a single listener object:

    on_open()          — the socket is connected and ready to send
    on_message(raw)    — one inbound frame (str or bytes)
    on_error(exc)      — a transport-level failure
    on_close()         — the socket is gone (not sent after detach_listener())

An endpoint address that cannot be parsed produces ``on_error`` with an
``InvalidEndpointError`` and no ``on_close``: there is nothing to reconnect to.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException

from .errors import InvalidEndpointError

logger = logging.getLogger(__name__)

PROTOCOL_ERROR_CLOSE_CODE = 1002


class TransportListener(Protocol):
    def on_open(self) -> None: ...

    def on_message(self, raw: str | bytes) -> None: ...

    def on_error(self, exc: BaseException) -> None: ...

    def on_close(self) -> None: ...


class TransportState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class TransportSession:
    """Single-use connection: once closed, build a new session to reconnect."""

    def __init__(self, url: str, *, open_timeout: float | None = 10.0) -> None:
        self.url = url
        self._open_timeout = open_timeout
        self._ws: Any = None  # websockets ClientConnection
        self._task: asyncio.Task[None] | None = None
        self._listener: TransportListener | None = None
        self._state = TransportState.CLOSED
        self._abort_reason: str | None = None

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is TransportState.OPEN

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, listener: TransportListener) -> None:
        """Start connecting in the background."""
        if self._task is not None:
            raise RuntimeError("transport session already opened")
        self._listener = listener
        self._state = TransportState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"vtslink-transport:{self.url}"
        )

    def detach_listener(self) -> None:
        """Stop delivering events. Must precede an explicit close()."""
        self._listener = None

    def abort(self, reason: str) -> None:
        """Close from inside on_message once the current frame is handled."""
        if self._abort_reason is None:
            self._abort_reason = reason

    async def close(self) -> None:
        ws, task = self._ws, self._task
        if self._state is not TransportState.CLOSED:
            self._state = TransportState.CLOSING
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as exc:
                logger.debug("Error while closing %s: %s", self.url, exc)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ws = None
        self._state = TransportState.CLOSED

    async def send(self, frame: str) -> None:
        if self._ws is None or self._state is not TransportState.OPEN:
            raise ConnectionError("transport is not open")
        await self._ws.send(frame)

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        logger.info("Connecting to %s", self.url)
        try:
            ws = await websockets.connect(self.url, open_timeout=self._open_timeout)
        except InvalidURI as exc:
            logger.error("Invalid endpoint address %s: %s", self.url, exc)
            self._state = TransportState.CLOSED
            self._emit("on_error", InvalidEndpointError(str(exc), exc))
            return
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.warning("Could not connect to %s: %s", self.url, exc)
            self._state = TransportState.CLOSED
            self._emit("on_error", exc)
            self._emit("on_close")
            return

        self._ws = ws
        self._state = TransportState.OPEN
        logger.info("Connected to %s", self.url)
        try:
            self._emit("on_open")
            async for raw in ws:
                self._emit("on_message", raw)
                if self._abort_reason is not None:
                    logger.warning(
                        "Closing %s: %s", self.url, self._abort_reason
                    )
                    await ws.close(PROTOCOL_ERROR_CLOSE_CODE, self._abort_reason)
                    break
        except ConnectionClosed as exc:
            logger.info("Connection to %s closed: %s", self.url, exc)
        except (OSError, WebSocketException) as exc:
            logger.warning("Connection to %s failed: %s", self.url, exc)
            self._emit("on_error", exc)
        finally:
            self._ws = None
            self._state = TransportState.CLOSED
            self._emit("on_close")

    def _emit(self, event: str, *args: Any) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            getattr(listener, event)(*args)
        except Exception:
            logger.exception("Listener %s failed for %s", event, self.url)
