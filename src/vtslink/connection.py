"""PluginConnection — one shared, authenticated connection to the API.

Callers attach to express interest and detach when done; the transport is
open exactly while at least one caller is attached. Attached callers share
``call()`` and receive every status change.

Usage::

    conn = PluginConnection(endpoint, FileTokenStore())
    await conn.attach("my-flow", on_status=print)
    await conn.wait_until_ready(30)
    response = await conn.call("CurrentModelRequest")
    await conn.detach("my-flow")

All state is owned by this object and mutated only from the event loop that
runs it: transport events arrive through ``on_open`` / ``on_message`` /
``on_error`` / ``on_close`` and nothing else touches the socket.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any

from . import protocol
from .auth import Authenticator
from .errors import (
    APIError,
    DisconnectedError,
    InvalidEndpointError,
    NotReadyError,
    ProtocolError,
    SendFailedError,
)
from .models import (
    ConnectionStatus,
    EndpointConfig,
    ResponseEnvelope,
    StatusReport,
    Timings,
)
from .pending import PendingCallTable
from .timers import TimerRegistry
from .token_store import TokenStore
from .transport import TransportSession, TransportState

logger = logging.getLogger(__name__)

StatusCallback = Callable[[StatusReport], None]
TransportFactory = Callable[[str], TransportSession]


class PluginConnection:
    def __init__(
        self,
        endpoint: EndpointConfig,
        token_store: TokenStore,
        *,
        timings: Timings | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timings = timings or Timings()
        self._transport_factory = transport_factory or self._default_transport
        self._transport: TransportSession | None = None
        self._subscribers: dict[str, StatusCallback | None] = {}
        self._timers = TimerRegistry()
        self._pending = PendingCallTable(self._timers)
        self._auth = Authenticator(
            self, token_store, endpoint, self._timers, self.timings
        )
        self._status = StatusReport.of(ConnectionStatus.DISCONNECTED)
        self._ready = asyncio.Event()

    def _default_transport(self, url: str) -> TransportSession:
        return TransportSession(url, open_timeout=self.timings.open_timeout)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> StatusReport:
        return self._status

    @property
    def subscribers(self) -> list[str]:
        return list(self._subscribers)

    @property
    def transport(self) -> TransportSession | None:
        return self._transport

    @property
    def pending(self) -> PendingCallTable:
        return self._pending

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    @property
    def authenticator(self) -> Authenticator:
        return self._auth

    @property
    def is_ready(self) -> bool:
        return self._status.status is ConnectionStatus.READY

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Wait for the handshake to complete. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    async def attach(
        self, caller_id: str, on_status: StatusCallback | None = None
    ) -> None:
        if caller_id in self._subscribers:
            return
        self._subscribers[caller_id] = on_status
        logger.debug(
            "Caller %s attached (%d subscriber(s))", caller_id, len(self._subscribers)
        )
        if on_status is not None:
            self._notify(caller_id, on_status, self._status)
        transport = self._transport
        if transport is None or transport.state is TransportState.CLOSED:
            self._connect()

    async def detach(self, caller_id: str) -> None:
        if self._subscribers.pop(caller_id, _MISSING) is _MISSING:
            return
        logger.debug(
            "Caller %s detached (%d subscriber(s))", caller_id, len(self._subscribers)
        )
        if not self._subscribers:
            await self._shutdown()

    async def close(self) -> None:
        """Host-level teardown: drop every subscriber and close the transport."""
        self._subscribers.clear()
        await self._shutdown()

    async def __aenter__(self) -> PluginConnection:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def call(
        self, request_type: str, data: Any = None, timeout: float | None = None
    ) -> ResponseEnvelope:
        """Send one request and wait for its response envelope.

        Raises ``NotReadyError`` when no transport is open, ``RequestTimeoutError``,
        ``SendFailedError`` or ``DisconnectedError`` for local failures and
        ``APIError`` when the API answers with an error.
        """
        transport = self._transport
        if transport is None or not transport.is_ready:
            raise NotReadyError("Client not ready")

        timeout = self.timings.request_timeout if timeout is None else timeout
        request_id = self._pending.new_request_id()
        frame = protocol.build_request(request_type, data, request_id=request_id)
        future = self._pending.register(request_id, timeout)
        try:
            try:
                await transport.send(frame)
            except Exception as exc:
                logger.warning("Sending %s failed: %s", request_type, exc)
                self._pending.reject(
                    request_id, SendFailedError("Error sending request", exc)
                )
            return await future
        finally:
            self._pending.discard(request_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def report_status(
        self, status: ConnectionStatus, text: str | None = None
    ) -> None:
        report = StatusReport.of(status, text)
        self._status = report
        if status is ConnectionStatus.READY:
            self._ready.set()
        else:
            self._ready.clear()
        logger.info("Status -> %s", report.text)
        for caller_id, callback in list(self._subscribers.items()):
            if callback is not None:
                self._notify(caller_id, callback, report)

    @staticmethod
    def _notify(caller_id: str, callback: StatusCallback, report: StatusReport) -> None:
        try:
            callback(report)
        except Exception:
            logger.exception("Status callback for %s failed", caller_id)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def on_open(self) -> None:
        self.report_status(ConnectionStatus.CONNECTED)
        self._auth.start()

    def on_error(self, exc: BaseException) -> None:
        if isinstance(exc, InvalidEndpointError):
            logger.error("Endpoint %s is not usable: %s", self.endpoint.address, exc)
            self.report_status(ConnectionStatus.ERROR, "invalid config")
            self._drop_transport()
            return
        logger.warning("Transport error: %s", exc)
        self.report_status(ConnectionStatus.ERROR)

    def on_message(self, raw: str | bytes) -> None:
        try:
            response = protocol.parse_response(raw)
        except ProtocolError as exc:
            logger.error("Protocol violation, dropping connection: %s", exc)
            if self._transport is not None:
                self._transport.abort(str(exc))
            return

        if response.is_error:
            error = APIError(response)
            self._pending.reject(response.request_id, error)
            self._auth.handle_error_code(error.code)
        else:
            self._pending.resolve(response.request_id, response)

    def on_close(self) -> None:
        self.report_status(ConnectionStatus.DISCONNECTED)
        self._pending.drain_all(DisconnectedError("Websocket disconnected"))
        self._auth.stop()
        self._drop_transport()
        if self._subscribers:
            logger.info(
                "Reconnecting to %s in %.0fs",
                self.endpoint.address,
                self.timings.reconnect_delay,
            )
            self._timers.schedule(self.timings.reconnect_delay, self._connect)

    # ------------------------------------------------------------------
    # Connect / shutdown
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        if not self._subscribers:
            return
        transport = self._transport
        if transport is not None and transport.state is not TransportState.CLOSED:
            return
        self.report_status(ConnectionStatus.CONNECTING)
        transport = self._transport_factory(self.endpoint.address)
        self._transport = transport
        transport.open(self)

    def _drop_transport(self) -> None:
        if self._transport is not None:
            self._transport.detach_listener()
            self._transport = None

    async def _shutdown(self) -> None:
        # Listener detaches before close so on_close cannot schedule a reconnect.
        transport = self._transport
        self._drop_transport()
        self._pending.drain_all(DisconnectedError("Websocket disconnected"))
        self._auth.stop()
        self._timers.cancel_all()
        self.report_status(ConnectionStatus.DISCONNECTED)
        if transport is not None:
            logger.info("Closing connection to %s", self.endpoint.address)
            await transport.close()


_MISSING = object()
