"""Shared fixtures: an in-memory transport and a scripted API peer."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio

from vtslink.connection import PluginConnection
from vtslink.models import API_NAME, EndpointConfig, Timings
from vtslink.token_store import MemoryTokenStore
from vtslink.transport import TransportListener, TransportSession, TransportState

FAST = Timings(
    request_timeout=0.2,
    reconnect_delay=0.05,
    liveness_retry_delay=0.05,
    auth_retry_delay=0.1,
    requeue_delay=0.001,
)

ENDPOINT = EndpointConfig(
    address="ws://vts.test:8001",
    plugin_name="Test Plugin",
    plugin_developer="Test Dev",
    store="test",
)


def reply(request: dict[str, Any], message_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiName": API_NAME,
        "apiVersion": "1.0",
        "timestamp": 1700000000000,
        "messageType": message_type,
        "requestID": request["requestID"],
        "data": data,
    }


def api_error(request_id: str | None, code: int, message: str = "failed") -> dict[str, Any]:
    frame: dict[str, Any] = {
        "apiName": API_NAME,
        "apiVersion": "1.0",
        "timestamp": 1700000000000,
        "messageType": "APIError",
        "data": {"errorID": code, "message": message},
    }
    if request_id is not None:
        frame["requestID"] = request_id
    return frame


class FakeVTS:
    """Answers requests the way the app does once the plugin is approved."""

    def __init__(self, *, active: bool = True, grant: str = "granted-token") -> None:
        self.active = active
        self.grant = grant
        self.valid_tokens = {grant}
        self.requests: list[dict[str, Any]] = []
        self.silent: set[str] = set()
        self.handlers: dict[str, Callable[[dict[str, Any]], dict[str, Any] | None]] = {}

    def types(self) -> list[str]:
        return [r["messageType"] for r in self.requests]

    def __call__(self, request: dict[str, Any]) -> dict[str, Any] | None:
        self.requests.append(request)
        message_type = request["messageType"]
        if message_type in self.silent:
            return None
        if message_type in self.handlers:
            return self.handlers[message_type](request)
        if message_type == "APIStateRequest":
            return reply(request, "APIStateResponse", {"active": self.active})
        if message_type == "AuthenticationTokenRequest":
            return reply(
                request, "AuthenticationTokenResponse", {"authenticationToken": self.grant}
            )
        if message_type == "AuthenticationRequest":
            ok = request["data"]["authenticationToken"] in self.valid_tokens
            return reply(
                request,
                "AuthenticationResponse",
                {"authenticated": ok, "reason": "ok" if ok else "token rejected"},
            )
        return reply(
            request,
            message_type.replace("Request", "Response"),
            {"echo": request.get("data")},
        )


class FakeTransport(TransportSession):
    """TransportSession driven by the test instead of a socket."""

    def __init__(self, url: str, peer: FakeVTS | None = None, *, auto_open: bool = True) -> None:
        super().__init__(url)
        self.peer = peer
        self.auto_open = auto_open
        self.sent: list[dict[str, Any]] = []
        self.closed_explicitly = False
        self.fail_send: BaseException | None = None

    def open(self, listener: TransportListener) -> None:
        self._listener = listener
        self._state = TransportState.CONNECTING
        if self.auto_open:
            asyncio.get_running_loop().call_soon(self.simulate_open)

    async def send(self, frame: str) -> None:
        if self._state is not TransportState.OPEN:
            raise ConnectionError("transport is not open")
        if self.fail_send is not None:
            raise self.fail_send
        message = json.loads(frame)
        self.sent.append(message)
        if self.peer is not None:
            answer = self.peer(message)
            if answer is not None:
                asyncio.get_running_loop().call_soon(self.feed, answer)

    async def close(self) -> None:
        self.closed_explicitly = True
        self.simulate_close()

    def simulate_open(self) -> None:
        if self._state is not TransportState.CONNECTING:
            return
        self._state = TransportState.OPEN
        self._emit("on_open")

    def feed(self, frame: dict[str, Any] | str | bytes) -> None:
        if self._state is not TransportState.OPEN:
            return
        raw = frame if isinstance(frame, (str, bytes)) else json.dumps(frame)
        self._emit("on_message", raw)
        if self._abort_reason is not None:
            self.simulate_close()

    def simulate_error(self, exc: BaseException) -> None:
        self._emit("on_error", exc)

    def simulate_close(self) -> None:
        if self._state is TransportState.CLOSED:
            return
        self._state = TransportState.CLOSED
        self._emit("on_close")


class RecordingStore(MemoryTokenStore):
    def __init__(self, token: str | None = None, scope: str = ENDPOINT.store) -> None:
        super().__init__()
        self.sets: list[tuple[str, str | None, str]] = []
        self.fail_set: BaseException | None = None
        if token is not None:
            self._data[scope] = {"token": token}

    async def set(self, key: str, value: str | None, scope: str) -> None:
        self.sets.append((key, value, scope))
        if self.fail_set is not None:
            raise self.fail_set
        await super().set(key, value, scope)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def peer() -> FakeVTS:
    return FakeVTS()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def transports() -> list[FakeTransport]:
    return []


@pytest.fixture
def transport_factory(peer: FakeVTS, transports: list[FakeTransport]):
    def _make(url: str) -> FakeTransport:
        transport = FakeTransport(url, peer)
        transports.append(transport)
        return transport

    return _make


@pytest_asyncio.fixture
async def conn(transport_factory, store):
    connection = PluginConnection(
        ENDPOINT, store, timings=FAST, transport_factory=transport_factory
    )
    yield connection
    await connection.close()
