import asyncio

import pytest

from vtslink.errors import DisconnectedError, RequestTimeoutError
from vtslink.models import API_NAME, ResponseEnvelope
from vtslink.pending import PendingCallTable
from vtslink.timers import TimerRegistry


def _response(request_id: str) -> ResponseEnvelope:
    return ResponseEnvelope.model_validate(
        {"apiName": API_NAME, "messageType": "TestResponse", "requestID": request_id}
    )


@pytest.fixture
def table() -> PendingCallTable:
    return PendingCallTable(TimerRegistry())


@pytest.mark.asyncio
async def test_resolve_settles_future_and_removes_entry(table):
    future = table.register("a", timeout=1.0)
    assert "a" in table

    assert table.resolve("a", _response("a")) is True
    assert (await future).request_id == "a"
    assert len(table) == 0


@pytest.mark.asyncio
async def test_unknown_and_duplicate_resolutions_are_dropped(table):
    future = table.register("a", timeout=1.0)
    assert table.resolve("missing", _response("missing")) is False
    assert table.resolve(None, _response("x")) is False
    assert table.reject("missing", RuntimeError("x")) is False

    table.resolve("a", _response("a"))
    assert table.resolve("a", _response("a")) is False
    assert table.reject("a", RuntimeError("late")) is False
    assert (await future).request_id == "a"


@pytest.mark.asyncio
async def test_timeout_rejects_and_clears_entry(table):
    future = table.register("slow", timeout=0.02)
    with pytest.raises(RequestTimeoutError):
        await future
    assert len(table) == 0
    # A response arriving after the timeout is ignored.
    assert table.resolve("slow", _response("slow")) is False


@pytest.mark.asyncio
async def test_response_wins_over_later_timeout():
    timers = TimerRegistry()
    table = PendingCallTable(timers)
    future = table.register("a", timeout=0.02)
    table.resolve("a", _response("a"))
    assert timers.pending_timers == 0
    await asyncio.sleep(0.04)
    assert future.result().request_id == "a"


@pytest.mark.asyncio
async def test_duplicate_register_is_refused(table):
    table.register("a", timeout=1.0)
    with pytest.raises(ValueError):
        table.register("a", timeout=1.0)


@pytest.mark.asyncio
async def test_new_request_id_avoids_pending_ids(table, monkeypatch):
    ids = iter(["dup", "dup", "fresh"])

    class _Fake:
        def __init__(self, value):
            self.hex = value

    table.register("dup", timeout=1.0)
    monkeypatch.setattr("vtslink.pending.uuid4", lambda: _Fake(next(ids)))
    assert table.new_request_id() == "fresh"


@pytest.mark.asyncio
async def test_drain_all_rejects_everything(table):
    futures = [table.register(str(i), timeout=1.0) for i in range(3)]
    assert table.drain_all(DisconnectedError("gone")) == 3
    assert len(table) == 0
    for future in futures:
        with pytest.raises(DisconnectedError):
            await future


@pytest.mark.asyncio
async def test_drain_all_on_empty_table(table):
    assert table.drain_all(DisconnectedError("gone")) == 0


@pytest.mark.asyncio
async def test_discard_cancels_without_settling():
    timers = TimerRegistry()
    table = PendingCallTable(timers)
    future = table.register("a", timeout=1.0)
    table.discard("a")
    assert future.cancelled()
    assert len(table) == 0
    assert timers.pending_timers == 0
