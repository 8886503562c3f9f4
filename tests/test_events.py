from __future__ import annotations

import asyncio

import pytest

from pywweb.types import ConnectionState
from pywweb.util.events import EventChannel, SessionEvents


@pytest.mark.asyncio
async def test_listeners_run_in_order_and_are_awaited() -> None:
    ch: EventChannel[[str]] = EventChannel("qr")
    log: list[str] = []

    async def slow(v: str) -> None:
        log.append(f"slow:{v}")
        await asyncio.sleep(0.01)
        log.append("slow:done")

    def fast(v: str) -> None:
        log.append(f"fast:{v}")

    ch.subscribe(slow)
    ch.subscribe(fast)

    assert await ch.emit("a") is True
    assert log == ["slow:a", "slow:done", "fast:a"]


@pytest.mark.asyncio
async def test_listener_returning_future_is_awaited() -> None:
    ch: EventChannel[[str]] = EventChannel("code")
    loop = asyncio.get_running_loop()
    log: list[str] = []

    def deferred(v: str) -> asyncio.Future[None]:
        fut: asyncio.Future[None] = loop.create_future()
        fut.add_done_callback(lambda _f: log.append(f"deferred:{v}"))
        loop.call_later(0.01, fut.set_result, None)
        return fut

    ch.subscribe(deferred)
    ch.subscribe(lambda v: log.append(f"next:{v}"))

    await ch.emit("c")
    assert log == ["deferred:c", "next:c"]


@pytest.mark.asyncio
async def test_emit_without_listeners() -> None:
    assert await EventChannel("ready").emit() is False


@pytest.mark.asyncio
async def test_unsubscribe() -> None:
    ch: EventChannel[[int]] = EventChannel("loading_progress")
    seen: list[int] = []
    ch.subscribe(seen.append)
    await ch.emit(1)
    ch.unsubscribe(seen.append)
    ch.unsubscribe(seen.append)
    await ch.emit(2)
    assert seen == [1]
    assert len(ch) == 0


@pytest.mark.asyncio
async def test_wait_for_future_predicate() -> None:
    ch: EventChannel[[ConnectionState]] = EventChannel("auth_state_changed")
    fut = ch.wait_for_future(predicate=lambda s: not s.is_loading)

    await ch.emit(ConnectionState.OPENING)
    assert not fut.done()

    await ch.emit(ConnectionState.UNPAIRED)
    assert fut.result() is ConnectionState.UNPAIRED


@pytest.mark.asyncio
async def test_wait_for_timeout_removes_waiter() -> None:
    ch: EventChannel[[str]] = EventChannel("code")
    with pytest.raises(TimeoutError):
        await ch.wait_for(timeout_s=0.01)
    assert await ch.emit("x") is False


def test_session_events_lookup() -> None:
    events = SessionEvents()
    assert events.names() == [
        "qr",
        "code",
        "authenticated",
        "ready",
        "auth_state_changed",
        "loading_progress",
        "disconnected",
    ]
    assert events.get("qr") is events.qr
    assert events.get("qr") is not SessionEvents().qr
    with pytest.raises(KeyError):
        events.get("message")
