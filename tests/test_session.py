from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

import pywweb.session as session_mod
from pywweb.exceptions import (
    NotReadyError,
    PairingError,
    RemoteSessionError,
    SessionDisconnectedError,
)
from pywweb.media import MediaSendOptions, MessageMedia
from pywweb.remote import RemoteEventSink
from pywweb.session import SessionController, SessionPhase
from pywweb.session_config import SessionOptions
from pywweb.types import ConnectionState, DisconnectReason

Script = Callable[["FakeRemote"], Awaitable[None]]


class FakeRemote:
    def __init__(self, options: SessionOptions) -> None:
        self.options = options
        self.state = "UNPAIRED"
        self.synced = False
        self.sink: RemoteEventSink | None = None
        self.calls: list[str] = []
        self.closed = False
        self.open_error: Exception | None = None
        self.load_store_error: Exception | None = None
        self.after_open: Script | None = None
        self.on_start_qr: Script | None = None
        self.pairing_results: list[str | Exception] = []
        self.sent: list[tuple[str, Any, dict[str, Any]]] = []
        self.tasks: list[asyncio.Task[None]] = []

    async def open(self, sink: RemoteEventSink) -> None:
        self.sink = sink
        self.calls.append("open")
        if self.open_error is not None:
            raise self.open_error
        if self.after_open is not None:
            self.tasks.append(asyncio.create_task(self.after_open(self)))

    async def close(self) -> None:
        self.closed = True

    async def get_state(self) -> str:
        return self.state

    async def has_synced(self) -> bool:
        return self.synced

    async def start_qr(self) -> None:
        self.calls.append("start_qr")
        if self.on_start_qr is not None:
            await self.on_start_qr(self)

    async def refresh_qr(self) -> None:
        self.calls.append("refresh_qr")

    async def request_pairing_code(self, phone_number: str, show_notification: bool) -> str:
        self.calls.append(f"pair:{phone_number}:{show_notification}")
        res = self.pairing_results.pop(0)
        if isinstance(res, Exception):
            raise res
        return res

    async def load_store(self) -> None:
        self.calls.append("load_store")
        if self.load_store_error is not None:
            raise self.load_store_error

    async def send_message(self, chat_id: str, content: Any, options: dict[str, Any]) -> str:
        self.sent.append((chat_id, content, options))
        return "msg-1"

    async def pair(self) -> None:
        """Simulate the phone completing the link."""
        assert self.sink is not None
        self.state = "CONNECTED"
        await self.sink.on_state_changed("CONNECTED")
        self.synced = True
        await self.sink.on_synced()


class FakeFactory:
    def __init__(self, configure: Callable[[FakeRemote, int], None] | None = None) -> None:
        self.configure = configure
        self.created: list[FakeRemote] = []

    def __call__(self, options: SessionOptions) -> FakeRemote:
        remote = FakeRemote(options)
        if self.configure is not None:
            self.configure(remote, len(self.created))
        self.created.append(remote)
        return remote


def _record(c: SessionController) -> list[tuple[Any, ...]]:
    log: list[tuple[Any, ...]] = []
    for name in c.events.names():
        c.on(name, lambda *args, _n=name: log.append((_n, *args)))
    return log


def _controller(
    tmp_path: Path, factory: FakeFactory, **kwargs: Any
) -> SessionController:
    opts = SessionOptions(session_path=str(tmp_path / "session"), **kwargs)
    return SessionController(opts, remote_factory=factory)


@pytest.fixture
def delays(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    seen: list[float] = []

    async def fake_sleep(delay: float) -> None:
        seen.append(delay)
        await asyncio.sleep(0)

    monkeypatch.setattr(session_mod, "_sleep", fake_sleep)
    return seen


@pytest.mark.asyncio
async def test_qr_flow_reaches_ready_once(tmp_path: Path) -> None:
    async def scan(r: FakeRemote) -> None:
        assert r.sink is not None
        await r.sink.on_qr("qr-1")
        await r.pair()
        # A second sync notification must not fire `ready` again.
        await r.sink.on_synced()

    factory = FakeFactory(lambda r, _i: setattr(r, "on_start_qr", scan))
    c = _controller(tmp_path, factory)
    log = _record(c)

    await c.initialize()

    assert log == [
        ("qr", "qr-1"),
        ("auth_state_changed", ConnectionState.CONNECTED),
        ("authenticated",),
        ("ready",),
    ]
    assert factory.created[0].calls == ["open", "start_qr", "load_store"]
    assert c.is_ready
    assert c.phase is SessionPhase.READY
    assert c.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_state_sequence_events_in_order(tmp_path: Path) -> None:
    async def link(r: FakeRemote) -> None:
        assert r.sink is not None
        for state in ("OPENING", "PAIRING", "CONNECTED"):
            r.state = state
            await r.sink.on_state_changed(state)
        r.synced = True
        await r.sink.on_synced()
        await r.sink.on_synced()

    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "UNLAUNCHED"
        r.after_open = link

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)
    log = _record(c)

    await c.initialize()

    assert log == [
        ("auth_state_changed", ConnectionState.OPENING),
        ("auth_state_changed", ConnectionState.PAIRING),
        ("auth_state_changed", ConnectionState.CONNECTED),
        ("authenticated",),
        ("ready",),
    ]
    assert factory.created[0].calls == ["open", "load_store"]


@pytest.mark.asyncio
async def test_already_synced_session_is_ready_immediately(tmp_path: Path) -> None:
    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "CONNECTED"
        r.synced = True

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)
    log = _record(c)

    await c.initialize()

    assert log == [("authenticated",), ("ready",)]
    assert "start_qr" not in factory.created[0].calls


@pytest.mark.asyncio
async def test_waits_out_loading_state(tmp_path: Path) -> None:
    async def settle(r: FakeRemote) -> None:
        assert r.sink is not None
        r.state = "UNPAIRED"
        await r.sink.on_state_changed("UNPAIRED")

    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "OPENING"
        r.after_open = settle
        r.on_start_qr = FakeRemote.pair

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)
    log = _record(c)

    await c.initialize()

    assert log[0] == ("auth_state_changed", ConnectionState.UNPAIRED)
    assert factory.created[0].calls == ["open", "start_qr", "load_store"]
    assert c.is_ready


@pytest.mark.asyncio
async def test_ready_while_loading(tmp_path: Path) -> None:
    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "OPENING"
        r.after_open = FakeRemote.pair

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)

    await c.initialize()

    assert c.is_ready
    assert factory.created[0].calls == ["open", "load_store"]


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(
    tmp_path: Path, delays: list[float]
) -> None:
    session_dir = tmp_path / "session"
    session_dir.mkdir()
    (session_dir / "Local State").write_text("{}")

    factory = FakeFactory(lambda r, _i: setattr(r, "open_error", RemoteSessionError("")))
    c = _controller(tmp_path, factory)

    with pytest.raises(RemoteSessionError):
        await c.initialize()

    assert delays == [15.0, 30.0]
    assert len(factory.created) == 3
    assert factory.created[0].closed and factory.created[1].closed
    assert not session_dir.exists()


@pytest.mark.asyncio
async def test_transient_failure_then_success(tmp_path: Path, delays: list[float]) -> None:
    def configure(r: FakeRemote, i: int) -> None:
        if i == 0:
            r.open_error = RemoteSessionError("Error: CompanionHello rejected")
        else:
            r.state = "CONNECTED"
            r.synced = True

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)

    await c.initialize()

    assert delays == [15.0]
    assert c.remote is factory.created[1]
    assert c.is_ready


@pytest.mark.asyncio
async def test_other_failures_are_not_retried(tmp_path: Path, delays: list[float]) -> None:
    factory = FakeFactory(
        lambda r, _i: setattr(r, "open_error", RemoteSessionError("net::ERR_NAME_NOT_RESOLVED"))
    )
    c = _controller(tmp_path, factory)

    with pytest.raises(RemoteSessionError, match="ERR_NAME_NOT_RESOLVED"):
        await c.initialize()

    assert delays == []
    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_initialize_rejects_zero_attempts(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        await _controller(tmp_path, FakeFactory()).initialize(max_attempts=0)


@pytest.mark.asyncio
async def test_pairing_code_retries_rate_limit(tmp_path: Path, delays: list[float]) -> None:
    factory = FakeFactory(
        lambda r, _i: setattr(
            r,
            "pairing_results",
            [RemoteSessionError("CompanionHello"), RemoteSessionError("CompanionHello"), "ABCD-1234"],
        )
    )
    c = _controller(tmp_path, factory, pair_with_phone_number="5511999999999")
    codes: list[str] = []

    def on_code(code: str) -> None:
        codes.append(code)
        remote = factory.created[0]
        remote.state = "CONNECTED"
        remote.tasks.append(asyncio.create_task(remote.pair()))

    c.on("code", on_code)

    await c.initialize()

    assert codes == ["ABCD-1234"]
    assert delays == [5.0, 5.0]
    assert factory.created[0].calls.count("pair:5511999999999:True") == 3
    assert "start_qr" not in factory.created[0].calls
    assert c.is_ready


@pytest.mark.asyncio
async def test_pairing_code_is_refreshed_while_unpaired(
    tmp_path: Path, delays: list[float]
) -> None:
    factory = FakeFactory(lambda r, _i: setattr(r, "pairing_results", ["CODE-1", "CODE-2"]))
    c = _controller(
        tmp_path, factory, pair_with_phone_number="123", pairing_code_interval_s=60.0
    )
    codes: list[str] = []

    def on_code(code: str) -> None:
        codes.append(code)
        if len(codes) == 2:
            remote = factory.created[0]
            remote.tasks.append(asyncio.create_task(remote.pair()))

    c.on("code", on_code)

    await c.initialize()

    assert codes == ["CODE-1", "CODE-2"]
    assert delays[0] == 60.0
    assert c.is_ready


@pytest.mark.asyncio
async def test_pairing_code_gives_up(tmp_path: Path, delays: list[float]) -> None:
    factory = FakeFactory(
        lambda r, _i: setattr(r, "pairing_results", [RemoteSessionError("CompanionHello")] * 4)
    )
    c = _controller(tmp_path, factory, pair_with_phone_number="123")

    with pytest.raises(PairingError, match="^PAIRING_FAILED: "):
        await c.initialize(max_attempts=1)

    assert delays == [5.0, 5.0, 5.0]
    await c.close()
    assert factory.created[0].closed


@pytest.mark.asyncio
async def test_pairing_code_other_error_is_not_retried(
    tmp_path: Path, delays: list[float]
) -> None:
    factory = FakeFactory(
        lambda r, _i: setattr(r, "pairing_results", [RemoteSessionError("invalid phone")])
    )
    c = _controller(tmp_path, factory, pair_with_phone_number="123")

    with pytest.raises(PairingError):
        await c.initialize(max_attempts=1)
    assert delays == []


@pytest.mark.asyncio
async def test_request_pairing_code_needs_remote(tmp_path: Path) -> None:
    with pytest.raises(NotReadyError):
        await _controller(tmp_path, FakeFactory()).request_pairing_code("123")


@pytest.mark.asyncio
async def test_unpaired_idle_refreshes_qr(tmp_path: Path) -> None:
    async def scan(r: FakeRemote) -> None:
        assert r.sink is not None
        await r.sink.on_qr("qr-1")
        await r.sink.on_state_changed("UNPAIRED_IDLE")
        await r.pair()

    factory = FakeFactory(lambda r, _i: setattr(r, "on_start_qr", scan))
    await _controller(tmp_path, factory).initialize()

    assert factory.created[0].calls == ["open", "start_qr", "refresh_qr", "load_store"]


@pytest.mark.asyncio
async def test_max_qr_retries_disconnects(tmp_path: Path) -> None:
    async def rotate(r: FakeRemote) -> None:
        assert r.sink is not None
        for qr in ("q1", "q2", "q3"):
            await r.sink.on_qr(qr)

    factory = FakeFactory(lambda r, _i: setattr(r, "on_start_qr", rotate))
    c = _controller(tmp_path, factory, qr_max_retries=2)
    log = _record(c)

    with pytest.raises(SessionDisconnectedError) as ei:
        await c.initialize()

    assert ei.value.reason is DisconnectReason.MAX_QR_RETRIES
    assert log == [
        ("qr", "q1"),
        ("qr", "q2"),
        ("disconnected", DisconnectReason.MAX_QR_RETRIES),
    ]
    assert factory.created[0].closed
    assert c.remote is None
    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_terminal_state_fails_initialize(tmp_path: Path) -> None:
    async def conflict(r: FakeRemote) -> None:
        assert r.sink is not None
        await r.sink.on_state_changed("CONFLICT")

    factory = FakeFactory(lambda r, _i: setattr(r, "on_start_qr", conflict))
    c = _controller(tmp_path, factory)
    disconnected: list[DisconnectReason] = []
    c.on("disconnected", disconnected.append)

    with pytest.raises(SessionDisconnectedError) as ei:
        await c.initialize()

    assert ei.value.reason is DisconnectReason.CONFLICT
    assert disconnected == [DisconnectReason.CONFLICT]


async def _ready_controller(tmp_path: Path) -> tuple[SessionController, FakeRemote]:
    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "CONNECTED"
        r.synced = True

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)
    await c.initialize()
    return c, factory.created[0]


@pytest.mark.asyncio
async def test_logout_navigation_disconnects(tmp_path: Path) -> None:
    c, remote = await _ready_controller(tmp_path)
    log = _record(c)
    assert remote.sink is not None

    await remote.sink.on_offline_progress(42)
    await remote.sink.on_logout()
    await remote.sink.on_offline_progress(99)
    await remote.sink.on_navigated("https://web.whatsapp.com/")

    assert log == [("loading_progress", 42), ("disconnected", DisconnectReason.LOGOUT)]
    assert c.phase is SessionPhase.IDLE
    assert c.state is ConnectionState.UNLAUNCHED
    assert not c.is_ready


@pytest.mark.asyncio
async def test_post_logout_url_disconnects(tmp_path: Path) -> None:
    c, remote = await _ready_controller(tmp_path)
    disconnected: list[DisconnectReason] = []
    c.on("disconnected", disconnected.append)
    assert remote.sink is not None

    await remote.sink.on_navigated("https://web.whatsapp.com/")
    assert disconnected == []

    await remote.sink.on_navigated("https://web.whatsapp.com/?post_logout=1")
    assert disconnected == [DisconnectReason.LOGOUT]


@pytest.mark.asyncio
async def test_unknown_state_is_ignored(tmp_path: Path) -> None:
    c, remote = await _ready_controller(tmp_path)
    log = _record(c)
    assert remote.sink is not None

    await remote.sink.on_state_changed("SOMETHING_NEW")
    assert log == []
    assert c.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_send_message_requires_ready(tmp_path: Path) -> None:
    c = _controller(tmp_path, FakeFactory())
    with pytest.raises(NotReadyError):
        await c.send_message("123", "hello")


@pytest.mark.asyncio
async def test_send_message_with_media(tmp_path: Path) -> None:
    c, remote = await _ready_controller(tmp_path)

    media = MessageMedia.from_bytes(b"\x89PNG", "image/png", "a.png")
    msg_id = await c.send_message(
        "5511999999999", media=media, options=MediaSendOptions(caption="look")
    )

    assert msg_id == "msg-1"
    (chat_id, content, opts) = remote.sent[0]
    assert chat_id == "5511999999999@c.us"
    assert content == ""
    assert opts["caption"] == "look"
    assert opts["media"]["mimetype"] == "image/png"
    assert opts["media"]["data"] == media.data

    await c.send_message("1203630@g.us", "hi all")
    assert remote.sent[1][:2] == ("1203630@g.us", "hi all")


@pytest.mark.asyncio
async def test_context_manager_closes_remote(tmp_path: Path) -> None:
    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "CONNECTED"
        r.synced = True

    factory = FakeFactory(configure)
    async with _controller(tmp_path, factory) as c:
        await c.initialize()
        assert c.is_ready

    assert factory.created[0].closed
    assert c.remote is None
    assert not c.is_ready


def test_on_unknown_event(tmp_path: Path) -> None:
    with pytest.raises(KeyError):
        _controller(tmp_path, FakeFactory()).on("message", lambda: None)


@pytest.mark.asyncio
async def test_reinitialize_after_logout_closes_previous_remote(tmp_path: Path) -> None:
    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "CONNECTED"
        r.synced = True

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)
    await c.initialize()
    first = factory.created[0]
    assert first.sink is not None

    await first.sink.on_logout()
    await first.sink.on_navigated("https://web.whatsapp.com/?post_logout=1")
    assert not first.closed

    await c.initialize()

    assert first.closed
    assert c.remote is factory.created[1]
    assert not factory.created[1].closed
    assert c.is_ready


@pytest.mark.asyncio
async def test_fatal_open_error_tears_down(tmp_path: Path) -> None:
    factory = FakeFactory(
        lambda r, _i: setattr(r, "open_error", RemoteSessionError("net::ERR_FAILED"))
    )
    c = _controller(tmp_path, factory)

    with pytest.raises(RemoteSessionError, match="ERR_FAILED"):
        await c.initialize()

    assert factory.created[0].closed
    assert c.remote is None
    assert c.phase is SessionPhase.IDLE


@pytest.mark.asyncio
async def test_unknown_initial_state_tears_down(tmp_path: Path) -> None:
    factory = FakeFactory(lambda r, _i: setattr(r, "state", "BOGUS"))
    c = _controller(tmp_path, factory)

    with pytest.raises(ValueError):
        await c.initialize()

    assert factory.created[0].closed
    assert c.remote is None


@pytest.mark.asyncio
async def test_failed_ready_transition_resets_phase(tmp_path: Path) -> None:
    def configure(r: FakeRemote, _i: int) -> None:
        r.state = "CONNECTED"
        r.synced = True
        r.load_store_error = RemoteSessionError("script fetch failed: timed out")

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)
    log = _record(c)

    with pytest.raises(RemoteSessionError, match="timed out"):
        await c.initialize()

    assert log == [("authenticated",)]
    assert not c.is_ready
    assert c.phase is SessionPhase.IDLE
    assert factory.created[0].closed
    with pytest.raises(NotReadyError):
        await c.send_message("123", "hello")


@pytest.mark.asyncio
async def test_failed_synced_signal_fails_initialize(tmp_path: Path) -> None:
    def configure(r: FakeRemote, _i: int) -> None:
        r.on_start_qr = FakeRemote.pair
        r.load_store_error = RemoteSessionError("script fetch http error 404")

    factory = FakeFactory(configure)
    c = _controller(tmp_path, factory)

    with pytest.raises(RemoteSessionError, match="404"):
        await c.initialize()

    assert not c.is_ready
    assert factory.created[0].closed


@pytest.mark.asyncio
async def test_clear_session_without_storage(tmp_path: Path) -> None:
    c = _controller(tmp_path / "never-created", FakeFactory())
    await c.clear_session()
    assert not (tmp_path / "never-created").exists()
