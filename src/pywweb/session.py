"""
Session controller: drives one authenticated web-client session to `ready`.

Lifecycle (per authentication attempt):

    UNLAUNCHED -> OPENING -> {PAIRING | UNPAIRED | UNPAIRED_IDLE} -> CONNECTED

A logout resets the cycle; terminal states (CONFLICT, TOS_BLOCK, ...) are
reported through `disconnected` and fail a pending `initialize`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from enum import StrEnum
from pathlib import Path
from types import TracebackType

from .connection.browser import BrowserSession
from .constants import (
    COMPANION_HELLO_MARKER,
    INIT_RETRY_BASE_DELAY_S,
    PAIRING_CODE_RETRIES,
    PAIRING_CODE_RETRY_DELAY_S,
    POST_LOGOUT_URL_MARKER,
)
from .exceptions import NotReadyError, PairingError, RemoteSessionError, SessionDisconnectedError
from .media import MediaSendOptions, MessageMedia
from .messages import MessageSender
from .preprocess import MediaPreprocessor
from .remote import RemoteSession, RemoteSessionFactory, is_transient_error
from .session_config import SessionOptions
from .types import ConnectionState, DisconnectReason
from .util.asyncio import cancel_suppress, ensure_task
from .util.events import Listener, SessionEvents

logger = logging.getLogger(__name__)

# Indirection so retry delays can be observed in tests.
_sleep = asyncio.sleep


class SessionPhase(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"
    LOGGING_OUT = "logging_out"


class _Sink:
    """Routes page notifications into the controller."""

    def __init__(self, controller: SessionController) -> None:
        self._c = controller

    async def on_state_changed(self, raw_state: str) -> None:
        await self._c._handle_state_changed(raw_state)

    async def on_synced(self) -> None:
        await self._c._handle_synced()

    async def on_offline_progress(self, percent: int) -> None:
        await self._c._handle_offline_progress(percent)

    async def on_qr(self, qr: str) -> None:
        await self._c._handle_qr(qr)

    async def on_logout(self) -> None:
        self._c._handle_logout()

    async def on_navigated(self, url: str) -> None:
        await self._c._handle_navigated(url)


def _remove_tree(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        shutil.rmtree(path)


class SessionController:
    """
    Authenticates a device against the web client and tracks its connection.

    Events (see `SessionEvents`): `qr`, `code`, `authenticated`, `ready`,
    `auth_state_changed`, `loading_progress`, `disconnected`. Listeners for one
    event run in registration order, each awaited before the next.
    """

    def __init__(
        self,
        options: SessionOptions | None = None,
        *,
        remote_factory: RemoteSessionFactory | None = None,
        preprocessor: MediaPreprocessor | None = None,
    ) -> None:
        self.options = options or SessionOptions()
        self.events = SessionEvents()
        self.preprocessor = preprocessor or MediaPreprocessor(ffmpeg_path=self.options.ffmpeg_path)

        self._remote_factory: RemoteSessionFactory = remote_factory or BrowserSession
        self._remote: RemoteSession | None = None
        self._sink = _Sink(self)
        self._sender: MessageSender | None = None

        self._state = ConnectionState.UNLAUNCHED
        self._phase = SessionPhase.IDLE
        self._ready_future: asyncio.Future[None] | None = None
        self._code_task: asyncio.Task[None] | None = None
        self._qr_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def is_ready(self) -> bool:
        return self._phase is SessionPhase.READY

    @property
    def remote(self) -> RemoteSession | None:
        return self._remote

    def on(self, event: str, *listeners: Listener) -> SessionController:
        channel = self.events.get(event)
        for listener in listeners:
            channel.subscribe(listener)
        return self

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def initialize(self, max_attempts: int = 3) -> None:
        """
        Open the remote session and wait until it is ready.

        Rate-limited or corrupted sessions are torn down, their storage
        cleared, and retried after `attempt * 15s`, up to `max_attempts`.
        Every other error propagates immediately.
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(1, max_attempts + 1):
            try:
                await self._initialize_once()
                return
            except Exception as e:
                if attempt >= max_attempts or not is_transient_error(e):
                    raise
                delay = attempt * INIT_RETRY_BASE_DELAY_S
                logger.warning(
                    "rate limit or corrupted session (attempt %d/%d), retrying in %.0fs: %s",
                    attempt,
                    max_attempts,
                    delay,
                    e,
                )
                await self.clear_session()
                await _sleep(delay)

    async def clear_session(self) -> None:
        """Delete persisted session storage; a missing directory is fine."""

        path = Path(self.options.session_path).expanduser()
        await asyncio.to_thread(_remove_tree, path)

    async def close(self) -> None:
        await self._teardown()

    async def request_pairing_code(
        self,
        phone_number: str,
        show_notification: bool = True,
        interval_s: float | None = None,
    ) -> str:
        """
        Request a numeric pairing code, emit it on `code`, and keep refreshing
        it every `interval_s` while the account stays unpaired.
        """

        remote = self._require_remote()
        interval = self.options.pairing_code_interval_s if interval_s is None else interval_s

        code = await self._fetch_pairing_code(remote, phone_number, show_notification)
        await self.events.code.emit(code)

        await cancel_suppress(self._code_task)
        self._code_task = ensure_task(
            self._refresh_pairing_code(remote, phone_number, show_notification, interval),
            name="pywweb.pairing_code_refresh",
        )
        return code

    async def send_message(
        self,
        chat_id: str,
        content: str = "",
        *,
        media: MessageMedia | None = None,
        options: MediaSendOptions | None = None,
    ) -> str | None:
        if self._sender is None or not self.is_ready:
            raise NotReadyError("session is not ready")
        return await self._sender.send(chat_id, content, media=media, options=options)

    # -- initialization ---------------------------------------------------

    async def _initialize_once(self) -> None:
        # A session left over from a logout still holds the browser profile.
        if self._remote is not None:
            await self._teardown()

        remote = self._remote_factory(self.options)
        self._remote = remote
        self._phase = SessionPhase.STARTING
        self._qr_count = 0
        self._ready_future = asyncio.get_running_loop().create_future()

        try:
            await remote.open(self._sink)
            await self._wait_for_authentication(remote)
        except BaseException:
            await self._teardown()
            raise

    async def _wait_for_authentication(self, remote: RemoteSession) -> None:
        ready = self._ready_future
        assert ready is not None

        # Register before reading the state so a change in between is not lost.
        settled = self.events.auth_state_changed.wait_for_future(
            predicate=lambda s: not s.is_loading
        )
        try:
            logger.info("checking authentication state")
            state = await self._read_state(remote)
            if state.is_loading:
                await asyncio.wait({settled, ready}, return_when=asyncio.FIRST_COMPLETED)
                if ready.done():
                    ready.result()
                    return
                state = await self._read_state(remote)
        finally:
            self.events.auth_state_changed.remove_waiter(settled)
            settled.cancel()

        if await remote.has_synced():
            logger.info("already authenticated")
            await self._become_ready(remote)
            return

        if state.is_unpaired:
            phone = self.options.pair_with_phone_number
            if phone:
                logger.info("waiting for pairing code")
                await self.request_pairing_code(
                    phone,
                    self.options.show_pairing_notification,
                    self.options.pairing_code_interval_s,
                )
            else:
                logger.info("waiting for QR code scan")
                await remote.start_qr()

        logger.info("waiting for authentication")
        await ready

    async def _read_state(self, remote: RemoteSession) -> ConnectionState:
        self._state = ConnectionState.parse(await remote.get_state())
        return self._state

    async def _become_ready(self, remote: RemoteSession) -> None:
        if self._phase in (SessionPhase.READY, SessionPhase.LOGGING_OUT):
            logger.debug("ignoring synced signal in phase %s", self._phase)
            return
        self._phase = SessionPhase.READY
        try:
            await cancel_suppress(self._code_task)
            self._code_task = None

            logger.info("authenticated")
            await self.events.authenticated.emit()
            await remote.load_store()
            self._sender = MessageSender(remote, self.preprocessor)
            logger.info("ready")
            await self.events.ready.emit()
        except BaseException:
            self._phase = SessionPhase.IDLE
            self._sender = None
            raise

        if self._ready_future is not None and not self._ready_future.done():
            self._ready_future.set_result(None)

    async def _fetch_pairing_code(
        self, remote: RemoteSession, phone_number: str, show_notification: bool
    ) -> str:
        retries = PAIRING_CODE_RETRIES
        while True:
            try:
                return await remote.request_pairing_code(phone_number, show_notification)
            except RemoteSessionError as e:
                if retries > 0 and COMPANION_HELLO_MARKER in str(e):
                    logger.warning(
                        "pairing code rate limited, waiting %.0fs (%d retries left)",
                        PAIRING_CODE_RETRY_DELAY_S,
                        retries,
                    )
                    await _sleep(PAIRING_CODE_RETRY_DELAY_S)
                    retries -= 1
                    continue
                raise PairingError(str(e)) from e

    async def _refresh_pairing_code(
        self, remote: RemoteSession, phone_number: str, show_notification: bool, interval_s: float
    ) -> None:
        try:
            while True:
                await _sleep(interval_s)
                state = ConnectionState.parse(await remote.get_state())
                if not state.is_unpaired:
                    return
                code = await self._fetch_pairing_code(remote, phone_number, show_notification)
                await self.events.code.emit(code)
        except Exception as e:
            logger.warning("pairing code refresh stopped: %s", e)
            self._fail_pending(e)

    # -- notifications ----------------------------------------------------

    async def _handle_state_changed(self, raw_state: str) -> None:
        try:
            state = ConnectionState.parse(raw_state)
        except ValueError:
            logger.warning("ignoring unknown connection state %r", raw_state)
            return

        self._state = state
        await self.events.auth_state_changed.emit(state)

        reason = state.disconnect_reason
        if reason is not None:
            await self._disconnect(reason)
            return

        if (
            state is ConnectionState.UNPAIRED_IDLE
            and not self.options.pair_with_phone_number
            and self._remote is not None
        ):
            await self._remote.refresh_qr()

    async def _handle_synced(self) -> None:
        remote = self._remote
        if remote is None or self._phase in (SessionPhase.READY, SessionPhase.LOGGING_OUT):
            logger.debug("ignoring synced signal in phase %s", self._phase)
            return
        try:
            await self._become_ready(remote)
        except Exception as e:
            self._fail_pending(e)

    async def _handle_offline_progress(self, percent: int) -> None:
        if self._phase is SessionPhase.LOGGING_OUT:
            return
        await self.events.loading_progress.emit(int(percent))

    async def _handle_qr(self, qr: str) -> None:
        self._qr_count += 1
        limit = self.options.qr_max_retries
        if limit > 0 and self._qr_count > limit:
            await self._disconnect(DisconnectReason.MAX_QR_RETRIES)
            return
        await self.events.qr.emit(qr)

    def _handle_logout(self) -> None:
        self._phase = SessionPhase.LOGGING_OUT

    async def _handle_navigated(self, url: str) -> None:
        if POST_LOGOUT_URL_MARKER in url or self._phase is SessionPhase.LOGGING_OUT:
            await self._disconnect(DisconnectReason.LOGOUT)

    async def _disconnect(self, reason: DisconnectReason) -> None:
        logger.warning("disconnected: %s", reason.value)
        self._phase = SessionPhase.IDLE
        self._sender = None
        if reason is DisconnectReason.LOGOUT:
            self._state = ConnectionState.UNLAUNCHED
        await cancel_suppress(self._code_task)
        self._code_task = None

        await self.events.disconnected.emit(reason)
        self._fail_pending(SessionDisconnectedError(reason))

    def _fail_pending(self, exc: BaseException) -> None:
        fut = self._ready_future
        if fut is not None and not fut.done():
            fut.set_exception(exc)

    # -- teardown ---------------------------------------------------------

    def _require_remote(self) -> RemoteSession:
        if self._remote is None:
            raise NotReadyError("remote session is not open")
        return self._remote

    async def _teardown(self) -> None:
        await cancel_suppress(self._code_task)
        self._code_task = None

        fut = self._ready_future
        self._ready_future = None
        if fut is not None:
            if not fut.done():
                fut.cancel()
            elif not fut.cancelled():
                # Mark a failure nobody awaited as retrieved.
                fut.exception()

        remote = self._remote
        self._remote = None
        self._sender = None
        self._phase = SessionPhase.IDLE
        self._state = ConnectionState.UNLAUNCHED
        if remote is not None:
            await remote.close()

    def __repr__(self) -> str:
        return (
            f"SessionController(session_path={self.options.session_path!r}, "
            f"state={self._state.value}, phase={self._phase.value})"
        )
