"""
The seam between the session controller and the browser that hosts the web
client.

`RemoteSession` is what the controller drives; `RemoteEventSink` is how the
page reports notifications back. Both are structural so tests can substitute
plain fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from .constants import TRANSIENT_ERROR_MARKERS
from .exceptions import RemoteSessionError
from .session_config import SessionOptions


class RemoteEventSink(Protocol):
    async def on_state_changed(self, raw_state: str) -> None: ...

    async def on_synced(self) -> None: ...

    async def on_offline_progress(self, percent: int) -> None: ...

    async def on_qr(self, qr: str) -> None: ...

    async def on_logout(self) -> None: ...

    async def on_navigated(self, url: str) -> None: ...


class RemoteSession(Protocol):
    async def open(self, sink: RemoteEventSink) -> None:
        """Launch, load the web client and start forwarding notifications."""

    async def close(self) -> None: ...

    async def get_state(self) -> str: ...

    async def has_synced(self) -> bool: ...

    async def start_qr(self) -> None:
        """Emit the current QR payload and re-emit on every reference rotation."""

    async def refresh_qr(self) -> None: ...

    async def request_pairing_code(self, phone_number: str, show_notification: bool) -> str:
        """Single attempt; raises `RemoteSessionError` on failure."""

    async def load_store(self) -> None:
        """Inject the post-authentication helpers the send/query calls rely on."""

    async def send_message(
        self, chat_id: str, content: Any, options: dict[str, Any]
    ) -> str | None: ...


RemoteSessionFactory = Callable[[SessionOptions], RemoteSession]


def is_transient_error(exc: BaseException) -> bool:
    """
    True for rate-limited or corrupted-session failures.

    Empty or near-empty remote errors are what the client throws when its
    persisted state is unusable.
    """

    if not isinstance(exc, RemoteSessionError):
        return False
    msg = str(exc)
    if len(msg.strip()) <= 2:
        return True
    return any(marker in msg for marker in TRANSIENT_ERROR_MARKERS)
