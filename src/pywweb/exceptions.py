from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import DisconnectReason


class PywwebError(Exception):
    """Base error for the pywweb library."""


class RemoteSessionError(PywwebError):
    """
    The remote browser session reported a failure.

    The original error text is preserved verbatim so transient markers
    (`CompanionHello`, `PAIRING_FAILED`, ...) can be matched against it.
    """


class PairingError(RemoteSessionError):
    """Numeric pairing-code retrieval failed after local retries."""

    def __init__(self, message: str) -> None:
        super().__init__(f"PAIRING_FAILED: {message}")


class SessionDisconnectedError(PywwebError):
    """The session was disconnected before it became ready."""

    def __init__(self, reason: DisconnectReason) -> None:
        super().__init__(f"session disconnected (reason={reason.value})")
        self.reason = reason


class NotReadyError(PywwebError):
    """An operation needs a ready session but `ready` has not fired yet."""


class MediaError(PywwebError):
    """Media could not be loaded or decoded."""
