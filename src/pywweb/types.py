from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    """
    Connection state reported by the web client (`AppState.state`).

    Values are the raw strings the page emits, so `ConnectionState(raw)` parses
    a notification directly.
    """

    CONFLICT = "CONFLICT"
    CONNECTED = "CONNECTED"
    DEPRECATED_VERSION = "DEPRECATED_VERSION"
    OPENING = "OPENING"
    PAIRING = "PAIRING"
    PROXYBLOCK = "PROXYBLOCK"
    SMB_TOS_BLOCK = "SMB_TOS_BLOCK"
    TIMEOUT = "TIMEOUT"
    TOS_BLOCK = "TOS_BLOCK"
    UNLAUNCHED = "UNLAUNCHED"
    UNPAIRED = "UNPAIRED"
    UNPAIRED_IDLE = "UNPAIRED_IDLE"

    @classmethod
    def parse(cls, raw: str) -> ConnectionState:
        return cls(raw.strip().upper())

    @property
    def is_loading(self) -> bool:
        return self in _LOADING_STATES

    @property
    def is_unpaired(self) -> bool:
        return self in (ConnectionState.UNPAIRED, ConnectionState.UNPAIRED_IDLE)

    @property
    def disconnect_reason(self) -> DisconnectReason | None:
        """The matching `DisconnectReason` for terminal states, else None."""

        return _TERMINAL_STATES.get(self)


class DisconnectReason(StrEnum):
    LOGOUT = "LOGOUT"
    MAX_QR_RETRIES = "MAX_QR_RETRIES"
    CONFLICT = "CONFLICT"
    DEPRECATED_VERSION = "DEPRECATED_VERSION"
    PROXYBLOCK = "PROXYBLOCK"
    SMB_TOS_BLOCK = "SMB_TOS_BLOCK"
    TIMEOUT = "TIMEOUT"
    TOS_BLOCK = "TOS_BLOCK"


_LOADING_STATES = frozenset(
    {ConnectionState.OPENING, ConnectionState.UNLAUNCHED, ConnectionState.PAIRING}
)

_TERMINAL_STATES: dict[ConnectionState, DisconnectReason] = {
    ConnectionState.CONFLICT: DisconnectReason.CONFLICT,
    ConnectionState.DEPRECATED_VERSION: DisconnectReason.DEPRECATED_VERSION,
    ConnectionState.PROXYBLOCK: DisconnectReason.PROXYBLOCK,
    ConnectionState.SMB_TOS_BLOCK: DisconnectReason.SMB_TOS_BLOCK,
    ConnectionState.TIMEOUT: DisconnectReason.TIMEOUT,
    ConnectionState.TOS_BLOCK: DisconnectReason.TOS_BLOCK,
}
