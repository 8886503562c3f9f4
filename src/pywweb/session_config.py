from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    DEFAULT_BROWSER_ARGS,
    DEFAULT_PAIRING_CODE_INTERVAL_S,
    DEFAULT_SESSION_PATH,
    DEFAULT_USER_AGENT,
)


@dataclass(frozen=True, slots=True)
class SessionOptions:
    session_path: str = DEFAULT_SESSION_PATH

    # When set, pair with a numeric code instead of a QR payload.
    pair_with_phone_number: str | None = None
    show_pairing_notification: bool = True
    pairing_code_interval_s: float = DEFAULT_PAIRING_CODE_INTERVAL_S

    # 0 means QR payloads are re-emitted until the session is paired.
    qr_max_retries: int = 0

    # None resolves `ffmpeg` on PATH.
    ffmpeg_path: str | None = None

    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    browser_args: tuple[str, ...] = DEFAULT_BROWSER_ARGS
