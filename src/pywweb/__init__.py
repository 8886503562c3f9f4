"""
pywweb: an asyncio-first WhatsApp Web automation client.

A headless browser hosts the official web client; this package drives its
device pairing and connection lifecycle, and prepares media (voice notes,
animated stickers, sticker pack metadata) the browser cannot process itself.
"""

from __future__ import annotations

from .exceptions import PywwebError
from .media import MediaSendOptions, MessageMedia
from .preprocess import MediaPreprocessor
from .session import SessionController
from .session_config import SessionOptions
from .types import ConnectionState, DisconnectReason

__all__ = [
    "ConnectionState",
    "DisconnectReason",
    "MediaPreprocessor",
    "MediaSendOptions",
    "MessageMedia",
    "PywwebError",
    "SessionController",
    "SessionOptions",
]

__version__ = "0.1.0"
