from __future__ import annotations

import base64
import binascii

from ..exceptions import MediaError


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise MediaError(f"invalid base64 media data: {e}") from e
