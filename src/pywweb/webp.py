"""
RIFF/WebP container helpers for sticker pack metadata.

The web client groups stickers by a JSON record stored in an `EXIF` chunk:

    RIFF <size-8:u32le> WEBP
      ...original chunks...
      EXIF <len:u32le> <tiff header (22 bytes)> <utf-8 json> [pad]

The TIFF header declares a single IFD entry with tag 0x5741 ("AW"), type 7
(UNDEFINED), the JSON byte length, and a data offset of 22 (right after the
header).
"""

from __future__ import annotations

import json
import secrets
import string
import struct
from collections.abc import Iterator, Sequence
from typing import Any, Final

from .constants import STICKER_EXIF_TAG, STICKER_PACK_ID_LENGTH

RIFF_MAGIC: Final[bytes] = b"RIFF"
WEBP_FORM: Final[bytes] = b"WEBP"
EXIF_CHUNK_ID: Final[bytes] = b"EXIF"

# magic, total size - 8, form type
_RIFF_HEADER = struct.Struct("<4sI4s")
# chunk id, payload length
_CHUNK_HEADER = struct.Struct("<4sI")
# byte order, magic 42, IFD offset, entry count, tag, type, count, value offset
_TIFF_HEADER = struct.Struct("<2sHIHHHII")

_TIFF_LITTLE_ENDIAN = b"II"
_TIFF_MAGIC = 0x2A
_TIFF_FIRST_IFD = 8
_TIFF_TYPE_UNDEFINED = 7
TIFF_HEADER_SIZE: Final[int] = _TIFF_HEADER.size

_PACK_ID_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


def random_pack_id(length: int = STICKER_PACK_ID_LENGTH) -> str:
    return "".join(secrets.choice(_PACK_ID_ALPHABET) for _ in range(length))


def build_sticker_metadata(
    name: str | None,
    author: str | None,
    categories: Sequence[str] | None = None,
    *,
    pack_id: str | None = None,
) -> dict[str, Any]:
    return {
        "sticker-pack-id": pack_id or random_pack_id(),
        "sticker-pack-name": name or "",
        "sticker-pack-publisher": author or "",
        "emojis": list(categories) if categories else [""],
    }


def encode_exif_payload(metadata: dict[str, Any]) -> bytes:
    """Serialize `metadata` as UTF-8 JSON behind the fixed TIFF header."""

    body = json.dumps(metadata, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    header = _TIFF_HEADER.pack(
        _TIFF_LITTLE_ENDIAN,
        _TIFF_MAGIC,
        _TIFF_FIRST_IFD,
        1,
        STICKER_EXIF_TAG,
        _TIFF_TYPE_UNDEFINED,
        len(body),
        TIFF_HEADER_SIZE,
    )
    return header + body


def decode_exif_payload(payload: bytes) -> dict[str, Any]:
    if len(payload) < TIFF_HEADER_SIZE:
        raise ValueError("EXIF payload shorter than TIFF header")
    order, magic, _ifd, entries, tag, typ, length, offset = _TIFF_HEADER.unpack_from(payload)
    if order != _TIFF_LITTLE_ENDIAN or magic != _TIFF_MAGIC:
        raise ValueError("EXIF payload is not a little-endian TIFF block")
    if entries != 1 or tag != STICKER_EXIF_TAG or typ != _TIFF_TYPE_UNDEFINED:
        raise ValueError("EXIF payload does not carry sticker pack metadata")
    end = offset + length
    if end > len(payload):
        raise ValueError("EXIF payload truncated")
    obj = json.loads(payload[offset:end].decode("utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("sticker pack metadata is not a JSON object")
    return obj


def encode_riff_chunk(chunk_id: bytes, payload: bytes) -> bytes:
    """Chunk header + payload, padded to an even size."""

    if len(chunk_id) != 4:
        raise ValueError(f"chunk id must be 4 bytes, got {chunk_id!r}")
    pad = b"\x00" if len(payload) % 2 else b""
    return _CHUNK_HEADER.pack(chunk_id, len(payload)) + payload + pad


def _check_riff(data: bytes) -> None:
    if len(data) < _RIFF_HEADER.size:
        raise ValueError("data too short for a RIFF container")
    magic, _size, _form = _RIFF_HEADER.unpack_from(data)
    if magic != RIFF_MAGIC:
        raise ValueError("data is not a RIFF container")


def append_riff_chunk(container: bytes, chunk_id: bytes, payload: bytes) -> bytes:
    """
    Append a chunk after the existing ones and patch the RIFF size field so it
    equals the new total length minus 8.
    """

    _check_riff(container)
    out = bytearray(container)
    out += encode_riff_chunk(chunk_id, payload)
    struct.pack_into("<I", out, 4, len(out) - 8)
    return bytes(out)


def iter_riff_chunks(data: bytes) -> Iterator[tuple[bytes, bytes]]:
    """
    Yield `(chunk_id, payload)` for the top-level chunks of a RIFF container.

    Stops quietly at a truncated chunk.
    """

    _check_riff(data)
    off = _RIFF_HEADER.size
    while off + _CHUNK_HEADER.size <= len(data):
        chunk_id, size = _CHUNK_HEADER.unpack_from(data, off)
        start = off + _CHUNK_HEADER.size
        end = start + size
        if end > len(data):
            return
        yield chunk_id, data[start:end]
        # Chunks are padded to even sizes.
        off = end + (size % 2)


def read_sticker_metadata(data: bytes) -> dict[str, Any] | None:
    """Return the sticker pack record of a WebP file, if it carries one."""

    for chunk_id, payload in iter_riff_chunks(data):
        if chunk_id == EXIF_CHUNK_ID:
            return decode_exif_payload(payload)
    return None


def inject_sticker_metadata(
    data: bytes,
    name: str | None,
    author: str | None,
    categories: Sequence[str] | None = None,
    *,
    pack_id: str | None = None,
) -> bytes:
    """
    Embed sticker pack metadata into a WebP container.

    Returns `data` unchanged when neither `name` nor `author` is given.
    """

    if not name and not author:
        return data
    metadata = build_sticker_metadata(name, author, categories, pack_id=pack_id)
    return append_riff_chunk(data, EXIF_CHUNK_ID, encode_exif_payload(metadata))
