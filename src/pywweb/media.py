from __future__ import annotations

import asyncio
import contextlib
import mimetypes
import posixpath
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, cast

from .exceptions import MediaError
from .util.bytes import b64decode, b64encode

_DEFAULT_MIMETYPE = "application/octet-stream"

# Extensions the web client cares about; `mimetypes` covers the rest.
_MIMETYPES_BY_EXT: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".avif": "image/avif",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".oga": "audio/ogg",
    ".opus": "audio/opus",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".flac": "audio/flac",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".3gp": "video/3gpp",
    ".pdf": "application/pdf",
    ".vcf": "text/x-vcard",
    ".apk": "application/vnd.android.package-archive",
}


def guess_mimetype(path: str | Path) -> str:
    ext = Path(path).suffix.lower()
    if ext in _MIMETYPES_BY_EXT:
        return _MIMETYPES_BY_EXT[ext]
    return mimetypes.guess_type(str(path))[0] or _DEFAULT_MIMETYPE


@dataclass(frozen=True, slots=True)
class MessageMedia:
    """
    Media to be sent (image, audio, video, document, sticker).

    `data` is base64 so the value can cross into the browser unchanged. Each
    preprocessing step returns a new instance.
    """

    mimetype: str
    data: str
    filename: str | None = None
    filesize: int | None = None

    @classmethod
    def from_bytes(
        cls, data: bytes, mimetype: str, filename: str | None = None
    ) -> MessageMedia:
        return cls(mimetype=mimetype, data=b64encode(data), filename=filename, filesize=len(data))

    @classmethod
    def from_file_path(cls, path: str | Path) -> MessageMedia:
        p = Path(path).expanduser()
        if not p.is_file():
            raise MediaError(f"media file not found: {p}")
        return cls.from_bytes(p.read_bytes(), guess_mimetype(p), p.name)

    @classmethod
    async def from_url(
        cls, url: str, *, filename: str | None = None, timeout_s: float = 30.0
    ) -> MessageMedia:
        """
        Download media from `url`.

        The MIME type comes from `Content-Type`; the file name from the
        argument, then `Content-Disposition`, then the last URL path segment.
        """

        body, mimetype, header_name = await asyncio.to_thread(_http_get, url, timeout_s)
        name = filename or header_name or _filename_from_url(url)
        return cls.from_bytes(body, mimetype, name)

    def to_bytes(self) -> bytes:
        return b64decode(self.data)

    def with_bytes(
        self, data: bytes, *, mimetype: str | None = None, filename: str | None = None
    ) -> MessageMedia:
        return replace(
            self,
            mimetype=mimetype or self.mimetype,
            data=b64encode(data),
            filename=filename if filename is not None else self.filename,
            filesize=len(data),
        )

    @property
    def essence(self) -> str:
        """`type/subtype` without parameters, lower-cased."""

        return self.mimetype.split(";", 1)[0].strip().lower()

    @property
    def extension(self) -> str:
        sub = self.essence.rsplit("/", 1)[-1]
        return sub or "bin"

    @property
    def is_video(self) -> bool:
        return "video" in self.mimetype.lower()

    @property
    def has_opus_codec(self) -> bool:
        return "opus" in self.mimetype.lower()


@dataclass(slots=True)
class MediaSendOptions:
    """
    Per-send flags controlling how a `MessageMedia` is interpreted.

    Construct one per send call.
    """

    caption: str | None = None
    send_audio_as_voice: bool = False
    send_video_as_gif: bool = False
    send_media_as_sticker: bool = False
    send_media_as_document: bool = False
    is_view_once: bool = False

    sticker_name: str | None = None
    sticker_author: str | None = None
    sticker_categories: Sequence[str] | None = None

    # Precomputed voice-note envelope; computed on demand when omitted.
    waveform: bytes | None = None

    @property
    def has_sticker_metadata(self) -> bool:
        return bool(self.sticker_name or self.sticker_author)

    def to_remote_options(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "sendAudioAsVoice": self.send_audio_as_voice,
            "sendVideoAsGif": self.send_video_as_gif,
            "sendMediaAsSticker": self.send_media_as_sticker,
            "sendMediaAsDocument": self.send_media_as_document,
            "isViewOnce": self.is_view_once,
        }
        if self.caption:
            out["caption"] = self.caption
        if self.sticker_name:
            out["stickerName"] = self.sticker_name
        if self.sticker_author:
            out["stickerAuthor"] = self.sticker_author
        if self.sticker_categories:
            out["stickerCategories"] = list(self.sticker_categories)
        return out


def _http_get(url: str, timeout_s: float) -> tuple[bytes, str, str | None]:
    req = urllib.request.Request(url, headers={"User-Agent": "pywweb/0.1"})
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            body = cast(bytes, resp.read())
            mimetype = resp.headers.get_content_type() or _DEFAULT_MIMETYPE
            header_name = resp.headers.get_filename()
    except urllib.error.HTTPError as e:
        detail = b""
        with contextlib.suppress(Exception):
            detail = e.read()
        raise MediaError(f"media download http error {e.code}: {detail[:200]!r}") from e
    except Exception as e:
        raise MediaError(f"media download failed: {e}") from e
    return body, mimetype, header_name


def _filename_from_url(url: str) -> str | None:
    path = urllib.parse.urlsplit(url).path
    name = urllib.parse.unquote(posixpath.basename(path))
    return name or None
