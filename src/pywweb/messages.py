from __future__ import annotations

from typing import Any

from .jid import ensure_chat_suffix
from .media import MediaSendOptions, MessageMedia
from .preprocess import MediaPreprocessor, PreparedMedia
from .remote import RemoteSession


def media_payload(prepared: PreparedMedia) -> dict[str, Any]:
    """The media mapping handed to the web client's send call."""

    media = prepared.media
    out: dict[str, Any] = {
        "mimetype": media.mimetype,
        "data": media.data,
        "filename": media.filename,
        "filesize": media.filesize,
    }
    if prepared.waveform is not None:
        out["waveform"] = list(prepared.waveform)
    return out


class MessageSender:
    """
    Sends text and media through the remote session.

    Media always passes through `MediaPreprocessor` first.
    """

    def __init__(self, remote: RemoteSession, preprocessor: MediaPreprocessor) -> None:
        self.remote = remote
        self.preprocessor = preprocessor

    async def send(
        self,
        chat_id: str,
        content: str = "",
        *,
        media: MessageMedia | None = None,
        options: MediaSendOptions | None = None,
    ) -> str | None:
        opts = options or MediaSendOptions()
        remote_options = opts.to_remote_options()
        if media is not None:
            prepared = await self.preprocessor.prepare(media, opts)
            remote_options["media"] = media_payload(prepared)
        return await self.remote.send_message(ensure_chat_suffix(chat_id), content, remote_options)
