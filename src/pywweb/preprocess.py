"""
Media preprocessing before a payload is handed to the web client.

Replicates work the browser side cannot do reliably in a headless session:
- voice notes must be Opus-in-Ogg and carry a 64-value waveform
- animated stickers must be WebP (converted from video)
- sticker pack metadata lives in an EXIF chunk of the WebP container

Every stage degrades to the unmodified input on failure.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import tempfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    STICKER_CANVAS_PX,
    STICKER_FPS,
    STICKER_MAX_DURATION,
    STICKER_MIMETYPE,
    STICKER_SIZE_PX,
    VOICE_BITRATE,
    VOICE_MIMETYPE,
    VOICE_SAMPLE_RATE_HZ,
    WAVEFORM_PCM_RATE_HZ,
)
from .media import MediaSendOptions, MessageMedia
from .transcode import FfmpegRunner, TranscodeRunner
from .waveform import compute_waveform
from .webp import inject_sticker_metadata

logger = logging.getLogger(__name__)

_FLOAT32_SIZE = 4


@dataclass(frozen=True, slots=True)
class PreparedMedia:
    media: MessageMedia
    waveform: bytes | None = None


@contextlib.contextmanager
def _workspace() -> Iterator[Path]:
    # Removed on every exit path; cleanup errors are ignored.
    with tempfile.TemporaryDirectory(prefix="pywweb-", ignore_cleanup_errors=True) as d:
        yield Path(d)


async def _read_output(path: Path) -> bytes | None:
    try:
        return await asyncio.to_thread(path.read_bytes)
    except FileNotFoundError:
        return None


def _sticker_filter() -> str:
    c = STICKER_CANVAS_PX
    return (
        f"scale='iw*min({c}/iw,{c}/ih)':'ih*min({c}/iw,{c}/ih)',"
        "format=rgba,"
        f"pad={c}:{c}:'({c}-iw)/2':'({c}-ih)/2':'#00000000',"
        f"setsar=1,fps={STICKER_FPS}"
    )


class MediaPreprocessor:
    def __init__(
        self, runner: TranscodeRunner | None = None, *, ffmpeg_path: str | None = None
    ) -> None:
        self.runner: TranscodeRunner = runner or FfmpegRunner(ffmpeg_path)

    async def generate_waveform(self, audio: bytes) -> bytes | None:
        """
        Decode `audio` to mono 16 kHz float32 PCM and return its 64-byte envelope.

        Returns None when decoding fails; a decode without samples yields 64
        zero bytes.
        """

        with _workspace() as tmp:
            src = tmp / "input.audio"
            out = tmp / "output.raw"
            await asyncio.to_thread(src.write_bytes, audio)

            res = await self.runner.run(
                [
                    "-i", str(src),
                    "-ac", "1",
                    "-ar", str(WAVEFORM_PCM_RATE_HZ),
                    "-f", "f32le",
                    "-acodec", "pcm_f32le",
                    str(out),
                ]
            )  # fmt: skip
            if not res.success:
                logger.warning("waveform generation failed: %s", res.error)
                return None

            pcm = await _read_output(out)
            if pcm is None:
                logger.warning("waveform generation produced no output")
                return None
            if len(pcm) < _FLOAT32_SIZE:
                logger.warning("waveform generation decoded no samples")
            return compute_waveform(pcm)

    async def convert_to_voice_format(self, media: MessageMedia) -> MessageMedia | None:
        """Re-encode audio to mono 48 kHz 128 kbps Opus in an Ogg container."""

        if media.has_opus_codec:
            return media

        with _workspace() as tmp:
            src = tmp / f"input.{media.extension}"
            out = tmp / "output.ogg"
            await asyncio.to_thread(src.write_bytes, media.to_bytes())

            res = await self.runner.run(
                [
                    "-i", str(src),
                    "-ac", "1",
                    "-ar", str(VOICE_SAMPLE_RATE_HZ),
                    "-c:a", "libopus",
                    "-b:a", VOICE_BITRATE,
                    str(out),
                ]
            )  # fmt: skip
            if not res.success:
                logger.warning("audio to ogg/opus conversion failed: %s", res.error)
                return None

            data = await _read_output(out)
            if data is None:
                logger.warning("audio to ogg/opus conversion produced no output")
                return None

        filename = Path(media.filename or "audio.ogg").with_suffix(".ogg").name
        return media.with_bytes(data, mimetype=VOICE_MIMETYPE, filename=filename)

    async def convert_video_to_sticker(self, media: MessageMedia) -> MessageMedia | None:
        """
        Convert a video to a looping 512x512 animated WebP (10 fps, at most
        5 s, no audio). Non-video input returns None.
        """

        if not media.is_video:
            return None

        with _workspace() as tmp:
            src = tmp / f"input.{media.extension}"
            out = tmp / "output.webp"
            await asyncio.to_thread(src.write_bytes, media.to_bytes())

            res = await self.runner.run(
                [
                    "-i", str(src),
                    "-vcodec", "libwebp",
                    "-vf", _sticker_filter(),
                    "-loop", "0",
                    "-ss", "00:00:00.0",
                    "-t", STICKER_MAX_DURATION,
                    "-preset", "default",
                    "-an",
                    "-vsync", "0",
                    "-s", f"{STICKER_SIZE_PX}:{STICKER_SIZE_PX}",
                    str(out),
                ]
            )  # fmt: skip
            if not res.success:
                logger.warning("video to webp sticker conversion failed: %s", res.error)
                return None

            data = await _read_output(out)
            if data is None:
                logger.warning("video to webp sticker conversion produced no output")
                return None

        return media.with_bytes(data, mimetype=STICKER_MIMETYPE)

    @staticmethod
    def inject_sticker_metadata(
        data: bytes,
        name: str | None,
        author: str | None,
        categories: Sequence[str] | None = None,
    ) -> bytes:
        return inject_sticker_metadata(data, name, author, categories)

    async def prepare(self, media: MessageMedia, options: MediaSendOptions) -> PreparedMedia:
        """
        Apply the per-send-mode rules and return what the web client needs.

        - voice: convert to Opus (unless already Opus), then compute the
          waveform of the audio actually sent
        - sticker: convert video to animated WebP, then embed pack metadata
        """

        waveform = options.waveform

        if options.send_audio_as_voice:
            if not media.has_opus_codec:
                converted = await self.convert_to_voice_format(media)
                if converted is None:
                    logger.warning("sending voice note with unconverted %s audio", media.mimetype)
                else:
                    media = converted
            if waveform is None:
                waveform = await self.generate_waveform(media.to_bytes())

        if options.send_media_as_sticker:
            if media.is_video:
                sticker = await self.convert_video_to_sticker(media)
                if sticker is None:
                    logger.warning("sending sticker from unconverted %s video", media.mimetype)
                else:
                    media = sticker

            if options.has_sticker_metadata:
                if media.essence == STICKER_MIMETYPE:
                    try:
                        data = self.inject_sticker_metadata(
                            media.to_bytes(),
                            options.sticker_name,
                            options.sticker_author,
                            options.sticker_categories,
                        )
                    except ValueError as e:
                        logger.warning("sticker metadata injection failed: %s", e)
                    else:
                        media = media.with_bytes(data)
                else:
                    logger.debug("not embedding sticker metadata into %s", media.mimetype)

        return PreparedMedia(media=media, waveform=waveform)
