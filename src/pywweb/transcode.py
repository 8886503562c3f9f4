"""
External transcoder invocation.

`TranscodeRunner` is the narrow capability the media pipeline depends on;
`FfmpegRunner` is the production implementation. Runners report failures via
`TranscodeResult` and never raise, except for `asyncio.CancelledError`.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .constants import DEFAULT_FFMPEG, FFMPEG_BASE_ARGS
from .util.asyncio import terminate_process

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TranscodeResult:
    success: bool
    # Diagnostic stream of the transcoder, or the exception text.
    error: str = ""


class TranscodeRunner(Protocol):
    async def run(self, args: Sequence[str]) -> TranscodeResult: ...


class FfmpegRunner:
    """
    Run ffmpeg with a fixed `-y -hide_banner -loglevel error` prefix.

    Success is decided purely by the exit status; stderr is captured as the
    diagnostic text. Cancelling the awaiting task kills the child process.
    """

    def __init__(self, binary: str | None = None, *, timeout_s: float | None = None) -> None:
        self.binary = binary or DEFAULT_FFMPEG
        self.timeout_s = timeout_s

    def command(self, args: Sequence[str]) -> list[str]:
        return [self.binary, *FFMPEG_BASE_ARGS, *args]

    async def run(self, args: Sequence[str]) -> TranscodeResult:
        cmd = self.command(args)
        logger.debug("transcode: %s", shlex.join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except Exception as e:
            return TranscodeResult(success=False, error=str(e))

        try:
            async with asyncio.timeout(self.timeout_s):
                _stdout, stderr = await proc.communicate()
        except (asyncio.CancelledError, TimeoutError) as e:
            await terminate_process(proc)
            if isinstance(e, asyncio.CancelledError):
                raise
            return TranscodeResult(
                success=False, error=f"{self.binary} timed out after {self.timeout_s}s"
            )
        except Exception as e:
            return TranscodeResult(success=False, error=str(e))

        text = (stderr or b"").decode("utf-8", errors="replace").strip()
        return TranscodeResult(success=proc.returncode == 0, error=text)
