from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    """Cancel `task` and wait for it to finish; None and the current task are skipped."""

    if task is None or task.done():
        return
    # Awaiting the current task would raise "Task cannot await on itself".
    if task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background task %s failed: %r", task.get_name(), exc)


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    """Start a background task whose unexpected failure is logged instead of lost."""

    t: asyncio.Task[T] = asyncio.create_task(coro, name=name)
    t.add_done_callback(_log_task_failure)
    return t


async def terminate_process(proc: asyncio.subprocess.Process) -> None:
    """Kill a child process and reap it."""

    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    with contextlib.suppress(Exception):
        await proc.wait()
