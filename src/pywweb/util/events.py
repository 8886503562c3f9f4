from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields
from typing import Any, Generic, ParamSpec

from ..types import ConnectionState, DisconnectReason

P = ParamSpec("P")

Listener = Callable[..., Awaitable[None]] | Callable[..., None]


class EventChannel(Generic[P]):
    """
    Typed, ordered broadcast channel for one event kind.

    - `subscribe(fn)` registers a listener (sync or async).
    - `emit(*args)` calls listeners in registration order, awaiting each one
      before the next starts.
    - `wait_for_future(predicate)` resolves on the next matching emission.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[P, Awaitable[None] | None]] = []
        self._waiters: list[tuple[Callable[P, bool] | None, asyncio.Future[Any]]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[P, Awaitable[None] | None]) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[P, Awaitable[None] | None]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def wait_for_future(self, *, predicate: Callable[P, bool] | None = None) -> asyncio.Future[Any]:
        """
        Register a waiter *synchronously* and return its Future.

        This avoids a common race where the event could be emitted between
        constructing an awaitable and actually awaiting it.
        """
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Any] = loop.create_future()
        self._waiters.append((predicate, fut))
        return fut

    def remove_waiter(self, fut: asyncio.Future[Any]) -> None:
        self._waiters = [(p, f) for (p, f) in self._waiters if f is not fut and not f.done()]

    async def emit(self, *args: P.args, **kwargs: P.kwargs) -> bool:
        any_triggered = False

        if self._waiters:
            remaining: list[tuple[Callable[P, bool] | None, asyncio.Future[Any]]] = []
            for predicate, fut in self._waiters:
                if fut.done():
                    continue
                ok = True if predicate is None else bool(predicate(*args, **kwargs))
                if ok:
                    fut.set_result(args[0] if args else None)
                    any_triggered = True
                else:
                    remaining.append((predicate, fut))
            self._waiters = remaining

        for listener in list(self._listeners):
            any_triggered = True
            res = listener(*args, **kwargs)
            if inspect.isawaitable(res):
                await res

        return any_triggered

    async def wait_for(
        self, *, predicate: Callable[P, bool] | None = None, timeout_s: float | None = None
    ) -> Any:
        fut = self.wait_for_future(predicate=predicate)
        try:
            if timeout_s is None:
                return await fut
            return await asyncio.wait_for(fut, timeout=timeout_s)
        finally:
            # Remove the future if it's still pending (timeout/cancellation).
            self.remove_waiter(fut)


def _channel(name: str) -> Any:
    return field(default_factory=lambda: EventChannel(name))


@dataclass(slots=True)
class SessionEvents:
    """The observable event surface of a session."""

    qr: EventChannel[[str]] = _channel("qr")
    code: EventChannel[[str]] = _channel("code")
    authenticated: EventChannel[[]] = _channel("authenticated")
    ready: EventChannel[[]] = _channel("ready")
    auth_state_changed: EventChannel[[ConnectionState]] = _channel("auth_state_changed")
    loading_progress: EventChannel[[int]] = _channel("loading_progress")
    disconnected: EventChannel[[DisconnectReason]] = _channel("disconnected")

    def get(self, event: str) -> EventChannel[...]:
        for f in fields(self):
            if f.name == event:
                return getattr(self, f.name)
        raise KeyError(f"unknown event: {event!r}")

    def names(self) -> list[str]:
        return [f.name for f in fields(self)]
