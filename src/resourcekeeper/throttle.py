"""Trailing-edge throttle for bursty reapply triggers."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = structlog.get_logger()


class Throttle:
    """Collapse triggers into at most one callback run per ``interval`` seconds.

    A trigger schedules the callback for the end of the current window; any
    further trigger inside the window replaces the scheduled one, so the last
    trigger wins. ``cancel()`` is synchronous: once it returns nothing
    scheduled by earlier triggers will start.
    """

    def __init__(self, interval: float, callback: Callable[[str], Awaitable[object]]) -> None:
        self.interval = interval
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[object] | None = None
        self._last_run: float | None = None
        self.last_reason: str | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, reason: str = "") -> None:
        loop = asyncio.get_running_loop()
        self.last_reason = reason
        if self._handle is not None:
            self._handle.cancel()
        delay = 0.0
        if self._last_run is not None:
            delay = max(0.0, self.interval - (loop.time() - self._last_run))
        self._handle = loop.call_later(delay, self._fire, reason)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _fire(self, reason: str) -> None:
        self._handle = None
        self._last_run = asyncio.get_running_loop().time()
        self._task = asyncio.ensure_future(self._callback(reason))
        self._task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[object]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("throttled_callback_error", exc_info=exc)
