"""Cancellable single-shot timers tagged with a round generation token."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[int], None]


@dataclass(eq=False)
class TimerHandle:
    token: int
    due_at: float
    callback: TimerCallback
    cancelled: bool = False
    fired: bool = False
    native: Any = field(default=None, repr=False)

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class TimerScheduler(Protocol):
    def now(self) -> float:
        """Current monotonic time in milliseconds."""

    def schedule(self, delay_ms: float, token: int, callback: TimerCallback) -> TimerHandle:
        """Run ``callback(token)`` once after ``delay_ms``."""

    def cancel(self, handle: TimerHandle | None) -> None:
        """Cancel a pending timer. Cancelling twice or after firing is a no-op."""


class ManualScheduler:
    """Scheduler driven by an explicit clock, used by tests and simulations."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms
        self._pending: list[TimerHandle] = []

    def now(self) -> float:
        return self._now

    def schedule(self, delay_ms: float, token: int, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(token=token, due_at=self._now + max(0.0, delay_ms), callback=callback)
        self._pending.append(handle)
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is None or not handle.pending:
            return
        handle.cancelled = True
        self._pending.remove(handle)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def advance(self, delta_ms: float) -> None:
        """Move the clock forward, firing due timers in due-time order."""
        target = self._now + delta_ms
        while True:
            due = [handle for handle in self._pending if handle.due_at <= target]
            if not due:
                break
            handle = min(due, key=lambda candidate: candidate.due_at)
            self._pending.remove(handle)
            self._now = max(self._now, handle.due_at)
            handle.fired = True
            handle.callback(handle.token)
        self._now = target


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later`` on a running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop if loop is not None else asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def now(self) -> float:
        return self._loop.time() * 1000.0

    def schedule(self, delay_ms: float, token: int, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(token=token, due_at=self.now() + max(0.0, delay_ms), callback=callback)
        handle.native = self._loop.call_later(max(0.0, delay_ms) / 1000.0, self._fire, handle)
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is None or not handle.pending:
            return
        handle.cancelled = True
        if handle.native is not None:
            handle.native.cancel()

    def _fire(self, handle: TimerHandle) -> None:
        if not handle.pending:
            return
        handle.fired = True
        logger.debug("Timer fired (token=%d)", handle.token)
        handle.callback(handle.token)
