"""Fixed-duration countdown over a locked participant snapshot."""

from __future__ import annotations

import logging
from typing import Callable, Container, Sequence

from fingerpick.backend.models import ContactId
from fingerpick.backend.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)


def still_present(contact_ids: Sequence[ContactId], live: Container) -> list[ContactId]:
    return [contact_id for contact_id in contact_ids if contact_id in live]


class CountdownController:
    def __init__(
        self,
        scheduler: TimerScheduler,
        duration_ms: float,
        on_complete: Callable[[tuple, int], None],
    ) -> None:
        if duration_ms <= 0:
            raise ValueError("duration_ms must be positive")
        self._scheduler = scheduler
        self._duration_ms = duration_ms
        self._on_complete = on_complete
        self._handle: TimerHandle | None = None
        self._locked: tuple = ()
        self._started_at: float | None = None

    @property
    def locked_participants(self) -> tuple:
        return self._locked

    @property
    def started_at(self) -> float | None:
        return self._started_at

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.pending

    def start(self, participants: Sequence[ContactId], token: int) -> None:
        self.cancel()
        self._locked = tuple(participants)
        self._started_at = self._scheduler.now()
        self._handle = self._scheduler.schedule(self._duration_ms, token, self._fire)
        logger.debug("Countdown started over %d ids (token=%d)", len(self._locked), token)

    def cancel(self) -> None:
        """Discard the countdown. Safe to call at any time."""
        self._scheduler.cancel(self._handle)
        self._handle = None
        self._locked = ()
        self._started_at = None

    def progress(self) -> float:
        if not self._locked or self._started_at is None:
            return 0.0
        elapsed = self._scheduler.now() - self._started_at
        return min(1.0, max(0.0, elapsed / self._duration_ms))

    def _fire(self, token: int) -> None:
        self._handle = None
        if not self._locked:
            return
        self._on_complete(self._locked, token)
