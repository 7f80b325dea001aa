"""Debounced detection of a stable eligible participant set."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable, Sequence

from fingerpick.backend.models import ContactId
from fingerpick.backend.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)

MIN_PARTICIPANTS = 2


@dataclass(frozen=True)
class EligibilitySignature:
    """Eligible ids at one instant. Equality ignores order."""

    ids: frozenset
    ordered: tuple = field(compare=False)

    @classmethod
    def from_ids(cls, contact_ids: Sequence[ContactId]) -> EligibilitySignature:
        ordered = tuple(dict.fromkeys(contact_ids))
        return cls(ids=frozenset(ordered), ordered=ordered)

    @property
    def count(self) -> int:
        return len(self.ordered)


class StabilityOutcome(str, Enum):
    INSUFFICIENT = "insufficient"
    SCHEDULED = "scheduled"


class StabilityDetector:
    """Arms a hold timer whenever two or more ids are eligible.

    The signature captured when the timer is armed is compared to a fresh
    read when it fires. A match hands the snapshot to ``on_stable``; a
    mismatch is reported through ``on_stale`` so the owner can re-evaluate.
    """

    def __init__(
        self,
        scheduler: TimerScheduler,
        hold_ms: float,
        eligible_ids: Callable[[], Sequence[ContactId]],
        on_stable: Callable[[EligibilitySignature, int], None],
        on_stale: Callable[[int], None],
    ) -> None:
        self._scheduler = scheduler
        self._hold_ms = hold_ms
        self._eligible_ids = eligible_ids
        self._on_stable = on_stable
        self._on_stale = on_stale
        self._handle: TimerHandle | None = None
        self._armed_signature: EligibilitySignature | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None and self._handle.pending

    @property
    def armed_signature(self) -> EligibilitySignature | None:
        return self._armed_signature

    def current_signature(self) -> EligibilitySignature:
        return EligibilitySignature.from_ids(self._eligible_ids())

    def evaluate(self, token: int) -> StabilityOutcome:
        self.cancel()
        signature = self.current_signature()
        if signature.count < MIN_PARTICIPANTS:
            return StabilityOutcome.INSUFFICIENT
        self._armed_signature = signature
        self._handle = self._scheduler.schedule(self._hold_ms, token, self._fire)
        logger.debug("Hold timer armed for %d ids (token=%d)", signature.count, token)
        return StabilityOutcome.SCHEDULED

    def cancel(self) -> None:
        self._scheduler.cancel(self._handle)
        self._handle = None
        self._armed_signature = None

    def _fire(self, token: int) -> None:
        armed = self._armed_signature
        self._handle = None
        self._armed_signature = None
        if armed is None:
            return
        now = self.current_signature()
        if now == armed and now.count >= MIN_PARTICIPANTS:
            self._on_stable(now, token)
            return
        logger.info("Stale eligibility snapshot at hold expiry (token=%d), re-evaluating", token)
        self._on_stale(token)
