"""Round state owned by a session and the snapshot handed to renderers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fingerpick.backend.countdown import CountdownController
from fingerpick.backend.models import Condition, ContactId, ExclusionZone, Mode, Phase
from fingerpick.backend.registry import ContactRegistry
from fingerpick.backend.selector import EliminationLedger

STATUS_MESSAGES: dict[Phase, str] = {
    Phase.IDLE: "Place 2+ fingers. Hold steady for 1 second.",
    Phase.REGISTERING: "Tap to add players, then draw.",
    Phase.STABILIZING: "Hold steady",
    Phase.COUNTDOWN: "Choosing",
    Phase.SHOWING: "Eliminated",
    Phase.WINNER_WAIT: "Chosen",
}

CONDITION_MESSAGES: dict[Condition, str] = {
    Condition.INSUFFICIENT_PARTICIPANTS: "Need 2+ participants",
    Condition.CAPACITY_EXCEEDED: "Too many contacts",
    Condition.STALE_SNAPSHOT: "Hold steady",
    Condition.EMPTY_ELIMINATION_POOL: "Everyone left, starting over",
}


def initial_phase(mode: Mode) -> Phase:
    return Phase.REGISTERING if mode is Mode.REGISTRATION else Phase.IDLE


@dataclass
class RoundState:
    mode: Mode
    phase: Phase
    generation: int = 0
    round: int = 1
    version: int = 1
    winner_id: ContactId | None = None
    condition: Condition | None = None
    capacity_exceeded: bool = False
    exclusion_zone: ExclusionZone | None = None
    elimination: EliminationLedger = field(default_factory=EliminationLedger)

    @classmethod
    def initial(cls, mode: Mode, exclusion_zone: ExclusionZone | None = None) -> RoundState:
        return cls(mode=mode, phase=initial_phase(mode), exclusion_zone=exclusion_zone)

    @property
    def status(self) -> str:
        if self.phase is Phase.WINNER_WAIT and self.mode is Mode.ELIMINATION:
            return "Winner"
        if self.condition is not None and self.phase in (Phase.IDLE, Phase.REGISTERING):
            return CONDITION_MESSAGES[self.condition]
        return STATUS_MESSAGES[self.phase]

    def next_generation(self) -> int:
        """Invalidate every timer scheduled under the previous generation."""
        self.generation += 1
        return self.generation

    def clear_round(self) -> None:
        """Forget the winner and elimination progress. The phase is left to the caller."""
        self.winner_id = None
        self.condition = None
        self.round = 1
        self.elimination.clear()


def build_snapshot(
    round_state: RoundState,
    registry: ContactRegistry,
    countdown: CountdownController,
) -> dict[str, Any]:
    """Return the polled view of a session in the camelCase wire style."""
    locked = countdown.locked_participants
    locked_set = set(locked)
    contacts = []
    for number, contact in enumerate(registry.all(), start=1):
        contacts.append(
            {
                "id": contact.contact_id,
                "number": number,
                "x": contact.position.x,
                "y": contact.position.y,
                "placedAt": contact.placed_at,
                "eliminated": contact.eliminated,
                "winner": contact.contact_id == round_state.winner_id,
                "locked": contact.contact_id in locked_set,
            }
        )
    zone = round_state.exclusion_zone
    return {
        "mode": round_state.mode.value,
        "phase": round_state.phase.value,
        "status": round_state.status,
        "condition": round_state.condition.value if round_state.condition is not None else None,
        "round": round_state.round,
        "version": round_state.version,
        "progress": countdown.progress() if locked else 0.0,
        "contacts": contacts,
        "lockedParticipants": list(locked),
        "winnerId": round_state.winner_id,
        "eliminatedIds": round_state.elimination.eliminated,
        "remainingIds": round_state.elimination.remaining,
        "capacityExceeded": round_state.capacity_exceeded,
        "capacity": registry.capacity,
        "exclusionZone": zone.as_dict() if zone is not None else None,
    }
