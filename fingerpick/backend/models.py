"""Domain models shared by the registry, selector and session state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import math
from typing import Any, Hashable

from fingerpick.backend.exceptions import UnknownMode

ContactId = Hashable


class Mode(str, Enum):
    SELECT = "select"
    SECOND_PLACED = "second_placed"
    ELIMINATION = "elimination"
    ZONE_EXCLUSION = "zone_exclusion"
    REGISTRATION = "registration"

    @classmethod
    def parse(cls, value: str | Mode) -> Mode:
        if isinstance(value, Mode):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            raise UnknownMode(value) from exc


class Phase(str, Enum):
    IDLE = "idle"
    REGISTERING = "registering"
    STABILIZING = "stabilizing"
    COUNTDOWN = "countdown"
    SHOWING = "showing"
    WINNER_WAIT = "winner_wait"


class Condition(str, Enum):
    """Recoverable conditions reported to the rendering side."""

    INSUFFICIENT_PARTICIPANTS = "insufficient_participants"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    STALE_SNAPSHOT = "stale_snapshot"
    EMPTY_ELIMINATION_POOL = "empty_elimination_pool"


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def distance_to(self, other: Position) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass
class Contact:
    contact_id: ContactId
    position: Position
    placed_at: float
    eliminated: bool = False


@dataclass(frozen=True)
class ExclusionZone:
    """Axis-aligned rectangle; contacts inside it are drawn only as a fallback."""

    x: float
    y: float
    width: float
    height: float

    def contains(self, position: Position) -> bool:
        return self.x <= position.x <= self.x + self.width and self.y <= position.y <= self.y + self.height

    def as_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class InputResult:
    state: dict[str, Any]
    engine_events: list[dict[str, Any]] = field(default_factory=list)
    accepted: bool = True


@dataclass(frozen=True)
class CreatedSession:
    session_id: str
    state: dict[str, Any]
