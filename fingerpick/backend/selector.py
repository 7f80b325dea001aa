"""Selection policies and elimination bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import secrets
from typing import Callable, Container, Mapping, Protocol, Sequence

from fingerpick.backend.models import ContactId, ExclusionZone, Mode, Position

logger = logging.getLogger(__name__)

RandBelow = Callable[[int], int]


def draw_uniform(contact_ids: Sequence[ContactId], rand_below: RandBelow = secrets.randbelow) -> ContactId:
    """Uniform draw. ``secrets.randbelow`` rejects out-of-range samples, so there is no modulo bias."""
    if not contact_ids:
        raise ValueError("cannot draw from an empty participant set")
    return contact_ids[rand_below(len(contact_ids))]


def pick_second_placed(placement_order: Sequence[ContactId]) -> ContactId:
    """Second contact by placement time, or the only one when alone."""
    if not placement_order:
        raise ValueError("cannot pick from an empty participant set")
    if len(placement_order) == 1:
        return placement_order[0]
    return placement_order[1]


def partition_by_zone(
    contact_ids: Sequence[ContactId],
    positions: Mapping[ContactId, Position],
    zone: ExclusionZone | None,
) -> tuple[list[ContactId], list[ContactId]]:
    """Split ids into (outside, inside) the zone. Ids without a position count as outside."""
    if zone is None:
        return list(contact_ids), []
    outside: list[ContactId] = []
    inside: list[ContactId] = []
    for contact_id in contact_ids:
        position = positions.get(contact_id)
        if position is not None and zone.contains(position):
            inside.append(contact_id)
        else:
            outside.append(contact_id)
    return outside, inside


def draw_outside_zone(
    contact_ids: Sequence[ContactId],
    positions: Mapping[ContactId, Position],
    zone: ExclusionZone | None,
    rand_below: RandBelow = secrets.randbelow,
) -> ContactId:
    outside, _ = partition_by_zone(contact_ids, positions, zone)
    if outside:
        return draw_uniform(outside, rand_below)
    logger.info("Every participant is inside the exclusion zone, drawing from all %d", len(contact_ids))
    return draw_uniform(contact_ids, rand_below)


@dataclass(frozen=True)
class SelectionContext:
    positions: Mapping[ContactId, Position] = field(default_factory=dict)
    placement_order: Sequence[ContactId] = ()
    zone: ExclusionZone | None = None
    rand_below: RandBelow = secrets.randbelow


class SelectionPolicy(Protocol):
    name: str

    def choose(self, participants: Sequence[ContactId], context: SelectionContext) -> ContactId:
        """Return one id out of ``participants``."""


class UniformPolicy:
    name = "uniform"

    def choose(self, participants: Sequence[ContactId], context: SelectionContext) -> ContactId:
        return draw_uniform(participants, context.rand_below)


class SecondPlacedPolicy:
    name = "second_placed"

    def choose(self, participants: Sequence[ContactId], context: SelectionContext) -> ContactId:
        wanted = set(participants)
        ordered = [contact_id for contact_id in context.placement_order if contact_id in wanted]
        # ids missing from the placement order go last, in the order given
        seen = set(ordered)
        ordered.extend(contact_id for contact_id in participants if contact_id not in seen)
        return pick_second_placed(ordered)


class ZoneExclusionPolicy:
    name = "zone_exclusion"

    def choose(self, participants: Sequence[ContactId], context: SelectionContext) -> ContactId:
        return draw_outside_zone(participants, context.positions, context.zone, context.rand_below)


class RegistrationDrawPolicy(UniformPolicy):
    name = "registration_draw"


class EliminationPolicy(UniformPolicy):
    """Draws the participant to eliminate, not the winner."""

    name = "elimination"


POLICIES: dict[Mode, SelectionPolicy] = {
    Mode.SELECT: UniformPolicy(),
    Mode.SECOND_PLACED: SecondPlacedPolicy(),
    Mode.ZONE_EXCLUSION: ZoneExclusionPolicy(),
    Mode.REGISTRATION: RegistrationDrawPolicy(),
    Mode.ELIMINATION: EliminationPolicy(),
}


def policy_for(mode: Mode) -> SelectionPolicy:
    return POLICIES[mode]


@dataclass(frozen=True)
class EliminationStep:
    loser: ContactId | None
    survivor: ContactId | None
    remaining: tuple

    @property
    def exhausted(self) -> bool:
        return self.loser is None and self.survivor is None


class EliminationLedger:
    """Tracks ``remaining`` and ``eliminated`` across elimination rounds.

    The two sets are disjoint at all times.
    """

    def __init__(self, policy: SelectionPolicy | None = None) -> None:
        self._policy = policy if policy is not None else POLICIES[Mode.ELIMINATION]
        self._remaining: dict[ContactId, None] = {}
        self._eliminated: dict[ContactId, None] = {}

    @property
    def started(self) -> bool:
        return bool(self._remaining) or bool(self._eliminated)

    @property
    def remaining(self) -> list[ContactId]:
        return list(self._remaining)

    @property
    def eliminated(self) -> list[ContactId]:
        return list(self._eliminated)

    def is_eliminated(self, contact_id: ContactId) -> bool:
        return contact_id in self._eliminated

    def begin(self, participants: Sequence[ContactId]) -> None:
        self._remaining = dict.fromkeys(participants)
        self._eliminated = {}

    def pool(self, present: Container) -> list[ContactId]:
        return [
            contact_id
            for contact_id in self._remaining
            if contact_id in present and contact_id not in self._eliminated
        ]

    def step(self, present: Container, context: SelectionContext) -> EliminationStep:
        pool = self.pool(present)
        if not pool:
            return EliminationStep(loser=None, survivor=None, remaining=())
        if len(pool) == 1:
            return EliminationStep(loser=None, survivor=pool[0], remaining=tuple(pool))

        loser = self._policy.choose(pool, context)
        self._remaining.pop(loser, None)
        self._eliminated[loser] = None
        left = self.pool(present)
        survivor = left[0] if len(left) == 1 else None
        return EliminationStep(loser=loser, survivor=survivor, remaining=tuple(self._remaining))

    def forget(self, contact_id: ContactId) -> None:
        """Drop a released id so a later contact may reuse it."""
        self._remaining.pop(contact_id, None)
        self._eliminated.pop(contact_id, None)

    def clear(self) -> None:
        self._remaining = {}
        self._eliminated = {}
