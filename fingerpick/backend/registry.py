"""Contact registry: the live set of contacts keyed by their platform id."""

from __future__ import annotations

from enum import Enum
import logging
import time
from typing import Callable, Iterable

from fingerpick.backend.models import Contact, ContactId, Position

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    REJECTED = "rejected"


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class ContactRegistry:
    """Owns every live contact. Iteration follows first-placement order."""

    def __init__(self, capacity: int | None = None, clock: Callable[[], float] = _monotonic_ms) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._clock = clock
        self._contacts: dict[ContactId, Contact] = {}

    @property
    def capacity(self) -> int | None:
        return self._capacity

    def upsert(self, contact_id: ContactId, position: Position) -> UpsertOutcome:
        existing = self._contacts.get(contact_id)
        if existing is not None:
            existing.position = position
            return UpsertOutcome.UPDATED
        if self._capacity is not None and len(self._contacts) >= self._capacity:
            logger.info("Rejected contact %r: capacity %d reached", contact_id, self._capacity)
            return UpsertOutcome.REJECTED
        self._contacts[contact_id] = Contact(contact_id=contact_id, position=position, placed_at=self._clock())
        return UpsertOutcome.ADDED

    def remove(self, contact_id: ContactId) -> Contact | None:
        return self._contacts.pop(contact_id, None)

    def update_position(self, contact_id: ContactId, position: Position) -> bool:
        contact = self._contacts.get(contact_id)
        if contact is None:
            return False
        contact.position = position
        return True

    def get(self, contact_id: ContactId) -> Contact | None:
        return self._contacts.get(contact_id)

    def all(self) -> list[Contact]:
        return list(self._contacts.values())

    def ids(self) -> list[ContactId]:
        return list(self._contacts)

    def count(self) -> int:
        return len(self._contacts)

    def clear(self) -> None:
        self._contacts.clear()

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in self._contacts

    def set_eliminated(self, contact_id: ContactId, eliminated: bool = True) -> None:
        contact = self._contacts.get(contact_id)
        if contact is not None:
            contact.eliminated = eliminated

    def clear_eliminated(self) -> None:
        for contact in self._contacts.values():
            contact.eliminated = False

    def nearest(self, position: Position, radius: float) -> Contact | None:
        """Closest contact within ``radius`` of ``position``, if any."""
        best: Contact | None = None
        best_distance = radius
        for contact in self._contacts.values():
            distance = contact.position.distance_to(position)
            if distance <= best_distance:
                best = contact
                best_distance = distance
        return best

    def placement_order(self, contact_ids: Iterable[ContactId]) -> list[ContactId]:
        """Order ids by placement timestamp; equal timestamps keep insertion order."""
        wanted = set(contact_ids)
        tracked = [contact for contact in self._contacts.values() if contact.contact_id in wanted]
        tracked.sort(key=lambda contact: contact.placed_at)
        return [contact.contact_id for contact in tracked]
