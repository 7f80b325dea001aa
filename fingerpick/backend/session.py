"""Session state machine: contacts in, phases and winners out.

A session owns one contact registry and one ``RoundState``. Every input
callback and every timer callback runs to completion before the next one,
so nothing here locks. Timers are scheduled under the round generation; any
interruption bumps the generation so a timer that slips past cancellation
finds a token that no longer matches and does nothing.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Callable

from fingerpick.backend.config import SessionConfig
from fingerpick.backend.countdown import CountdownController, still_present
from fingerpick.backend.exceptions import InvalidStateTransition
from fingerpick.backend.models import (
    Condition,
    ContactId,
    ExclusionZone,
    InputResult,
    Mode,
    Phase,
    Position,
)
from fingerpick.backend.registry import ContactRegistry, UpsertOutcome
from fingerpick.backend.selector import RandBelow, SelectionContext, policy_for
from fingerpick.backend.stability import EligibilitySignature, StabilityDetector, StabilityOutcome
from fingerpick.backend.state import RoundState, build_snapshot, initial_phase
from fingerpick.backend.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)

Listener = Callable[[InputResult], None]

_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.STABILIZING, Phase.WINNER_WAIT, Phase.REGISTERING}),
    Phase.REGISTERING: frozenset({Phase.COUNTDOWN, Phase.IDLE}),
    Phase.STABILIZING: frozenset({Phase.IDLE, Phase.COUNTDOWN, Phase.WINNER_WAIT}),
    Phase.COUNTDOWN: frozenset(
        {Phase.IDLE, Phase.STABILIZING, Phase.SHOWING, Phase.WINNER_WAIT, Phase.REGISTERING}
    ),
    Phase.SHOWING: frozenset({Phase.IDLE, Phase.STABILIZING, Phase.WINNER_WAIT}),
    Phase.WINNER_WAIT: frozenset({Phase.IDLE, Phase.REGISTERING}),
}

_RESULT_PHASES = (Phase.SHOWING, Phase.WINNER_WAIT)


class Session:
    def __init__(
        self,
        scheduler: TimerScheduler,
        config: SessionConfig | None = None,
        mode: Mode | str = Mode.SELECT,
        rand_below: RandBelow = secrets.randbelow,
        exclusion_zone: ExclusionZone | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._config = config if config is not None else SessionConfig()
        self._rand_below = rand_below
        self._registry = ContactRegistry(capacity=self._config.capacity, clock=scheduler.now)
        self._round = RoundState.initial(Mode.parse(mode), exclusion_zone)
        self._stability = StabilityDetector(
            scheduler,
            self._config.stable_ms,
            eligible_ids=self.eligible_ids,
            on_stable=self._on_stable,
            on_stale=self._on_stale,
        )
        self._countdown = CountdownController(
            scheduler,
            self._config.countdown_ms,
            on_complete=self._on_countdown_complete,
        )
        self._display_handle: TimerHandle | None = None
        self._rejected_ids: set[ContactId] = set()
        self._next_registration_id = 1
        self._events: list[dict[str, Any]] = []
        self._listeners: list[Listener] = []

    @property
    def mode(self) -> Mode:
        return self._round.mode

    @property
    def phase(self) -> Phase:
        return self._round.phase

    @property
    def winner_id(self) -> ContactId | None:
        return self._round.winner_id

    @property
    def registry(self) -> ContactRegistry:
        return self._registry

    @property
    def round_state(self) -> RoundState:
        return self._round

    @property
    def locked_participants(self) -> tuple:
        return self._countdown.locked_participants

    def progress(self) -> float:
        return self._countdown.progress()

    def eligible_ids(self) -> list[ContactId]:
        ledger = self._round.elimination
        if self._round.mode is Mode.ELIMINATION and ledger.started:
            return ledger.pool(self._registry)
        return [contact_id for contact_id in self._registry.ids() if not ledger.is_eliminated(contact_id)]

    def snapshot(self) -> dict[str, Any]:
        return build_snapshot(self._round, self._registry, self._countdown)

    def add_listener(self, listener: Listener) -> None:
        """Register a callback for changes driven by timers rather than input."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def close(self) -> None:
        self._cancel_timers()
        self._round.next_generation()
        self._listeners.clear()

    # Input surface

    def on_contact_start(self, contact_id: ContactId, x: float, y: float) -> InputResult:
        if self._round.mode is Mode.REGISTRATION:
            return self._commit(accepted=False)
        outcome = self._registry.upsert(contact_id, Position(x, y))
        if outcome is UpsertOutcome.REJECTED:
            return self._capacity_rejected(contact_id)
        self._round.capacity_exceeded = False
        self._rejected_ids.discard(contact_id)
        if outcome is UpsertOutcome.UPDATED:
            return self._commit()

        self._emit("contact_added", contactId=contact_id)
        if self._round.phase is Phase.WINNER_WAIT:
            self._reset_round("new_contact")
        else:
            self._membership_changed()
        return self._commit()

    def on_contact_move(self, contact_id: ContactId, x: float, y: float) -> InputResult:
        if self._round.mode is Mode.REGISTRATION:
            return self._commit(accepted=False)
        moved = self._registry.update_position(contact_id, Position(x, y))
        return self._commit(accepted=moved)

    def on_contact_end(self, contact_id: ContactId) -> InputResult:
        return self._release(contact_id, cancelled=False)

    def on_contact_cancel(self, contact_id: ContactId) -> InputResult:
        return self._release(contact_id, cancelled=True)

    def on_registration_tap(self, x: float, y: float) -> InputResult:
        rs = self._round
        if rs.mode is not Mode.REGISTRATION:
            return self._commit(accepted=False)
        if rs.phase is Phase.WINNER_WAIT:
            # the tap only dismisses the shown result
            self._reset_round("new_tap")
            return self._commit()

        position = Position(x, y)
        existing = self._registry.nearest(position, self._config.tap_radius)
        if existing is not None:
            self._registry.remove(existing.contact_id)
            self._emit("registration_removed", contactId=existing.contact_id)
        else:
            registration_id = self._next_registration_id
            if self._registry.upsert(registration_id, position) is UpsertOutcome.REJECTED:
                return self._capacity_rejected(None)
            self._next_registration_id += 1
            self._emit("registration_added", contactId=registration_id, number=self._registry.count())
        rs.capacity_exceeded = False
        self._membership_changed()
        return self._commit()

    def on_manual_advance(self) -> InputResult:
        rs = self._round
        if rs.mode is not Mode.REGISTRATION or rs.phase is not Phase.REGISTERING:
            self._emit("advance_rejected", phase=rs.phase.value)
            return self._commit(accepted=False)
        if self._registry.count() < 2:
            rs.condition = Condition.INSUFFICIENT_PARTICIPANTS
            self._emit("condition", condition=Condition.INSUFFICIENT_PARTICIPANTS.value)
            return self._commit(accepted=False)
        rs.condition = None
        self._start_countdown(self._registry.ids())
        return self._commit()

    def on_mode_change(self, mode: Mode | str) -> InputResult:
        target = Mode.parse(mode)
        rs = self._round
        if rs.phase not in (Phase.IDLE, Phase.REGISTERING):
            logger.info("Mode change to %s rejected during %s", target.value, rs.phase.value)
            self._emit("mode_change_rejected", mode=target.value, phase=rs.phase.value)
            return self._commit(accepted=False)

        crossing = (rs.mode is Mode.REGISTRATION) != (target is Mode.REGISTRATION)
        self._cancel_timers()
        rs.next_generation()
        rs.clear_round()
        rs.mode = target
        rs.capacity_exceeded = False
        self._registry.clear_eliminated()
        if crossing:
            # touches and tap registrations never share a registry
            self._registry.clear()
            self._rejected_ids.clear()
            self._next_registration_id = 1
        self._emit("mode_changed", mode=target.value)
        self._enter(initial_phase(target))
        self._evaluate()
        return self._commit()

    def set_exclusion_zone(self, zone: ExclusionZone | None) -> InputResult:
        self._round.exclusion_zone = zone
        self._emit("zone_changed", zone=zone.as_dict() if zone is not None else None)
        return self._commit()

    def reset(self) -> InputResult:
        self._reset_round("manual")
        return self._commit()

    # Transitions

    def _release(self, contact_id: ContactId, cancelled: bool) -> InputResult:
        rs = self._round
        if contact_id in self._rejected_ids:
            self._rejected_ids.discard(contact_id)
            return self._commit(accepted=False)
        if rs.mode is Mode.REGISTRATION:
            return self._commit(accepted=False)
        if self._registry.remove(contact_id) is None:
            return self._commit(accepted=False)

        rs.capacity_exceeded = False
        rs.elimination.forget(contact_id)
        self._emit("contact_removed", contactId=contact_id, cancelled=cancelled)

        if rs.phase in _RESULT_PHASES:
            if contact_id == rs.winner_id:
                self._reset_round("winner_released")
            elif self._registry.count() == 0:
                self._reset_round("last_contact_left")
        else:
            self._membership_changed()
        return self._commit()

    def _membership_changed(self) -> None:
        """Restart stability detection after a contact was added or removed."""
        phase = self._round.phase
        if phase in _RESULT_PHASES:
            return
        if phase is Phase.COUNTDOWN:
            self._cancel_countdown("membership_changed")
        self._evaluate()

    def _evaluate(self) -> None:
        rs = self._round
        self._stability.cancel()
        if rs.mode is Mode.REGISTRATION:
            rs.condition = None
            self._enter(Phase.REGISTERING)
            return

        if rs.mode is Mode.ELIMINATION and rs.elimination.started:
            pool = self.eligible_ids()
            if not pool:
                self._abort_elimination()
                return
            if len(pool) == 1:
                self._declare_winner(pool[0])
                return

        outcome = self._stability.evaluate(rs.generation)
        if outcome is StabilityOutcome.INSUFFICIENT:
            rs.condition = Condition.INSUFFICIENT_PARTICIPANTS if self._registry.count() else None
            self._enter(Phase.IDLE)
        else:
            rs.condition = None
            self._enter(Phase.STABILIZING)

    def _start_countdown(self, participants: list[ContactId] | tuple) -> None:
        self._enter(Phase.COUNTDOWN)
        self._countdown.start(participants, self._round.generation)
        self._emit("countdown_started", participants=list(participants))

    def _cancel_countdown(self, reason: str) -> None:
        self._countdown.cancel()
        self._round.next_generation()
        logger.info("Countdown cancelled: %s", reason)
        self._emit("countdown_cancelled", reason=reason)

    def _declare_winner(self, contact_id: ContactId) -> None:
        rs = self._round
        self._stability.cancel()
        rs.winner_id = contact_id
        rs.condition = None
        self._enter(Phase.WINNER_WAIT)
        logger.info("Selected %r (mode=%s, round=%d)", contact_id, rs.mode.value, rs.round)
        self._emit("winner_selected", contactId=contact_id, mode=rs.mode.value, round=rs.round)

    def _resolve_elimination_step(self, present: list[ContactId]) -> None:
        rs = self._round
        ledger = rs.elimination
        if not ledger.started:
            ledger.begin(present)
        step = ledger.step(self._registry, self._selection_context())
        if step.exhausted:
            self._abort_elimination()
            return
        if step.loser is not None:
            self._registry.set_eliminated(step.loser)
            logger.info("Eliminated %r, %d remaining", step.loser, len(step.remaining))
            self._emit("eliminated", contactId=step.loser, remainingIds=list(step.remaining), round=rs.round)
        if step.survivor is not None:
            self._declare_winner(step.survivor)
            return
        self._enter(Phase.SHOWING)
        self._display_handle = self._scheduler.schedule(
            self._config.display_ms, rs.generation, self._on_display_elapsed
        )

    def _abort_elimination(self) -> None:
        logger.warning("Elimination pool is empty, resetting round")
        self._emit("condition", condition=Condition.EMPTY_ELIMINATION_POOL.value)
        self._reset_round(Condition.EMPTY_ELIMINATION_POOL.value)

    def _reset_round(self, reason: str) -> None:
        rs = self._round
        self._cancel_timers()
        rs.next_generation()
        rs.clear_round()
        self._registry.clear_eliminated()
        self._rejected_ids.clear()
        self._emit("round_reset", reason=reason)
        self._enter(initial_phase(rs.mode))
        self._evaluate()

    def _cancel_timers(self) -> None:
        self._stability.cancel()
        self._countdown.cancel()
        self._scheduler.cancel(self._display_handle)
        self._display_handle = None

    def _enter(self, phase: Phase) -> None:
        current = self._round.phase
        if phase is current:
            return
        if phase not in _TRANSITIONS[current]:
            raise InvalidStateTransition(current.value, phase.value)
        self._round.phase = phase
        logger.info("Phase %s -> %s", current.value, phase.value)
        self._emit("phase_changed", phase=phase.value, previous=current.value)

    def _selection_context(self) -> SelectionContext:
        contacts = self._registry.all()
        return SelectionContext(
            positions={contact.contact_id: contact.position for contact in contacts},
            placement_order=self._registry.placement_order(contact.contact_id for contact in contacts),
            zone=self._round.exclusion_zone,
            rand_below=self._rand_below,
        )

    def _capacity_rejected(self, contact_id: ContactId | None) -> InputResult:
        self._round.capacity_exceeded = True
        if contact_id is None or contact_id not in self._rejected_ids:
            if contact_id is not None:
                self._rejected_ids.add(contact_id)
            logger.warning("Capacity of %s contacts reached, ignoring new contact", self._registry.capacity)
            self._emit("condition", condition=Condition.CAPACITY_EXCEEDED.value, contactId=contact_id)
        return self._commit(accepted=False)

    # Timer callbacks

    def _on_stable(self, signature: EligibilitySignature, token: int) -> None:
        rs = self._round
        if token != rs.generation or rs.phase is not Phase.STABILIZING:
            return
        self._start_countdown(signature.ordered)
        self._publish()

    def _on_stale(self, token: int) -> None:
        rs = self._round
        if token != rs.generation or rs.phase is not Phase.STABILIZING:
            return
        self._emit("condition", condition=Condition.STALE_SNAPSHOT.value)
        self._evaluate()
        self._publish()

    def _on_countdown_complete(self, locked: tuple, token: int) -> None:
        rs = self._round
        if token != rs.generation or rs.phase is not Phase.COUNTDOWN:
            return
        present = still_present(locked, self._registry)
        if len(present) < 2:
            self._cancel_countdown("participants_left")
            self._evaluate()
        elif rs.mode is Mode.ELIMINATION:
            self._resolve_elimination_step(present)
        else:
            winner = policy_for(rs.mode).choose(present, self._selection_context())
            self._declare_winner(winner)
        self._publish()

    def _on_display_elapsed(self, token: int) -> None:
        rs = self._round
        self._display_handle = None
        if token != rs.generation or rs.phase is not Phase.SHOWING:
            return
        self._countdown.cancel()
        rs.round += 1
        self._emit("round_started", round=rs.round, remainingIds=rs.elimination.remaining)
        self._evaluate()
        self._publish()

    # Event plumbing

    def _emit(self, kind: str, **payload: Any) -> None:
        self._events.append({"kind": kind, **payload})

    def _commit(self, accepted: bool = True) -> InputResult:
        events = self._events
        self._events = []
        if accepted or events:
            self._round.version += 1
        return InputResult(state=self.snapshot(), engine_events=events, accepted=accepted)

    def _publish(self) -> None:
        result = self._commit()
        for listener in list(self._listeners):
            listener(result)
