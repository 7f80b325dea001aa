from fingerpick.backend.config import SessionConfig
from fingerpick.backend.models import Mode, Phase
from fingerpick.backend.session import Session
from fingerpick.backend.timers import ManualScheduler

HOLD = 1000
COUNTDOWN = 2500
DISPLAY = 2000


def _elimination_session() -> tuple[Session, ManualScheduler, list[dict]]:
    scheduler = ManualScheduler()
    session = Session(
        scheduler=scheduler,
        config=SessionConfig(stable_ms=HOLD, countdown_ms=COUNTDOWN, display_ms=DISPLAY),
        mode=Mode.ELIMINATION,
        rand_below=lambda n: 0,
    )
    events: list[dict] = []
    session.add_listener(lambda result: events.extend(result.engine_events))
    return session, scheduler, events


def test_four_participants_eliminated_one_per_round_until_survivor() -> None:
    session, scheduler, events = _elimination_session()
    for contact_id in ["A", "B", "C", "D"]:
        session.on_contact_start(contact_id, 0, 0)

    scheduler.advance(HOLD + COUNTDOWN)
    assert session.phase is Phase.SHOWING
    assert session.snapshot()["remainingIds"] == ["B", "C", "D"]
    assert session.snapshot()["eliminatedIds"] == ["A"]

    scheduler.advance(DISPLAY)
    assert session.phase is Phase.STABILIZING
    assert session.eligible_ids() == ["B", "C", "D"]
    assert session.snapshot()["round"] == 2

    scheduler.advance(HOLD + COUNTDOWN)
    assert session.snapshot()["remainingIds"] == ["C", "D"]

    scheduler.advance(DISPLAY + HOLD + COUNTDOWN)

    assert session.phase is Phase.WINNER_WAIT
    assert session.winner_id == "D"
    eliminations = [event for event in events if event["kind"] == "eliminated"]
    assert [event["contactId"] for event in eliminations] == ["A", "B", "C"]
    assert [len(event["remainingIds"]) for event in eliminations] == [3, 2, 1]
    winners = [event for event in events if event["kind"] == "winner_selected"]
    assert len(winners) == 1 and winners[0]["contactId"] == "D"

    state = session.snapshot()
    assert set(state["eliminatedIds"]).isdisjoint(state["remainingIds"])
    assert set(state["eliminatedIds"]) | set(state["remainingIds"]) == {"A", "B", "C", "D"}
    assert state["status"] == "Winner"
    assert [contact["eliminated"] for contact in state["contacts"]] == [True, True, True, False]


def test_eliminated_contacts_are_not_eligible_in_later_rounds() -> None:
    session, scheduler, _ = _elimination_session()
    for contact_id in ["A", "B", "C"]:
        session.on_contact_start(contact_id, 0, 0)
    scheduler.advance(HOLD + COUNTDOWN + DISPLAY)

    session.on_contact_start("late", 0, 0)

    assert "A" not in session.eligible_ids()
    assert "late" not in session.eligible_ids()
    scheduler.advance(HOLD)
    assert session.locked_participants == ("B", "C")


def test_everyone_left_in_pool_lifting_aborts_to_idle() -> None:
    session, scheduler, events = _elimination_session()
    for contact_id in ["A", "B", "C", "D"]:
        session.on_contact_start(contact_id, 0, 0)
    scheduler.advance(HOLD + COUNTDOWN)
    assert session.phase is Phase.SHOWING

    for contact_id in ["B", "C", "D"]:
        session.on_contact_end(contact_id)
    assert session.phase is Phase.SHOWING
    scheduler.advance(DISPLAY)

    assert {"kind": "condition", "condition": "empty_elimination_pool"} in events
    assert session.phase is Phase.IDLE
    assert session.snapshot()["eliminatedIds"] == []
    assert session.snapshot()["remainingIds"] == []


def test_lone_survivor_after_lifts_is_declared_winner() -> None:
    session, scheduler, _ = _elimination_session()
    for contact_id in ["A", "B", "C", "D"]:
        session.on_contact_start(contact_id, 0, 0)
    scheduler.advance(HOLD + COUNTDOWN + DISPLAY)
    assert session.phase is Phase.STABILIZING

    session.on_contact_end("B")
    session.on_contact_end("C")

    assert session.phase is Phase.WINNER_WAIT
    assert session.winner_id == "D"


def test_last_contact_leaving_during_showing_resets() -> None:
    session, scheduler, _ = _elimination_session()
    session.on_contact_start("A", 0, 0)
    session.on_contact_start("B", 0, 0)
    session.on_contact_start("C", 0, 0)
    scheduler.advance(HOLD + COUNTDOWN)

    for contact_id in ["A", "B", "C"]:
        result = session.on_contact_end(contact_id)

    assert "round_reset" in [event["kind"] for event in result.engine_events]
    assert session.phase is Phase.IDLE
    assert scheduler.pending_count == 0


def test_two_participants_need_a_single_step() -> None:
    session, scheduler, events = _elimination_session()
    session.on_contact_start("A", 0, 0)
    session.on_contact_start("B", 0, 0)

    scheduler.advance(HOLD + COUNTDOWN)

    assert session.phase is Phase.WINNER_WAIT
    assert session.winner_id == "B"
    assert [event["contactId"] for event in events if event["kind"] == "eliminated"] == ["A"]
