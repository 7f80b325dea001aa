from fingerpick.backend.config import SessionConfig
from fingerpick.backend.models import Mode, Phase
from fingerpick.backend.session import Session
from fingerpick.backend.timers import ManualScheduler


def _registration_session(capacity: int | None = 10) -> tuple[Session, ManualScheduler]:
    scheduler = ManualScheduler()
    session = Session(
        scheduler=scheduler,
        config=SessionConfig(countdown_ms=2500, capacity=capacity, tap_radius=50),
        mode=Mode.REGISTRATION,
        rand_below=lambda n: n - 1,
    )
    return session, scheduler


def _numbers(session: Session) -> list[tuple[int, int]]:
    return [(contact["id"], contact["number"]) for contact in session.snapshot()["contacts"]]


def test_session_starts_registering() -> None:
    session, _ = _registration_session()

    assert session.phase is Phase.REGISTERING
    assert session.snapshot()["status"] == "Tap to add players, then draw."


def test_taps_register_and_toggle_with_renumbering() -> None:
    session, _ = _registration_session()
    session.on_registration_tap(100, 100)
    session.on_registration_tap(300, 100)
    session.on_registration_tap(500, 100)
    assert _numbers(session) == [(1, 1), (2, 2), (3, 3)]

    result = session.on_registration_tap(310, 120)

    assert result.engine_events[0] == {"kind": "registration_removed", "contactId": 2}
    assert _numbers(session) == [(1, 1), (3, 2)]
    session.on_registration_tap(700, 100)
    assert _numbers(session) == [(1, 1), (3, 2), (4, 3)]


def test_manual_advance_needs_two_registrations() -> None:
    session, scheduler = _registration_session()
    session.on_registration_tap(100, 100)

    result = session.on_manual_advance()

    assert result.accepted is False
    assert result.state["condition"] == "insufficient_participants"
    assert session.phase is Phase.REGISTERING
    scheduler.advance(10_000)
    assert session.phase is Phase.REGISTERING


def test_manual_advance_runs_countdown_then_draws() -> None:
    session, scheduler = _registration_session()
    for x in (100, 300, 500):
        session.on_registration_tap(x, 100)

    result = session.on_manual_advance()

    assert result.accepted is True
    assert session.phase is Phase.COUNTDOWN
    assert session.locked_participants == (1, 2, 3)
    scheduler.advance(2500)
    assert session.phase is Phase.WINNER_WAIT
    assert session.winner_id == 3


def test_registrations_alone_never_start_a_countdown() -> None:
    session, scheduler = _registration_session()
    for x in (100, 300, 500):
        session.on_registration_tap(x, 100)

    scheduler.advance(60_000)

    assert session.phase is Phase.REGISTERING
    assert session.winner_id is None


def test_tap_during_countdown_cancels_it() -> None:
    session, scheduler = _registration_session()
    for x in (100, 300):
        session.on_registration_tap(x, 100)
    session.on_manual_advance()
    scheduler.advance(1000)

    result = session.on_registration_tap(600, 100)

    assert "countdown_cancelled" in [event["kind"] for event in result.engine_events]
    assert session.phase is Phase.REGISTERING
    scheduler.advance(5000)
    assert session.winner_id is None


def test_tap_after_result_clears_it_and_keeps_registrations() -> None:
    session, scheduler = _registration_session()
    for x in (100, 300):
        session.on_registration_tap(x, 100)
    session.on_manual_advance()
    scheduler.advance(2500)
    assert session.winner_id == 2

    session.on_registration_tap(900, 900)

    assert session.winner_id is None
    assert session.phase is Phase.REGISTERING
    assert session.registry.count() == 2


def test_contact_events_are_ignored_while_registering() -> None:
    session, _ = _registration_session()

    result = session.on_contact_start("finger", 10, 10)

    assert result.accepted is False
    assert session.registry.count() == 0


def test_registration_capacity() -> None:
    session, _ = _registration_session(capacity=2)
    session.on_registration_tap(100, 100)
    session.on_registration_tap(300, 100)

    result = session.on_registration_tap(500, 100)

    assert result.accepted is False
    assert result.state["capacityExceeded"] is True
    assert session.registry.count() == 2


def test_leaving_registration_mode_drops_registrations() -> None:
    session, _ = _registration_session()
    session.on_registration_tap(100, 100)

    result = session.on_mode_change(Mode.SELECT)

    assert result.accepted is True
    assert session.phase is Phase.IDLE
    assert session.registry.count() == 0
