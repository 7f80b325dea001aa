import asyncio

from fingerpick.backend.timers import AsyncioScheduler, ManualScheduler


def test_manual_scheduler_fires_in_due_order() -> None:
    scheduler = ManualScheduler()
    fired: list[tuple[str, int, float]] = []

    scheduler.schedule(300, 1, lambda token: fired.append(("late", token, scheduler.now())))
    scheduler.schedule(100, 2, lambda token: fired.append(("early", token, scheduler.now())))
    scheduler.advance(500)

    assert fired == [("early", 2, 100), ("late", 1, 300)]
    assert scheduler.now() == 500


def test_manual_scheduler_runs_timers_scheduled_by_callbacks() -> None:
    scheduler = ManualScheduler()
    fired: list[float] = []

    def chain(token: int) -> None:
        fired.append(scheduler.now())
        if len(fired) < 3:
            scheduler.schedule(100, token, chain)

    scheduler.schedule(100, 0, chain)
    scheduler.advance(1000)

    assert fired == [100, 200, 300]


def test_cancel_is_idempotent_and_safe_after_fire() -> None:
    scheduler = ManualScheduler()
    fired: list[int] = []

    cancelled = scheduler.schedule(100, 1, fired.append)
    done = scheduler.schedule(50, 2, fired.append)
    scheduler.cancel(cancelled)
    scheduler.cancel(cancelled)
    scheduler.advance(200)
    scheduler.cancel(done)
    scheduler.cancel(None)

    assert fired == [2]
    assert cancelled.cancelled is True
    assert done.fired is True
    assert scheduler.pending_count == 0


def test_asyncio_scheduler_fires_and_cancels() -> None:
    async def scenario() -> list[int]:
        scheduler = AsyncioScheduler()
        fired: list[int] = []
        scheduler.schedule(10, 1, fired.append)
        dropped = scheduler.schedule(10, 2, fired.append)
        scheduler.cancel(dropped)
        scheduler.cancel(dropped)
        await asyncio.sleep(0.05)
        return fired

    assert asyncio.run(scenario()) == [1]
