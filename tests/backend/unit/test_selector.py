from collections import Counter
import random

import pytest

from fingerpick.backend.models import ExclusionZone, Mode, Position
from fingerpick.backend.selector import (
    EliminationLedger,
    SelectionContext,
    SecondPlacedPolicy,
    UniformPolicy,
    ZoneExclusionPolicy,
    draw_uniform,
    partition_by_zone,
    pick_second_placed,
    policy_for,
)


def test_uniform_draw_is_fair_over_many_trials() -> None:
    participants = ["a", "b", "c", "d", "e", "f", "g"]
    trials = 100_000

    counts = Counter(draw_uniform(participants) for _ in range(trials))

    expected = trials / len(participants)
    assert set(counts) == set(participants)
    for contact_id in participants:
        # roughly six standard deviations
        assert abs(counts[contact_id] - expected) < 0.05 * expected


def test_uniform_draw_rejects_empty_set() -> None:
    with pytest.raises(ValueError):
        draw_uniform([])


def test_second_placed_uses_placement_order_not_given_order() -> None:
    policy = SecondPlacedPolicy()
    context = SelectionContext(placement_order=["first", "second", "third"])

    assert policy.choose(["third", "first", "second"], context) == "second"
    assert pick_second_placed(["only"]) == "only"


def test_second_placed_skips_ids_that_are_no_longer_participants() -> None:
    policy = SecondPlacedPolicy()
    context = SelectionContext(placement_order=["first", "gone", "third"])

    assert policy.choose(["first", "third"], context) == "third"


def test_zone_exclusion_draws_only_outside_ids() -> None:
    zone = ExclusionZone(x=0, y=0, width=100, height=100)
    positions = {"in1": Position(10, 10), "in2": Position(90, 50), "out": Position(300, 300)}
    context = SelectionContext(positions=positions, zone=zone, rand_below=lambda n: n - 1)

    assert partition_by_zone(list(positions), positions, zone) == (["out"], ["in1", "in2"])
    for _ in range(20):
        assert ZoneExclusionPolicy().choose(list(positions), context) == "out"


def test_zone_exclusion_falls_back_to_everyone_when_all_inside() -> None:
    zone = ExclusionZone(x=0, y=0, width=100, height=100)
    positions = {"a": Position(10, 10), "b": Position(20, 20)}
    rng = random.Random(5)
    context = SelectionContext(positions=positions, zone=zone, rand_below=rng.randrange)

    picks = {ZoneExclusionPolicy().choose(["a", "b"], context) for _ in range(50)}

    assert picks == {"a", "b"}


def test_policies_are_distinct_per_mode() -> None:
    assert isinstance(policy_for(Mode.SELECT), UniformPolicy)
    assert isinstance(policy_for(Mode.SECOND_PLACED), SecondPlacedPolicy)
    assert isinstance(policy_for(Mode.ZONE_EXCLUSION), ZoneExclusionPolicy)
    assert policy_for(Mode.REGISTRATION).name == "registration_draw"
    assert policy_for(Mode.ELIMINATION).name == "elimination"


@pytest.mark.parametrize("size", [2, 3, 5, 8])
def test_elimination_terminates_after_k_minus_one_steps(size: int) -> None:
    participants = [f"p{index}" for index in range(size)]
    present = set(participants)
    ledger = EliminationLedger()
    ledger.begin(participants)
    context = SelectionContext(rand_below=random.Random(size).randrange)

    steps = []
    while True:
        step = ledger.step(present, context)
        steps.append(step)
        assert not set(ledger.remaining) & set(ledger.eliminated)
        if step.survivor is not None:
            break

    assert len(steps) == size - 1
    assert all(step.loser is not None for step in steps)
    survivor = steps[-1].survivor
    assert ledger.remaining == [survivor]
    assert set(ledger.eliminated) | {survivor} == set(participants)
    assert len(ledger.eliminated) == size - 1


def test_elimination_step_with_everyone_gone_is_exhausted() -> None:
    ledger = EliminationLedger()
    ledger.begin(["a", "b"])

    step = ledger.step(set(), SelectionContext())

    assert step.exhausted is True
    assert ledger.eliminated == []


def test_elimination_step_with_single_present_declares_survivor() -> None:
    ledger = EliminationLedger()
    ledger.begin(["a", "b", "c"])

    step = ledger.step({"b"}, SelectionContext())

    assert step.loser is None
    assert step.survivor == "b"


def test_forget_releases_id_from_both_sets() -> None:
    ledger = EliminationLedger()
    ledger.begin(["a", "b", "c"])
    ledger.step({"a", "b", "c"}, SelectionContext(rand_below=lambda n: 0))

    ledger.forget("a")
    ledger.forget("b")

    assert ledger.eliminated == []
    assert ledger.remaining == ["c"]
