import random
from collections import Counter

import pytest

from core.exceptions import (
    InstanceGameLimitReached,
    NoEligibleOutcomes,
    NoOutcomesAvailable,
)
from database import get_settings
from models import Outcome, SessionStatus
from services.outcome_service import pick_weighted, select_outcome, stable_order


def _outcome(outcome_id, weight, label=None):
    return Outcome(id=outcome_id, label=label or outcome_id, probability_weight=weight)


def test_stable_order_is_weight_desc_then_id():
    outcomes = [_outcome("b", 10), _outcome("a", 10), _outcome("c", 40)]
    assert [o.id for o in stable_order(outcomes)] == ["c", "a", "b"]


def test_frequencies_follow_weights():
    outcomes = [_outcome("a", 30), _outcome("b", 10), _outcome("c", 40), _outcome("d", 15), _outcome("e", 5)]
    rng = random.Random(1234)
    n = 20000

    counts = Counter(pick_weighted(outcomes, rng).id for _ in range(n))

    for outcome in outcomes:
        expected = outcome.probability_weight / 100
        assert abs(counts[outcome.id] / n - expected) < 0.02


def test_zero_weight_is_never_selected():
    outcomes = [_outcome("zero", 0), _outcome("one", 1)]
    rng = random.Random(7)
    assert {pick_weighted(outcomes, rng).id for _ in range(500)} == {"one"}


def test_same_seed_same_sequence_regardless_of_input_order():
    outcomes = [_outcome("a", 5), _outcome("b", 3), _outcome("c", 2)]
    rng_a, rng_b = random.Random(99), random.Random(99)
    first = [pick_weighted(outcomes, rng_a).id for _ in range(50)]
    second = [pick_weighted(list(reversed(outcomes)), rng_b).id for _ in range(50)]
    assert first == second


def test_all_zero_weights_raise():
    with pytest.raises(NoEligibleOutcomes):
        pick_weighted([_outcome("a", 0), _outcome("b", 0)])


def test_select_outcome_ignores_inactive(db, make_display):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    db.add(Outcome(display_id="lobby", label="Hidden", probability_weight=1000, is_active=False))
    db.commit()

    picks = {select_outcome("lobby", db, rng=random.Random(i)).label for i in range(50)}
    assert picks == {"Prize"}


def test_select_outcome_without_outcomes(db, make_display):
    make_display("lobby", outcomes=[])
    with pytest.raises(NoOutcomesAvailable):
        select_outcome("lobby", db)


def test_occurrence_cap_excludes_exhausted_outcomes(db, make_display, make_session, monkeypatch):
    make_display("lobby", outcomes=[("Common", 99, False), ("Rare", 1, False)])
    common = db.query(Outcome).filter(Outcome.label == "Common").one()
    make_session("lobby", email="a@example.com", phone="5550000001", outcome=common)

    monkeypatch.setattr(get_settings(), "max_outcome_occurrences", 1)
    picks = {select_outcome("lobby", db, rng=random.Random(i)).label for i in range(20)}
    assert picks == {"Rare"}


def test_game_limit_per_display(db, make_display, make_session, monkeypatch):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    make_session("lobby", status=SessionStatus.PENDING)

    monkeypatch.setattr(get_settings(), "max_games_per_instance", 1)
    with pytest.raises(InstanceGameLimitReached):
        select_outcome("lobby", db)
