from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import InvalidConfiguration
from core.display_manager import DisplayManager
from models import SessionStatus, ValidationPolicy
from services.identity_service import NormalizedIdentity
from services.validation_service import (
    REASON_ALREADY_PLAYED,
    REASON_ALREADY_WON,
    REASON_MAX_PLAYS,
    REASON_TIME_WINDOW,
    effective_play_cap,
    evaluate_eligibility,
    format_remaining,
)
from tests.helpers import outcome_by_label

ANN = NormalizedIdentity(email="ann@example.com", phone="5551234567")

OUTCOMES = [("Prize", 1, False), ("Nothing", 1, True), ("Try Again", 1, False)]


def test_new_player_is_eligible(db, make_display):
    make_display("lobby", outcomes=OUTCOMES)
    assert evaluate_eligibility(ANN, "lobby", db).eligible


def test_default_policy_one_play_ever(db, make_display, make_session):
    make_display("lobby", outcomes=OUTCOMES)
    make_session("lobby", status=SessionStatus.PENDING)

    result = evaluate_eligibility(ANN, "lobby", db)
    assert not result.eligible
    assert result.code == REASON_ALREADY_PLAYED


def test_phone_alone_identifies_player(db, make_display, make_session):
    make_display("lobby", outcomes=OUTCOMES)
    make_session("lobby", email="other@example.com", phone=ANN.phone)

    assert evaluate_eligibility(ANN, "lobby", db).code == REASON_ALREADY_PLAYED


def test_time_window_boundary(db, make_display, make_session):
    make_display(
        "lobby", outcomes=OUTCOMES,
        allow_multiple_plays=True, time_window_hours=24,
        max_plays_per_email=None, max_plays_per_phone=None,
        allow_retry_on_negative=True,
    )
    played_at = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    make_session("lobby", created_at=played_at)

    early = evaluate_eligibility(ANN, "lobby", db, now=played_at + timedelta(hours=23, minutes=59))
    assert not early.eligible
    assert early.code == REASON_TIME_WINDOW
    assert early.reason.startswith("You can play again in")
    assert "minute" in early.reason

    on_time = evaluate_eligibility(ANN, "lobby", db, now=played_at + timedelta(hours=24))
    assert on_time.eligible


def test_max_plays_counts_completed_sessions(db, make_display, make_session):
    make_display(
        "lobby", outcomes=OUTCOMES,
        allow_multiple_plays=True, max_plays_per_email=2, max_plays_per_phone=None,
        allow_retry_on_negative=True,
    )
    make_session("lobby")
    assert evaluate_eligibility(ANN, "lobby", db).eligible

    make_session("lobby")
    result = evaluate_eligibility(ANN, "lobby", db)
    assert result.code == REASON_MAX_PLAYS


def test_retry_only_after_negative(db, make_display, make_session):
    make_display(
        "lobby", outcomes=OUTCOMES,
        allow_multiple_plays=True, max_plays_per_email=None, max_plays_per_phone=None,
    )
    make_session("lobby", outcome=outcome_by_label(db, "lobby", "Nothing"))
    assert evaluate_eligibility(ANN, "lobby", db).eligible

    make_session("lobby", outcome=outcome_by_label(db, "lobby", "Prize"))
    result = evaluate_eligibility(ANN, "lobby", db)
    assert result.code == REASON_ALREADY_WON


def test_try_again_label_allows_retry(db, make_display, make_session):
    make_display(
        "lobby", outcomes=OUTCOMES,
        allow_multiple_plays=True, max_plays_per_email=None, max_plays_per_phone=None,
    )
    make_session("lobby", outcome=outcome_by_label(db, "lobby", "Try Again"))
    assert evaluate_eligibility(ANN, "lobby", db).eligible


def test_cross_display_history(db, make_display, make_session):
    make_display("cafe", outcomes=OUTCOMES)
    make_display("lobby", outcomes=OUTCOMES, check_display_ids="cafe")
    make_session("cafe")

    assert evaluate_eligibility(ANN, "lobby", db).code == REASON_ALREADY_PLAYED
    # 沒有跨站清單的 display 只看自己的紀錄
    make_display("mall", outcomes=OUTCOMES)
    assert evaluate_eligibility(ANN, "mall", db).eligible


def test_new_policy_keeps_unlimited_plays(db, make_display):
    make_display(
        "lobby", outcomes=OUTCOMES,
        allow_multiple_plays=True, max_plays_per_email=None, max_plays_per_phone=None,
    )
    db.expire_all()

    policy = db.get(ValidationPolicy, "lobby")
    assert policy.max_plays_per_email is None
    assert policy.max_plays_per_phone is None
    assert effective_play_cap(policy) is None


def test_cross_display_ids_must_exist(db, make_display):
    make_display("lobby", outcomes=OUTCOMES)
    with pytest.raises(InvalidConfiguration):
        DisplayManager.upsert_policy(db, "lobby", check_display_ids="nowhere")


@pytest.mark.parametrize("hours,expected", [
    (0.25, "15 minutes"),
    (0.01, "1 minute"),
    (5.5, "6 hours"),
    (30, "2 days"),
    (200, "2 weeks"),
    (1000, "2 months"),
])
def test_format_remaining(hours, expected):
    assert format_remaining(hours) == expected
