from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import (
    InvalidState,
    InvalidToken,
    PlayerNotEligible,
    SessionNotFound,
)
from core.display_manager import DisplayManager
from core.session_manager import SessionManager
from core.state_machine import SessionStateMachine
from models import GameSession, Redemption, SessionStatus
from services.validation_service import (
    REASON_ALREADY_PLAYED,
    REASON_IN_PROGRESS,
    EligibilityResult,
)


@pytest.fixture
def new_session(db, tokens, broadcaster):
    def factory(display_id="lobby", email="ann@example.com", phone="555-123-4567"):
        token = tokens.issue(db, display_id).token
        return SessionManager.create_session(
            db, name="Ann", email=email, phone=phone, display_id=display_id,
            token=token, tokens=tokens, broadcaster=broadcaster,
        )
    return factory


def test_create_session_is_pending_with_fixed_outcome(db, make_display, new_session, broadcaster):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    session = new_session()

    assert session.status == SessionStatus.PENDING
    assert session.outcome.label == "Prize"
    assert session.email_normalized == "ann@example.com"
    assert session.phone_normalized == "5551234567"
    assert broadcaster.types("lobby") == ["session_ready"]
    _, message = broadcaster.published[0]
    assert message["sessionId"] == session.id
    assert message["userName"] == "Ann"


def test_create_session_rejects_foreign_token(db, make_display, tokens, broadcaster):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    make_display("cafe", outcomes=[("Prize", 1, False)])
    token = tokens.issue(db, "cafe").token

    with pytest.raises(InvalidToken):
        SessionManager.create_session(
            db, name="Ann", email="ann@example.com", phone="5551234567",
            display_id="lobby", token=token, tokens=tokens, broadcaster=broadcaster,
        )
    assert db.query(GameSession).count() == 0
    assert broadcaster.published == []


def test_second_submission_is_rejected_by_policy(db, make_display, new_session):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    new_session()

    with pytest.raises(PlayerNotEligible) as exc:
        new_session(phone="(555) 123 4567")
    assert exc.value.code == REASON_ALREADY_PLAYED


def test_in_flight_session_blocks_new_submission(db, make_display, make_session, new_session,
                                                broadcaster, monkeypatch):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    # 同一支電話、不同 email，已經有一筆剛建立的 pending session
    make_session("lobby", email="other@example.com", phone="5551234567", status=SessionStatus.PENDING)
    # 模擬兩筆提交同時通過 policy 檢查
    monkeypatch.setattr(
        "core.session_manager.evaluate_eligibility", lambda *args, **kwargs: EligibilityResult.ok()
    )

    with pytest.raises(PlayerNotEligible) as exc:
        new_session()
    assert exc.value.code == REASON_IN_PROGRESS
    assert db.query(GameSession).count() == 1
    assert broadcaster.published == []


def test_abandoned_pending_session_does_not_block(db, make_display, make_session, new_session):
    make_display(
        "lobby", outcomes=[("Prize", 1, False)],
        allow_multiple_plays=True, max_plays_per_email=None, max_plays_per_phone=None,
        time_window_hours=1,
    )
    # 兩小時前送出表單但沒按 buzzer
    make_session(
        "lobby", status=SessionStatus.PENDING,
        created_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    session = new_session()
    assert session.status == SessionStatus.PENDING
    assert db.query(GameSession).count() == 2


def test_start_twice_broadcasts_once(db, make_display, new_session, broadcaster):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    session = new_session()

    started = SessionManager.start_session(db, session.id, broadcaster)
    assert started.status == SessionStatus.PLAYING
    assert started.started_at is not None

    with pytest.raises(InvalidState) as exc:
        SessionManager.start_session(db, session.id, broadcaster)
    assert exc.value.status == "playing"
    assert broadcaster.types("lobby") == ["session_ready", "game_start"]


def test_start_unknown_session(db, broadcaster):
    with pytest.raises(SessionNotFound):
        SessionManager.start_session(db, "missing", broadcaster)


def test_double_completion_issues_one_redemption(db, make_display, new_session, broadcaster):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    session = new_session()
    SessionManager.start_session(db, session.id, broadcaster)

    first = SessionManager.report_completion(db, session.id)
    second = SessionManager.report_completion(db, session.id)

    assert first.first_transition
    assert not second.first_transition
    assert first.redemption is not None
    assert first.redemption.code.startswith("SPIN-")
    assert second.redemption.id == first.redemption.id
    assert db.query(Redemption).count() == 1
    assert first.session.status == SessionStatus.COMPLETED


def test_completion_without_start_is_allowed(db, make_display, new_session):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    session = new_session()

    result = SessionManager.report_completion(db, session.id)
    assert result.session.status == SessionStatus.COMPLETED


def test_completed_session_cannot_restart(db, make_display, new_session, broadcaster):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    session = new_session()
    SessionManager.report_completion(db, session.id)

    with pytest.raises(InvalidState):
        SessionManager.start_session(db, session.id, broadcaster)
    assert "game_start" not in broadcaster.types()


def test_negative_outcome_gets_no_redemption(db, make_display, new_session):
    make_display("lobby", outcomes=[("Nothing", 1, True)])
    session = new_session()

    result = SessionManager.report_completion(db, session.id)
    assert result.first_transition
    assert result.redemption is None
    assert db.query(Redemption).count() == 0


def test_missing_outcome_is_flagged_for_review(db, make_display, new_session):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    session = new_session()
    DisplayManager.delete_outcome(db, session.outcome_id)

    result = SessionManager.report_completion(db, session.id)
    assert result.session.status == SessionStatus.COMPLETED
    assert result.session.needs_review
    assert result.redemption is None


def test_completion_for_unknown_session(db):
    with pytest.raises(SessionNotFound):
        SessionManager.report_completion(db, "missing")


def test_stuck_sessions_are_completed(db, make_display, new_session, broadcaster):
    make_display("lobby", outcomes=[("Prize", 1, False)])
    stuck = new_session()
    SessionManager.start_session(db, stuck.id, broadcaster)
    waiting = new_session(email="bob@example.com", phone="5559876543")

    later = datetime.now(timezone.utc) + timedelta(minutes=5)
    completed = SessionManager.complete_stuck_sessions(db, timeout_seconds=120, now=later)

    assert completed == [stuck.id]
    db.expire_all()
    assert db.get(GameSession, stuck.id).status == SessionStatus.COMPLETED
    assert db.get(GameSession, waiting.id).status == SessionStatus.PENDING
    assert db.query(Redemption).filter(Redemption.session_id == stuck.id).count() == 1

    # 再掃一次不會重複處理
    assert SessionManager.complete_stuck_sessions(db, timeout_seconds=120, now=later) == []


def test_transition_table():
    assert SessionStateMachine.can_transition(SessionStatus.PENDING, SessionStatus.PLAYING)
    assert SessionStateMachine.can_transition(SessionStatus.PENDING, SessionStatus.COMPLETED)
    assert not SessionStateMachine.can_transition(SessionStatus.COMPLETED, SessionStatus.PLAYING)
    assert not SessionStateMachine.can_transition(SessionStatus.PLAYING, SessionStatus.PENDING)
    assert SessionStateMachine.sources_for(SessionStatus.COMPLETED) == {
        SessionStatus.PENDING, SessionStatus.PLAYING
    }
