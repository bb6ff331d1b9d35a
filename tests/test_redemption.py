import re

import pytest

from core.exceptions import RedemptionNotFound
from core.session_manager import SessionManager
from services.naming_service import generate_redemption_code
from services.redemption_service import (
    list_redemptions,
    mark_redeemed,
    redemption_stats,
    verify_redemption,
)


@pytest.fixture
def redemption(db, make_display, tokens, broadcaster):
    make_display("lobby", outcomes=[("Free Coffee", 1, False)])
    token = tokens.issue(db, "lobby").token
    session = SessionManager.create_session(
        db, name="Ann", email="Ann@Example.com", phone="+1 (555) 123-4567",
        display_id="lobby", token=token, tokens=tokens, broadcaster=broadcaster,
    )
    return SessionManager.report_completion(db, session.id).redemption


def test_code_format():
    assert re.fullmatch(r"SPIN-[A-HJ-NP-Z2-9]{4}-[A-HJ-NP-Z2-9]{4}", generate_redemption_code())


def test_verify_with_matching_identity(db, redemption):
    result = verify_redemption("ann@example.com ", "555.123.4567", redemption.code.lower(), db)
    assert result.valid
    assert not result.redeemed
    assert result.outcome == "Free Coffee"


@pytest.mark.parametrize("email,phone", [
    ("someone@example.com", "5551234567"),
    ("ann@example.com", "5550000000"),
])
def test_verify_rejects_identity_mismatch(db, redemption, email, phone):
    result = verify_redemption(email, phone, redemption.code, db)
    assert not result.valid
    assert result.outcome is None


def test_verify_unknown_code(db, redemption):
    assert not verify_redemption("ann@example.com", "5551234567", "SPIN-0000-0000", db).valid


def test_mark_redeemed_twice(db, redemption):
    first, already = mark_redeemed(redemption.id, db, redeemed_by="Front desk")
    db.commit()
    assert first.is_redeemed
    assert not already
    assert first.redeemed_by == "Front desk"

    second, already = mark_redeemed(redemption.id, db, redeemed_by="Someone else")
    db.commit()
    assert already
    assert second.redeemed_by == "Front desk"

    result = verify_redemption("ann@example.com", "5551234567", redemption.code, db)
    assert result.valid and result.redeemed


def test_mark_unknown_redemption(db):
    with pytest.raises(RedemptionNotFound):
        mark_redeemed("missing", db)


def test_list_and_stats(db, redemption):
    assert [r.id for r in list_redemptions(db, display_id="lobby")] == [redemption.id]
    assert list_redemptions(db, status="redeemed") == []

    mark_redeemed(redemption.id, db)
    db.commit()

    assert redemption_stats("lobby", db) == {
        "total_redemptions": 1,
        "redeemed_count": 1,
        "pending_count": 0,
    }
    assert len(list_redemptions(db, status="redeemed")) == 1
