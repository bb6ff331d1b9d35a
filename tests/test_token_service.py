import pytest

from core.cache import MemoryTTLCache
from core.exceptions import DisplayInactive, DisplayNotFound, InvalidToken
from core.display_manager import DisplayManager
from core.token_service import TokenService
from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return TokenService(MemoryTTLCache(clock=clock), ttl_seconds=900, clock=clock)


def test_issue_and_validate(db, make_display, service):
    make_display("lobby")
    issued = service.issue(db, "lobby")

    assert len(issued.token) == 64
    assert issued.ttl_seconds == 900
    assert service.validate(issued.token) == "lobby"
    # validate 不消耗 token
    assert service.validate(issued.token) == "lobby"


def test_token_expires_after_ttl(db, make_display, service, clock):
    make_display("lobby")
    token = service.issue(db, "lobby").token

    clock.advance(899)
    assert service.validate(token) == "lobby"

    clock.advance(2)
    with pytest.raises(InvalidToken):
        service.validate(token)


def test_unknown_and_missing_tokens(service):
    with pytest.raises(InvalidToken):
        service.validate("deadbeef")
    with pytest.raises(InvalidToken):
        service.validate(None)


def test_binding_to_other_display_is_rejected(db, make_display, service):
    make_display("lobby")
    make_display("cafe")
    token = service.issue(db, "lobby").token

    with pytest.raises(InvalidToken):
        service.check_binding(token, "cafe")
    service.check_binding(token, "lobby")
    # 標記 used 之後仍然有效（只受時間限制）
    service.check_binding(token, "lobby")


def test_issue_requires_active_display(db, make_display, service):
    with pytest.raises(DisplayNotFound):
        service.issue(db, "missing")

    make_display("lobby")
    DisplayManager.update_display(db, "lobby", is_active=False)
    with pytest.raises(DisplayInactive):
        service.issue(db, "lobby")


def test_sweep_removes_expired(db, make_display, service, clock):
    make_display("lobby")
    service.issue(db, "lobby")
    service.issue(db, "lobby")

    clock.advance(901)
    assert service.sweep() == 2
    assert len(service.cache) == 0
