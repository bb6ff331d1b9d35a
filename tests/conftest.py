import os

# 必須在 import app 之前設定：in-memory 資料庫、不啟動背景工作
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BACKGROUND_SWEEPS_ENABLED"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from core.broadcast import get_broadcaster
from core.cache import MemoryTTLCache
from core.display_manager import DisplayManager
from core.token_service import TokenService, get_token_service
from database import Base, SessionLocal, engine
from main import app
from models import GameSession, Player, SessionStatus
from tests.helpers import RecordingBroadcaster


@pytest.fixture(autouse=True)
def reset_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db(reset_tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def tokens():
    return TokenService(MemoryTTLCache(), ttl_seconds=900)


@pytest.fixture
def client(broadcaster, tokens):
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_token_service] = lambda: tokens
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_display(db):
    """建立 display；outcomes 為 (label, weight, is_negative) 清單，不傳則使用預設獎項"""

    def factory(display_id="lobby", outcomes=None, **policy):
        display = DisplayManager.create_display(db, display_id, seed_defaults=outcomes is None)
        if outcomes is not None:
            for label, weight, is_negative in outcomes:
                DisplayManager.create_outcome(
                    db, display_id, label=label, probability_weight=weight, is_negative=is_negative
                )
        if policy:
            DisplayManager.upsert_policy(db, display_id, **policy)
        return display

    return factory


@pytest.fixture
def make_session(db):
    """直接寫入一筆 session（跳過 token / policy），用於驗證規則的測試"""

    def factory(display_id, email="ann@example.com", phone="5551234567",
                status=SessionStatus.COMPLETED, outcome=None, created_at=None):
        player = Player(
            display_id=display_id,
            name="Ann",
            email=email,
            phone=phone,
            email_normalized=email,
            phone_normalized=phone,
        )
        db.add(player)
        db.flush()
        session = GameSession(
            display_id=display_id,
            player_id=player.id,
            outcome_id=outcome.id if outcome is not None else None,
            email_normalized=email,
            phone_normalized=phone,
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db.add(session)
        db.commit()
        return session

    return factory
