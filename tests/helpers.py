from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from core.broadcast import BroadcastCoordinator
from models import Outcome


class RecordingBroadcaster(BroadcastCoordinator):
    """記錄每一次 publish，其餘行為與正式的 coordinator 相同"""

    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, display_id, message):
        self.published.append((display_id, message))
        return super().publish(display_id, message)

    def types(self, display_id=None):
        return [m["type"] for d, m in self.published if display_id is None or d == display_id]


class UnavailableSession(Session):
    """每一次查詢都像資料庫連不上"""

    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def outcome_by_label(db, display_id, label) -> Outcome:
    return db.query(Outcome).filter(
        Outcome.display_id == display_id, Outcome.label == label
    ).one()


def submit(client, display_id, name="Ann", email="ann@example.com", phone="555-123-4567"):
    """拿一個新 token 並提交表單，回傳 response"""
    token = client.get("/api/token/generate", params={"display_id": display_id}).json()["token"]
    return client.post("/api/submit", json={
        "name": name,
        "email": email,
        "phone": phone,
        "display_id": display_id,
        "token": token,
    })
