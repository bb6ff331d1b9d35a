"""
Play history service.

Builds the identity / display-set predicates used by the validation rules,
so every policy query shares the same parameterized filter instead of
assembling SQL text per call.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from models import COUNTED_STATUSES, IN_FLIGHT_STATUSES, GameSession, SessionStatus
from services.identity_service import NormalizedIdentity


def parse_display_ids(raw: Optional[str]) -> List[str]:
    """Split a comma-separated id list: trimmed, blanks dropped, de-duplicated, order kept."""
    if not raw:
        return []
    seen = []
    for part in raw.split(","):
        display_id = part.strip()
        if display_id and display_id not in seen:
            seen.append(display_id)
    return seen


@dataclass(frozen=True)
class HistoryScope:
    """Which displays' history a policy check looks at, and for whom."""
    identity: NormalizedIdentity
    display_ids: Tuple[str, ...]

    @classmethod
    def for_policy(cls, identity: NormalizedIdentity, display_id: str,
                   extra_display_ids: Iterable[str] = ()) -> "HistoryScope":
        ids = [display_id]
        for other in extra_display_ids:
            if other not in ids:
                ids.append(other)
        return cls(identity=identity, display_ids=tuple(ids))

    def filter(self, query: Query, statuses: Iterable[SessionStatus]) -> Query:
        return query.filter(
            GameSession.display_id.in_(self.display_ids),
            GameSession.status.in_(list(statuses)),
            or_(
                GameSession.email_normalized == self.identity.email,
                GameSession.phone_normalized == self.identity.phone,
            ),
        )


def get_latest_session(scope: HistoryScope, db: Session,
                       statuses: Iterable[SessionStatus] = COUNTED_STATUSES) -> Optional[GameSession]:
    return (
        scope.filter(db.query(GameSession), statuses)
        .order_by(GameSession.created_at.desc())
        .first()
    )


def count_completed_sessions(scope: HistoryScope, db: Session) -> int:
    return scope.filter(db.query(GameSession), [SessionStatus.COMPLETED]).count()


def get_in_flight_session(scope: HistoryScope, since: datetime, db: Session) -> Optional[GameSession]:
    """
    Latest pending / playing session for the identity created at or after ``since``.

    Older in-flight sessions are treated as abandoned: a stuck playing session is
    closed by the sweeper, and a pending one whose buzzer was never pressed no
    longer blocks the player.
    """
    return (
        scope.filter(db.query(GameSession), IN_FLIGHT_STATUSES)
        .filter(GameSession.created_at >= since)
        .order_by(GameSession.created_at.desc())
        .first()
    )
