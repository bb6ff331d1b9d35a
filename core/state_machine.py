"""
Session 狀態機：集中管理所有狀態轉換

PENDING ──start──▶ PLAYING ──complete──▶ COMPLETED
   └──────────────complete──────────────────┘

所有轉換都是條件式 UPDATE（WHERE status = 預期的前一個狀態）：
重複或亂序的訊息不會讓狀態倒退，也不會重複觸發兌換碼
"""
from typing import Dict, FrozenSet, Iterable
import logging

from sqlalchemy.orm import Session

from models import GameSession, SessionStatus

logger = logging.getLogger(__name__)


class SessionStateMachine:
    TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
        SessionStatus.PENDING: frozenset({SessionStatus.PLAYING, SessionStatus.COMPLETED}),
        SessionStatus.PLAYING: frozenset({SessionStatus.COMPLETED}),
        SessionStatus.COMPLETED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current: SessionStatus, target: SessionStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def sources_for(cls, target: SessionStatus) -> FrozenSet[SessionStatus]:
        return frozenset(s for s, targets in cls.TRANSITIONS.items() if target in targets)

    @classmethod
    def transition(cls, db: Session, session_id: str, target: SessionStatus,
                   expected: Iterable[SessionStatus] = None, **values) -> bool:
        """
        條件式狀態轉換

        參數：
            db: SQLAlchemy Session
            session_id: GameSession id
            target: 目標狀態
            expected: 允許的前一個狀態（預設為所有可以轉到 target 的狀態）
            values: 一起更新的欄位（例如 started_at）

        返回：
            True 表示這次呼叫完成了轉換；False 表示狀態已被別人改過（或 session 不存在）

        注意：
            - 只 flush 不 commit，由外層 transaction 處理
            - 回傳 False 時，由呼叫者決定是冪等成功還是錯誤
        """
        sources = frozenset(expected) if expected is not None else cls.sources_for(target)
        illegal = [s for s in sources if not cls.can_transition(s, target)]
        if illegal:
            raise ValueError(f"Illegal transition {illegal} -> {target.value}")

        updated = db.query(GameSession).filter(
            GameSession.id == session_id,
            GameSession.status.in_(list(sources))
        ).update({"status": target, **values}, synchronize_session=False)

        if updated:
            logger.info(f"Session {session_id} -> {target.value}")
        return bool(updated)

