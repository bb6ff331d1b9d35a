"""
Session Manager：管理一次遊戲的完整生命週期

職責：
1. 建立 session（身分正規化 + token + policy + 抽獎）
2. 開始遊戲（buzzer，PENDING -> PLAYING）
3. 完成遊戲（display 回報動畫結束，-> COMPLETED，發兌換碼）
4. 回收卡住的 session
5. 查詢 session 狀態

原則：
- 所有狀態變更經過 SessionStateMachine（條件式 UPDATE）
- 資料庫 transaction commit 之後才廣播，display 不會收到被 rollback 的事件
- 即時通道與 HTTP fallback 都呼叫同一個 report_completion，狀態機不知道是哪條路
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging
import random

from sqlalchemy.orm import Session

from core.broadcast import BroadcastCoordinator
from core.exceptions import (
    DisplayInactive,
    DisplayNotFound,
    InvalidState,
    PlayerNotEligible,
    SessionNotFound,
)
from core.locks import with_display_lock, with_session_lock
from core.state_machine import SessionStateMachine
from core.token_service import TokenService
from database import get_settings, transactional
from models import (
    DisplayInstance,
    GameSession,
    Outcome,
    Player,
    Redemption,
    SessionStatus,
)
from services.history_service import HistoryScope, get_in_flight_session
from services.identity_service import normalize_identity
from services.outcome_service import select_outcome
from services.redemption_service import issue_for_session
from services.validation_service import (
    MESSAGES,
    REASON_IN_PROGRESS,
    evaluate_eligibility,
)

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    session: GameSession
    first_transition: bool
    redemption: Optional[Redemption] = None


def outcome_payload(outcome: Optional[Outcome]) -> Optional[dict]:
    if outcome is None:
        return None
    return {
        "id": outcome.id,
        "label": outcome.label,
        "is_negative": bool(outcome.is_negative),
        "style": outcome.style,
    }


def require_active_display(db: Session, display_id: str) -> DisplayInstance:
    display = db.get(DisplayInstance, display_id)
    if display is None:
        raise DisplayNotFound(display_id)
    if not display.is_active:
        raise DisplayInactive(display_id)
    return display


class SessionManager:
    """Session 生命週期管理器"""

    # ============ Create ============

    @staticmethod
    @transactional
    def _create_session(db: Session, name: str, email: str, phone: str, display_id: str,
                        token: str, tokens: TokenService,
                        rng: Optional[random.Random] = None) -> GameSession:
        # 1. 身分正規化（失敗就不寫入任何資料）
        identity = normalize_identity(email, phone)

        # 2. display 與 token（鎖住 display：同一台的提交依序建立 session）
        with_display_lock(display_id, db).first()
        require_active_display(db, display_id)
        tokens.check_binding(token, display_id)

        # 3. policy
        evaluate_eligibility(identity, display_id, db).raise_if_ineligible()

        # 同一身分在這台 display 已經有進行中的遊戲（例如連按兩次送出）
        stale_after = timedelta(seconds=get_settings().stuck_session_timeout_seconds)
        since = datetime.now(timezone.utc) - stale_after
        if get_in_flight_session(HistoryScope.for_policy(identity, display_id), since, db):
            raise PlayerNotEligible(MESSAGES[REASON_IN_PROGRESS], REASON_IN_PROGRESS)

        # 4. 抽獎（結果建立後就不再變動）
        outcome = select_outcome(display_id, db, rng=rng)

        # 5. 寫入 player + session
        player = Player(
            display_id=display_id,
            name=name.strip(),
            email=email.strip(),
            phone=phone.strip(),
            email_normalized=identity.email,
            phone_normalized=identity.phone,
        )
        db.add(player)
        db.flush()

        session = GameSession(
            display_id=display_id,
            player_id=player.id,
            outcome_id=outcome.id,
            email_normalized=identity.email,
            phone_normalized=identity.phone,
            status=SessionStatus.PENDING,
        )
        db.add(session)
        db.flush()

        session.outcome = outcome
        session.player = player
        logger.info(
            f"Session {session.id} created for {player.name} on display {display_id} "
            f"- status: pending (waiting for buzzer)"
        )
        return session

    @staticmethod
    def create_session(db: Session, name: str, email: str, phone: str, display_id: str,
                       token: str, tokens: TokenService, broadcaster: BroadcastCoordinator,
                       rng: Optional[random.Random] = None) -> GameSession:
        """
        處理一次表單提交

        流程：
        1. 正規化 email / phone
        2. 檢查 display 存在且啟用、token 屬於這台 display
        3. 執行 validation policy，並擋下同一身分進行中的遊戲（鎖住 display 後檢查）
        4. 抽出獎項
        5. 建立 Player 與 GameSession（PENDING）
        6. commit 後送出 session_ready，讓 display 預先準備轉盤

        異常：
            InvalidIdentity, DisplayNotFound, DisplayInactive, InvalidToken,
            PlayerNotEligible, OutcomeSelectionError
        """
        session = SessionManager._create_session(
            db, name, email, phone, display_id, token, tokens, rng=rng
        )

        # 純顯示用，不是狀態轉換
        broadcaster.publish(display_id, {
            "type": "session_ready",
            "sessionId": session.id,
            "userName": session.player.name,
            "outcome": outcome_payload(session.outcome),
        })
        return session

    # ============ Start ============

    @staticmethod
    @transactional
    def _start_session(db: Session, session_id: str) -> GameSession:
        moved = SessionStateMachine.transition(
            db, session_id, SessionStatus.PLAYING,
            expected=[SessionStatus.PENDING],
            started_at=datetime.now(timezone.utc),
        )

        session = with_session_lock(session_id, db).first()
        if not session:
            raise SessionNotFound(session_id)
        if not moved:
            raise InvalidState(session_id, session.status.value)
        return session

    @staticmethod
    def start_session(db: Session, session_id: str, broadcaster: BroadcastCoordinator) -> GameSession:
        """
        玩家按下 buzzer（PENDING -> PLAYING）

        只有成功轉換的那一次會廣播 game_start，重複按不會讓 display 再轉一次

        異常：
            SessionNotFound: session 不存在
            InvalidState: session 不是 PENDING
        """
        session = SessionManager._start_session(db, session_id)

        logger.info(f"Broadcasting game_start to display {session.display_id} for session {session.id}")
        broadcaster.publish(session.display_id, {
            "type": "game_start",
            "sessionId": session.id,
            "userName": session.player.name if session.player else None,
            "outcome": outcome_payload(session.outcome),
        })
        return session

    # ============ Complete ============

    @staticmethod
    @transactional
    def report_completion(db: Session, session_id: str) -> CompletionResult:
        """
        display 回報動畫結束（PLAYING / PENDING -> COMPLETED）

        冪等：已經 COMPLETED 的 session 再回報一次是成功的 no-op，不會產生第二筆兌換碼

        資料不一致時的處理：
        - session 的 outcome 關聯讀不到 → 用 outcome_id 再查一次
        - 還是找不到 → 仍然標記 COMPLETED（不能卡住），needs_review=True，不發兌換碼

        異常：
            SessionNotFound: session 不存在（由呼叫端決定是回 404 還是記 log 忽略）
        """
        moved = SessionStateMachine.transition(
            db, session_id, SessionStatus.COMPLETED,
            completed_at=datetime.now(timezone.utc),
        )

        session = with_session_lock(session_id, db).first()
        if not session:
            raise SessionNotFound(session_id)

        if not moved:
            logger.info(f"Session {session_id} already completed, ignoring duplicate report")
            return CompletionResult(session=session, first_transition=False,
                                    redemption=session.redemption)

        outcome = session.outcome
        if outcome is None and session.outcome_id is not None:
            outcome = db.get(Outcome, session.outcome_id)

        if outcome is None:
            session.needs_review = True
            logger.warning(
                f"Session {session_id} completed without a resolvable outcome "
                f"(outcome_id={session.outcome_id}), flagged for review"
            )
            return CompletionResult(session=session, first_transition=True)

        redemption = issue_for_session(session, outcome, db)
        return CompletionResult(session=session, first_transition=True, redemption=redemption)

    # ============ Sweep ============

    @staticmethod
    def complete_stuck_sessions(db: Session, timeout_seconds: int,
                                now: Optional[datetime] = None) -> List[str]:
        """
        把 PLAYING 太久（display 沒回報）的 session 強制完成

        每一筆都走 report_completion，所以和即時流量並行時也不會重複發碼
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=timeout_seconds)

        stuck_ids = [
            row.id for row in db.query(GameSession.id).filter(
                GameSession.status == SessionStatus.PLAYING,
                GameSession.created_at < cutoff
            ).all()
        ]

        completed = []
        for session_id in stuck_ids:
            try:
                result = SessionManager.report_completion(db, session_id)
            except SessionNotFound:
                # display 在掃描期間被刪除
                continue
            if result.first_transition:
                completed.append(session_id)

        if completed:
            logger.info(f"Auto-completed {len(completed)} stuck session(s)")
        return completed

    # ============ Query ============

    @staticmethod
    def get_session(db: Session, session_id: str) -> GameSession:
        session = db.query(GameSession).filter(GameSession.id == session_id).first()
        if not session:
            raise SessionNotFound(session_id)
        return session

