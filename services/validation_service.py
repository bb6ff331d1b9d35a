"""
資格驗證服務：依 display 的 validation policy 判斷玩家能不能再玩

規則是「短路決策樹」而不是評分：
第一個不通過的規則決定顯示給玩家的原因

1. 決定要查的 display 集合（本身 + policy 的跨站清單）
2. 找出該身分最近一次 pending / playing / completed 的 session
3. 沒有 → 可以玩
4. 不允許重複遊玩 → already_played
5. 有時間窗且未滿 → time_window（附剩餘時間）
6. 已完成次數達上限 → max_plays
7. 除非允許負面結果重試，最近一次完成的結果不是負面 → already_won
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import math

from sqlalchemy.orm import Session

from core.exceptions import PlayerNotEligible
from models import SessionStatus, ValidationPolicy
from services.history_service import (
    HistoryScope,
    count_completed_sessions,
    get_latest_session,
    parse_display_ids,
)
from services.identity_service import NormalizedIdentity

# 舊資料相容：標籤為 "Try Again" 的獎項即使沒標記 is_negative 也允許重試
LEGACY_RETRY_LABEL = "Try Again"

REASON_ALREADY_PLAYED = "already_played"
REASON_TIME_WINDOW = "time_window"
REASON_MAX_PLAYS = "max_plays"
REASON_ALREADY_WON = "already_won"
REASON_IN_PROGRESS = "already_in_progress"

MESSAGES = {
    REASON_ALREADY_PLAYED: "You have already played this game.",
    REASON_MAX_PLAYS: "You have reached the maximum number of plays.",
    REASON_ALREADY_WON: "You have already received an outcome for this game.",
    REASON_IN_PROGRESS: "You already have a game in progress.",
}


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls) -> "EligibilityResult":
        return cls(eligible=True)

    @classmethod
    def deny(cls, code: str, reason: Optional[str] = None) -> "EligibilityResult":
        return cls(eligible=False, reason=reason or MESSAGES[code], code=code)

    def raise_if_ineligible(self) -> None:
        if not self.eligible:
            raise PlayerNotEligible(self.reason, self.code)


def default_policy(display_id: str) -> ValidationPolicy:
    """沒有設定 policy 時的預設值：一生只能玩一次（不寫入資料庫）"""
    return ValidationPolicy(
        display_id=display_id,
        allow_multiple_plays=False,
        max_plays_per_email=1,
        max_plays_per_phone=1,
        time_window_hours=None,
        allow_retry_on_negative=False,
        check_display_ids=None,
    )


def get_policy(display_id: str, db: Session) -> ValidationPolicy:
    policy = db.get(ValidationPolicy, display_id)
    return policy if policy is not None else default_policy(display_id)


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_remaining(hours: float) -> str:
    """
    剩餘時間轉成人看得懂的字串，一律無條件進位

    進位是為了讓玩家不會在時間窗真正結束前看到「可以再玩」

    範例：
        format_remaining(0.25) -> "15 minutes"
        format_remaining(5.5)  -> "6 hours"
        format_remaining(30)   -> "2 days"
        format_remaining(200)  -> "2 weeks"
        format_remaining(1000) -> "2 months"
    """
    if hours < 1:
        return _plural(max(1, math.ceil(hours * 60)), "minute")
    if hours < 24:
        return _plural(math.ceil(hours), "hour")
    if hours < 24 * 7:
        return _plural(math.ceil(hours / 24), "day")
    if hours < 24 * 30:
        return _plural(math.ceil(hours / (24 * 7)), "week")
    return _plural(math.ceil(hours / (24 * 30)), "month")


def _as_utc(value: datetime) -> datetime:
    # SQLite 讀回來的 datetime 不帶時區
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def effective_play_cap(policy: ValidationPolicy) -> Optional[int]:
    """兩個上限取較大者；都沒設定代表不限次數"""
    limits = [
        limit for limit in (policy.max_plays_per_email, policy.max_plays_per_phone)
        if limit is not None
    ]
    return max(limits) if limits else None


def evaluate_eligibility(
    identity: NormalizedIdentity,
    display_id: str,
    db: Session,
    policy: Optional[ValidationPolicy] = None,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """
    執行完整的 policy 判斷（唯讀，不寫入任何資料）

    參數：
        identity: 正規化後的身分
        display_id: 目標 display
        db: SQLAlchemy Session
        policy: 不傳則從資料庫讀取（沒有則用預設）
        now: 不傳則用目前時間；測試時可注入

    返回：
        EligibilityResult
    """
    if policy is None:
        policy = get_policy(display_id, db)
    now = now or datetime.now(timezone.utc)

    scope = HistoryScope.for_policy(
        identity, display_id, parse_display_ids(policy.check_display_ids)
    )

    latest = get_latest_session(scope, db)
    if latest is None:
        return EligibilityResult.ok()

    if not policy.allow_multiple_plays:
        return EligibilityResult.deny(REASON_ALREADY_PLAYED)

    if policy.time_window_hours:
        elapsed_hours = (now - _as_utc(latest.created_at)).total_seconds() / 3600
        if elapsed_hours < policy.time_window_hours:
            remaining = format_remaining(policy.time_window_hours - elapsed_hours)
            return EligibilityResult.deny(
                REASON_TIME_WINDOW,
                f"You can play again in {remaining}.",
            )

    cap = effective_play_cap(policy)
    if cap is not None and count_completed_sessions(scope, db) >= cap:
        return EligibilityResult.deny(REASON_MAX_PLAYS)

    if not policy.allow_retry_on_negative:
        last_completed = get_latest_session(scope, db, statuses=[SessionStatus.COMPLETED])
        outcome = last_completed.outcome if last_completed is not None else None
        if outcome is not None and not outcome.is_negative and outcome.label != LEGACY_RETRY_LABEL:
            return EligibilityResult.deny(REASON_ALREADY_WON)

    return EligibilityResult.ok()
