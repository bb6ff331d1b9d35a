"""
兌換服務：為非負面結果產生兌換碼、驗證與標記已兌換

- 同一個 session 最多一筆 redemption（insert-or-update，不會重複建立）
- 驗證時 email / phone 都要和正規化後的紀錄一致，撿到或猜到的碼不能被別人兌換
- 對外的失敗訊息刻意模糊，實際原因只寫進 log
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
import logging

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from core.exceptions import RedemptionNotFound
from models import GameSession, Outcome, Redemption
from services.identity_service import normalize_email, normalize_phone
from services.naming_service import generate_redemption_code

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


@dataclass
class VerificationResult:
    valid: bool
    redeemed: bool = False
    outcome: Optional[str] = None
    redemption_id: Optional[str] = None


def _code_in_use(code: str, db: Session) -> bool:
    return db.query(Redemption.id).filter(Redemption.code == code).first() is not None


def issue_for_session(session: GameSession, outcome: Outcome, db: Session) -> Optional[Redemption]:
    """
    session 第一次進入 COMPLETED 時呼叫

    流程：
    1. 負面結果 → 不產生任何兌換碼
    2. 已有紀錄 → 更新內容（保留原本的碼）
    3. 沒有紀錄 → 產生唯一兌換碼並新增

    注意：
        - 在呼叫者的 transaction 內執行，只 flush 不 commit
        - 碼碰撞機率極低，但仍會檢查並重新產生
    """
    if outcome.is_negative:
        logger.info(f"Session {session.id} ended with negative outcome, no redemption issued")
        return None

    existing = db.query(Redemption).filter(Redemption.session_id == session.id).first()
    if existing:
        existing.email_normalized = session.email_normalized
        existing.phone_normalized = session.phone_normalized
        existing.outcome_id = outcome.id
        existing.outcome_label = outcome.label
        db.flush()
        logger.info(f"Redemption for session {session.id} already exists, updated in place")
        return existing

    code = generate_redemption_code()
    attempts = 1
    while _code_in_use(code, db):
        if attempts >= MAX_CODE_ATTEMPTS:
            raise RuntimeError(f"Could not generate a unique redemption code for session {session.id}")
        logger.warning(f"Redemption code collision detected, regenerating: {code}")
        code = generate_redemption_code()
        attempts += 1

    # session_id / code 的 unique constraint 是最後防線，違反時整個 transaction rollback
    redemption = Redemption(
        session_id=session.id,
        code=code,
        email_normalized=session.email_normalized,
        phone_normalized=session.phone_normalized,
        outcome_id=outcome.id,
        outcome_label=outcome.label,
    )
    db.add(redemption)
    db.flush()

    logger.info(f"Issued redemption {code} for session {session.id} ({outcome.label})")
    return redemption


def verify_redemption(email: str, phone: str, code: str, db: Session) -> VerificationResult:
    """
    驗證兌換碼

    參數：
        email / phone: 玩家輸入的原始值（這裡才正規化）
        code: 兌換碼（不分大小寫、忽略前後空白）

    返回：
        VerificationResult；任何不符都回傳 valid=False，不透露是哪一項不符
    """
    normalized_code = (code or "").strip().upper()
    email_normalized = normalize_email(email)
    phone_normalized = normalize_phone(phone)

    redemption = db.query(Redemption).filter(Redemption.code == normalized_code).first()
    if not redemption:
        logger.warning(f"Redemption verification failed: unknown code {normalized_code!r}")
        return VerificationResult(valid=False)

    if redemption.email_normalized != email_normalized:
        logger.warning(f"Redemption verification failed: email mismatch for code {normalized_code}")
        return VerificationResult(valid=False)

    if redemption.phone_normalized != phone_normalized:
        logger.warning(f"Redemption verification failed: phone mismatch for code {normalized_code}")
        return VerificationResult(valid=False)

    return VerificationResult(
        valid=True,
        redeemed=redemption.is_redeemed,
        outcome=redemption.outcome_label,
        redemption_id=redemption.id,
    )


def mark_redeemed(redemption_id: str, db: Session, redeemed_by: Optional[str] = None,
                  notes: Optional[str] = None):
    """
    標記為已兌換（單向，不可還原）

    返回：
        (Redemption, already_redeemed)；重複標記不算錯誤，只回報已使用

    異常：
        RedemptionNotFound
    """
    updated = db.query(Redemption).filter(
        Redemption.id == redemption_id,
        Redemption.is_redeemed == False
    ).update(
        {
            Redemption.is_redeemed: True,
            Redemption.redeemed_at: datetime.now(timezone.utc),
            Redemption.redeemed_by: redeemed_by or "Admin",
            Redemption.notes: notes,
        },
        synchronize_session=False,
    )

    redemption = db.get(Redemption, redemption_id)
    if redemption is None:
        raise RedemptionNotFound(redemption_id)
    db.refresh(redemption)

    if not updated:
        logger.info(f"Redemption {redemption_id} was already redeemed by {redemption.redeemed_by}")
        return redemption, True

    logger.info(f"Redemption {redemption_id} marked redeemed by {redemption.redeemed_by}")
    return redemption, False


def list_redemptions(db: Session, display_id: Optional[str] = None, status: Optional[str] = None,
                     limit: int = 100, offset: int = 0) -> List[Redemption]:
    query = db.query(Redemption).join(GameSession, Redemption.session_id == GameSession.id)
    if display_id:
        query = query.filter(GameSession.display_id == display_id)
    if status == "redeemed":
        query = query.filter(Redemption.is_redeemed == True)
    elif status == "pending":
        query = query.filter(Redemption.is_redeemed == False)
    return (
        query.order_by(Redemption.created_at.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def redemption_stats(display_id: str, db: Session) -> dict:
    total, redeemed = (
        db.query(
            func.count(Redemption.id),
            func.coalesce(func.sum(case((Redemption.is_redeemed == True, 1), else_=0)), 0),
        )
        .join(GameSession, Redemption.session_id == GameSession.id)
        .filter(GameSession.display_id == display_id)
        .one()
    )
    return {
        "total_redemptions": total,
        "redeemed_count": redeemed,
        "pending_count": total - redeemed,
    }
