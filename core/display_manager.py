"""
Display Manager：管理 display instance 與其設定的生命週期

職責：
1. 建立 display（含預設獎項與預設 policy）
2. 更新 / 停用 / 刪除 display
3. 設定 validation policy
4. 管理獎項（新增、修改、刪除）
5. 查詢統計

原則：
- 單一職責：只管設定，不管 session 生命週期
- 資料結構優先：先檢查資料是否符合要求，再執行操作
"""
from typing import List, Optional
import logging
import re

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import (
    DisplayAlreadyExists,
    DisplayNotFound,
    InvalidConfiguration,
    OutcomeNotFound,
)
from database import transactional
from models import (
    DisplayInstance,
    GameSession,
    Outcome,
    Player,
    SessionStatus,
    ValidationPolicy,
)
from services.history_service import parse_display_ids
from services.naming_service import generate_location_name
from services.validation_service import get_policy

logger = logging.getLogger(__name__)

DISPLAY_ID_RE = re.compile(r"^[A-Za-z0-9_]{1,50}$")

DEFAULT_OUTCOMES = [
    {"label": "10% Discount", "weight": 30, "is_negative": False},
    {"label": "Free Item", "weight": 10, "is_negative": False},
    {"label": "Try Again", "weight": 40, "is_negative": True},
    {"label": "20% Discount", "weight": 15, "is_negative": False},
    {"label": "Grand Prize", "weight": 5, "is_negative": False},
]


def _validate_weight(weight) -> int:
    if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
        raise InvalidConfiguration("probability_weight must be a non-negative integer (0 or more)")
    return weight


def _validate_limit(name: str, value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidConfiguration(f"{name} must be a positive integer or null (unlimited)")
    return value


class DisplayManager:
    """Display 設定管理器"""

    @staticmethod
    @transactional
    def create_display(db: Session, display_id: str, location_name: Optional[str] = None,
                       is_active: bool = True, seed_defaults: bool = True) -> DisplayInstance:
        """
        建立新的 display

        流程：
        1. 驗證 id 格式（英數字與底線）並檢查唯一性
        2. 建立 DisplayInstance
        3. 建立預設獎項與預設 policy（確保新 display 可以直接使用）

        異常：
            InvalidConfiguration: id 格式錯誤
            DisplayAlreadyExists: id 已被使用
        """
        if not display_id or not DISPLAY_ID_RE.match(display_id):
            raise InvalidConfiguration("id must contain only letters, numbers, and underscores")

        if db.get(DisplayInstance, display_id):
            raise DisplayAlreadyExists(display_id)

        display = DisplayInstance(
            id=display_id,
            location_name=(location_name or "").strip() or generate_location_name(display_id),
            is_active=is_active,
        )
        db.add(display)

        if seed_defaults:
            for item in DEFAULT_OUTCOMES:
                db.add(Outcome(
                    display_id=display_id,
                    label=item["label"],
                    probability_weight=item["weight"],
                    is_negative=item["is_negative"],
                ))
            db.add(ValidationPolicy(
                display_id=display_id,
                allow_multiple_plays=False,
                max_plays_per_email=1,
                max_plays_per_phone=1,
                allow_retry_on_negative=False,
            ))

        db.flush()
        logger.info(f"Created display {display_id} ({display.location_name})")
        return display

    @staticmethod
    def get_display(db: Session, display_id: str) -> DisplayInstance:
        display = db.get(DisplayInstance, display_id)
        if not display:
            raise DisplayNotFound(display_id)
        return display

    @staticmethod
    def list_displays(db: Session) -> List[DisplayInstance]:
        return db.query(DisplayInstance).order_by(DisplayInstance.created_at.desc()).all()

    @staticmethod
    @transactional
    def update_display(db: Session, display_id: str, location_name: Optional[str] = None,
                       is_active: Optional[bool] = None) -> DisplayInstance:
        display = DisplayManager.get_display(db, display_id)
        if location_name is None and is_active is None:
            raise InvalidConfiguration("No fields to update")

        if location_name is not None:
            display.location_name = location_name.strip()
        if is_active is not None:
            display.is_active = is_active
            logger.info(f"Display {display_id} {'activated' if is_active else 'deactivated'}")
        return display

    @staticmethod
    @transactional
    def delete_display(db: Session, display_id: str) -> None:
        """刪除 display，session / player / outcome / redemption / policy 透過 cascade 一併刪除"""
        display = DisplayManager.get_display(db, display_id)
        db.delete(display)
        logger.info(f"Deleted display {display_id}")

    @staticmethod
    def get_stats(db: Session, display_id: str) -> dict:
        DisplayManager.get_display(db, display_id)
        total_players = db.query(func.count(Player.id)).filter(
            Player.display_id == display_id
        ).scalar()
        status_counts = dict(
            db.query(GameSession.status, func.count(GameSession.id))
            .filter(GameSession.display_id == display_id)
            .group_by(GameSession.status)
            .all()
        )
        return {
            "total_users": total_players,
            "total_sessions": sum(status_counts.values()),
            "pending_sessions": status_counts.get(SessionStatus.PENDING, 0),
            "playing_sessions": status_counts.get(SessionStatus.PLAYING, 0),
            "completed_sessions": status_counts.get(SessionStatus.COMPLETED, 0),
        }

    # ============ Validation policy ============

    @staticmethod
    def get_policy(db: Session, display_id: str) -> ValidationPolicy:
        DisplayManager.get_display(db, display_id)
        return get_policy(display_id, db)

    @staticmethod
    @transactional
    def upsert_policy(db: Session, display_id: str, allow_multiple_plays: bool = False,
                      max_plays_per_email: Optional[int] = 1, max_plays_per_phone: Optional[int] = 1,
                      time_window_hours: Optional[int] = None, allow_retry_on_negative: bool = False,
                      check_display_ids: Optional[str] = None) -> ValidationPolicy:
        """
        新增或更新 display 的 validation policy

        驗證：
        - 次數上限必須是正整數或 null（不限）
        - 時間窗必須是正整數小時或 null（終身）
        - 跨站清單裡的 display 必須都存在

        異常：
            DisplayNotFound, InvalidConfiguration
        """
        DisplayManager.get_display(db, display_id)

        max_plays_per_email = _validate_limit("max_plays_per_email", max_plays_per_email)
        max_plays_per_phone = _validate_limit("max_plays_per_phone", max_plays_per_phone)
        time_window_hours = _validate_limit("time_window_hours", time_window_hours)

        ids = [i for i in parse_display_ids(check_display_ids) if i != display_id]
        if ids:
            existing = {
                row.id for row in
                db.query(DisplayInstance.id).filter(DisplayInstance.id.in_(ids)).all()
            }
            invalid = [i for i in ids if i not in existing]
            if invalid:
                raise InvalidConfiguration(f"Invalid display IDs: {', '.join(invalid)}")

        policy = db.get(ValidationPolicy, display_id)
        if policy is None:
            policy = ValidationPolicy(display_id=display_id)
            db.add(policy)

        policy.allow_multiple_plays = allow_multiple_plays
        policy.max_plays_per_email = max_plays_per_email
        policy.max_plays_per_phone = max_plays_per_phone
        policy.time_window_hours = time_window_hours
        policy.allow_retry_on_negative = allow_retry_on_negative
        policy.check_display_ids = ",".join(ids) if ids else None

        db.flush()
        logger.info(f"Validation policy updated for display {display_id}")
        return policy

    # ============ Outcomes ============

    @staticmethod
    def list_outcomes(db: Session, display_id: str, include_inactive: bool = False) -> List[Outcome]:
        DisplayManager.get_display(db, display_id)
        query = db.query(Outcome).filter(Outcome.display_id == display_id)
        if not include_inactive:
            query = query.filter(Outcome.is_active == True)
        return query.order_by(Outcome.probability_weight.desc(), Outcome.id).all()

    @staticmethod
    @transactional
    def create_outcome(db: Session, display_id: str, label: str, probability_weight: int,
                       is_negative: bool = False, is_active: bool = True,
                       style: Optional[dict] = None) -> Outcome:
        DisplayManager.get_display(db, display_id)
        if not label or not label.strip():
            raise InvalidConfiguration("label must be a non-empty string")

        outcome = Outcome(
            display_id=display_id,
            label=label.strip(),
            probability_weight=_validate_weight(probability_weight),
            is_negative=is_negative,
            is_active=is_active,
            style=style,
        )
        db.add(outcome)
        db.flush()
        logger.info(f"Created outcome {outcome.id} ({outcome.label}) for display {display_id}")
        return outcome

    @staticmethod
    @transactional
    def update_outcome(db: Session, outcome_id: str, **fields) -> Outcome:
        """
        更新獎項設定

        注意：已建立的 session 只記 outcome_id，修改權重不影響已抽出的結果
        """
        outcome = db.get(Outcome, outcome_id)
        if not outcome:
            raise OutcomeNotFound(outcome_id)

        if fields.get("label") is not None:
            if not fields["label"].strip():
                raise InvalidConfiguration("label must be a non-empty string")
            outcome.label = fields["label"].strip()
        if fields.get("probability_weight") is not None:
            outcome.probability_weight = _validate_weight(fields["probability_weight"])
        for name in ("is_negative", "is_active", "style"):
            if fields.get(name) is not None:
                setattr(outcome, name, fields[name])
        return outcome

    @staticmethod
    @transactional
    def delete_outcome(db: Session, outcome_id: str) -> None:
        outcome = db.get(Outcome, outcome_id)
        if not outcome:
            raise OutcomeNotFound(outcome_id)
        db.delete(outcome)
        logger.info(f"Deleted outcome {outcome_id}")
