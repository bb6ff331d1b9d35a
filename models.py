"""
資料模型

Display instance 為最上層，所有 outcome / player / session / redemption 都屬於某一個 display。
刪除 display 時透過 ORM cascade 一併刪除底下資料。
"""
from datetime import datetime, timezone
import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    PENDING = "pending"      # 已建立，等待按下 buzzer
    PLAYING = "playing"      # display 正在轉盤
    COMPLETED = "completed"  # 終止狀態


# 進行中或已完成的 session 都算「玩過」
COUNTED_STATUSES = (SessionStatus.PENDING, SessionStatus.PLAYING, SessionStatus.COMPLETED)
IN_FLIGHT_STATUSES = (SessionStatus.PENDING, SessionStatus.PLAYING)


class DisplayInstance(Base):
    __tablename__ = "display_instances"

    id = Column(String(50), primary_key=True)
    location_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    policy = relationship(
        "ValidationPolicy", back_populates="display", uselist=False,
        cascade="all, delete-orphan"
    )
    outcomes = relationship("Outcome", back_populates="display", cascade="all, delete-orphan")
    players = relationship("Player", back_populates="display", cascade="all, delete-orphan")
    sessions = relationship("GameSession", back_populates="display", cascade="all, delete-orphan")


class Outcome(Base):
    __tablename__ = "outcomes"

    id = Column(String(36), primary_key=True, default=_uuid)
    display_id = Column(String(50), ForeignKey("display_instances.id"), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    probability_weight = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    is_negative = Column(Boolean, nullable=False, default=False)
    style = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    display = relationship("DisplayInstance", back_populates="outcomes")


class Player(Base):
    """一次提交的身分資料（raw + normalized 都保存）"""
    __tablename__ = "players"

    id = Column(String(36), primary_key=True, default=_uuid)
    display_id = Column(String(50), ForeignKey("display_instances.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email_normalized = Column(String(255), nullable=True)
    phone_normalized = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    display = relationship("DisplayInstance", back_populates="players")


class GameSession(Base):
    __tablename__ = "game_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    display_id = Column(String(50), ForeignKey("display_instances.id"), nullable=False, index=True)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    outcome_id = Column(String(36), ForeignKey("outcomes.id", ondelete="SET NULL"), nullable=True)
    # 冗餘一份正規化身分，供 policy 查詢與進行中檢查使用
    email_normalized = Column(String(255), nullable=True)
    phone_normalized = Column(String(50), nullable=True)
    status = Column(
        Enum(SessionStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
        default=SessionStatus.PENDING,
        index=True,
    )
    needs_review = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    display = relationship("DisplayInstance", back_populates="sessions")
    player = relationship("Player")
    outcome = relationship("Outcome")
    redemption = relationship(
        "Redemption", back_populates="session", uselist=False,
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_game_sessions_email_display", "email_normalized", "display_id"),
        Index("ix_game_sessions_phone_display", "phone_normalized", "display_id"),
    )


class Redemption(Base):
    __tablename__ = "redemptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(36), ForeignKey("game_sessions.id"), nullable=False, unique=True)
    code = Column(String(50), nullable=False, unique=True)
    email_normalized = Column(String(255), nullable=False, index=True)
    phone_normalized = Column(String(50), nullable=False, index=True)
    outcome_id = Column(String(36), ForeignKey("outcomes.id", ondelete="SET NULL"), nullable=True)
    outcome_label = Column(String(255), nullable=True)
    is_redeemed = Column(Boolean, nullable=False, default=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_by = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    session = relationship("GameSession", back_populates="redemption")


class ValidationPolicy(Base):
    __tablename__ = "validation_policies"

    display_id = Column(String(50), ForeignKey("display_instances.id"), primary_key=True)
    allow_multiple_plays = Column(Boolean, nullable=False, default=False)
    # NULL 代表不限次數
    max_plays_per_email = Column(Integer, nullable=True)
    max_plays_per_phone = Column(Integer, nullable=True)
    time_window_hours = Column(Integer, nullable=True)
    allow_retry_on_negative = Column(Boolean, nullable=False, default=False)
    check_display_ids = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    display = relationship("DisplayInstance", back_populates="policy")
