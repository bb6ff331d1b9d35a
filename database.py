from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import List, Optional
import logging

from core.exceptions import KioskGameException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./prize_kiosk.db"

    # Access tokens
    token_ttl_seconds: int = 15 * 60
    token_cache_url: Optional[str] = None
    token_sweep_interval_seconds: int = 5 * 60

    # Session lifecycle
    stuck_session_timeout_seconds: int = 2 * 60
    stuck_sweep_interval_seconds: int = 5 * 60
    background_sweeps_enabled: bool = True

    # Outcome selection (0 = no limit)
    max_games_per_instance: int = 0
    max_outcome_occurrences: int = 0

    # Identity normalization
    phone_country_code: str = "1"
    phone_min_digits: int = 10

    redemption_code_prefix: str = "SPIN"

    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    """
    SQLite 需要特殊設定：

    - connect_args={"check_same_thread": False}：FastAPI 的 threadpool 會跨執行緒使用連線
    - in-memory database（sqlite://）必須用 StaticPool，否則每條連線都是一個新的空資料庫
    """
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency：每個請求一個 Session，請求結束後關閉"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _find_db(args, kwargs) -> Optional[Session]:
    if args and isinstance(args[0], Session):
        return args[0]
    return kwargs.get("db")


def transactional(func):
    """
    Transaction decorator：manager 方法的 commit / rollback 邊界

    範例：
        @staticmethod
        @transactional
        def report_completion(db: Session, session_id: str):
            ...  # 只 flush，不 commit

    - 正常返回 → commit
    - KioskGameException（拒絕、找不到、狀態不對）→ rollback，記 warning
    - 其他異常（包含 commit 本身失敗）→ rollback，記 error + traceback
    - 異常一律重新拋出，由 API 層轉成 HTTP 回應
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _find_db(args, kwargs)
        if db is None:
            raise TypeError(
                f"@transactional: {func.__qualname__} must take 'db: Session' as its first argument"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except KioskGameException as e:
            db.rollback()
            logger.warning(f"{func.__qualname__} rejected: {e}")
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"{func.__qualname__} failed, rolled back: {e}", exc_info=True)
            raise

    return wrapper
