"""
Access Token 服務

Token 把一次表單提交綁定到一台 display，防止 QR code 被轉傳或重放：
- 只受時間限制（預設 15 分鐘），不是一次性的
- 每次提交都要重新檢查 token 是否屬於聲稱的 display
- 任何失敗對外都是同一句「invalid or expired」，實際原因只寫 log
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
import logging
import secrets
import time

from sqlalchemy.orm import Session

from core.cache import MemoryTTLCache, RedisTTLCache, TTLCache
from core.exceptions import DisplayInactive, DisplayNotFound, InvalidToken
from database import get_settings
from models import DisplayInstance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    ttl_seconds: int


class TokenService:
    def __init__(self, cache: TTLCache, ttl_seconds: int = 15 * 60, clock=time.time):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, db: Session, display_id: str) -> IssuedToken:
        """
        為 display 發一個新 token

        異常：
            DisplayNotFound: display 不存在
            DisplayInactive: display 已停用
        """
        display = db.get(DisplayInstance, display_id)
        if display is None:
            raise DisplayNotFound(display_id)
        if not display.is_active:
            raise DisplayInactive(display_id)

        token = secrets.token_hex(32)
        issued_at = self._clock()
        self.cache.put(
            token,
            {
                "display_id": display_id,
                "issued_at": issued_at,
                "expires_at": issued_at + self.ttl_seconds,
                "used": False,
            },
            self.ttl_seconds,
        )
        logger.info(f"Issued access token for display {display_id}")
        return IssuedToken(token=token, ttl_seconds=self.ttl_seconds)

    def validate(self, token: Optional[str]) -> str:
        """
        檢查 token 是否有效，不會消耗 token

        返回：
            token 綁定的 display id

        異常：
            InvalidToken
        """
        if not token:
            raise InvalidToken("token missing")

        data = self.cache.get(token)
        if data is None:
            raise InvalidToken("token unknown or evicted")

        if self._clock() > data["expires_at"]:
            self.cache.delete(token)
            raise InvalidToken("token expired")

        return data["display_id"]

    def check_binding(self, token: Optional[str], display_id: str) -> None:
        """
        提交表單時使用：token 必須有效且屬於同一台 display

        通過時把 used 標記為 True（僅供參考，不影響之後的驗證）
        """
        bound_display_id = self.validate(token)
        if bound_display_id != display_id:
            raise InvalidToken(
                f"token bound to display {bound_display_id}, submitted for {display_id}"
            )

        data = self.cache.get(token)
        if data is not None and not data.get("used"):
            data["used"] = True
            remaining = max(1, int(data["expires_at"] - self._clock()))
            self.cache.put(token, data, remaining)

    def sweep(self) -> int:
        removed = self.cache.sweep()
        if removed:
            logger.info(f"Swept {removed} expired access token(s)")
        return removed


@lru_cache()
def get_token_service() -> TokenService:
    """
    FastAPI dependency：整個 process 共用一個 TokenService

    有設定 TOKEN_CACHE_URL 時改用 Redis，多台服務之間才看得到同一批 token
    """
    settings = get_settings()
    if settings.token_cache_url:
        cache = RedisTTLCache.from_url(settings.token_cache_url)
    else:
        cache = MemoryTTLCache()
    return TokenService(cache, ttl_seconds=settings.token_ttl_seconds)
