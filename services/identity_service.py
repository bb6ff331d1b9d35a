"""
身分正規化服務：Email / 電話的標準化

純計算邏輯，不涉及資料庫
正規化結果相同的兩筆輸入，在 policy 判斷上視為同一位玩家
"""
from dataclasses import dataclass
from typing import Optional
import re

from core.exceptions import InvalidIdentity
from database import get_settings

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(frozen=True)
class NormalizedIdentity:
    email: str
    phone: str


def normalize_email(raw) -> Optional[str]:
    """
    Email 正規化：去除前後空白並轉小寫

    範例：
        normalize_email(" User@Example.COM ") -> "user@example.com"
        normalize_email("   ") -> None
    """
    if not raw or not isinstance(raw, str):
        return None
    normalized = raw.strip().lower()
    return normalized or None


def normalize_phone(raw, country_code: Optional[str] = None, min_digits: Optional[int] = None) -> Optional[str]:
    """
    電話正規化：只保留數字

    規則：
    - 移除所有非數字字元
    - 剛好 11 碼且開頭為國碼時，去掉國碼
    - 剩餘位數不足 min_digits（預設 10）時回傳 None

    範例：
        normalize_phone("+1 (555) 123-4567") -> "5551234567"
        normalize_phone("555-1234") -> None
    """
    if not raw or not isinstance(raw, str):
        return None

    settings = get_settings()
    if country_code is None:
        country_code = settings.phone_country_code
    if min_digits is None:
        min_digits = settings.phone_min_digits

    digits = _NON_DIGIT_RE.sub("", raw)
    if len(digits) == 11 and digits.startswith(country_code):
        digits = digits[len(country_code):]

    return digits if len(digits) >= min_digits else None


def is_valid_email(raw) -> bool:
    if not raw or not isinstance(raw, str):
        return False
    return bool(_EMAIL_RE.match(raw.strip()))


def normalize_identity(email, phone) -> NormalizedIdentity:
    """
    將提交的 email / phone 一次正規化

    異常：
        InvalidIdentity: 任一欄位無法正規化（在建立任何資料之前就拒絕）
    """
    if not email or not str(email).strip():
        raise InvalidIdentity("email", "Email is required")
    if not is_valid_email(email):
        raise InvalidIdentity("email", "Please provide a valid email address")

    if not phone or not str(phone).strip():
        raise InvalidIdentity("phone", "Phone number is required")
    normalized_phone = normalize_phone(phone)
    if normalized_phone is None:
        raise InvalidIdentity("phone", "Please provide a valid 10-digit phone number")

    return NormalizedIdentity(email=normalize_email(email), phone=normalized_phone)
