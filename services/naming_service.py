"""
命名服務：生成兌換碼與 display 的預設名稱

純計算邏輯，不涉及狀態轉換
"""
import secrets

from database import get_settings

# 排除容易看錯的字元（0 / O / 1 / I）
REDEMPTION_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_redemption_code() -> str:
    """
    生成兌換碼

    格式：PREFIX-XXXX-XXXX
    範例：SPIN-7KQM-X3PA

    注意：
    - 不檢查唯一性（由呼叫者負責）
    - 32^8 ≈ 1.1 兆種組合，並且用 secrets 產生，避免被猜中
    """
    prefix = get_settings().redemption_code_prefix
    groups = [
        "".join(secrets.choice(REDEMPTION_ALPHABET) for _ in range(4))
        for _ in range(2)
    ]
    return f"{prefix}-{groups[0]}-{groups[1]}"


def generate_location_name(display_id: str) -> str:
    """
    沒有提供地點名稱時，從 display id 推出一個

    範例：
        generate_location_name("main_lobby") -> "Main lobby"
    """
    name = display_id.replace("_", " ").strip()
    return name[:1].upper() + name[1:] if name else display_id
