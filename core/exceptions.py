"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理
"""


class KioskGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ Display 相關異常 ============

class DisplayNotFound(KioskGameException):
    """Display instance 不存在"""
    def __init__(self, display_id):
        self.display_id = display_id
        super().__init__(f"Display {display_id} not found")


class DisplayInactive(KioskGameException):
    """Display instance 已停用"""
    def __init__(self, display_id):
        self.display_id = display_id
        super().__init__(f"Display {display_id} is not active")


class DisplayAlreadyExists(KioskGameException):
    """Display id 已被使用"""
    def __init__(self, display_id):
        self.display_id = display_id
        super().__init__(f"Display {display_id} already exists")


class InvalidConfiguration(KioskGameException):
    """管理端送出的設定不合法（權重、上限、跨站清單等）"""
    pass


# ============ Outcome 選擇異常 ============

class OutcomeSelectionError(KioskGameException):
    """無法選出獎項的共同基類"""
    pass


class NoOutcomesAvailable(OutcomeSelectionError):
    """沒有任何啟用中的獎項"""
    pass


class NoEligibleOutcomes(OutcomeSelectionError):
    """所有獎項都被排除（權重為 0 或已達出現上限）"""
    pass


class ZeroTotalWeight(OutcomeSelectionError):
    """可選獎項的權重總和為 0"""
    pass


class InstanceGameLimitReached(OutcomeSelectionError):
    """已達此 display 的總遊戲次數上限"""
    pass


class OutcomeNotFound(KioskGameException):
    """獎項不存在"""
    def __init__(self, outcome_id):
        self.outcome_id = outcome_id
        super().__init__(f"Outcome {outcome_id} not found")


# ============ 身分 / 資格異常 ============

class InvalidIdentity(KioskGameException):
    """Email 或電話無法正規化"""
    def __init__(self, field, message):
        self.field = field
        super().__init__(message)


class PlayerNotEligible(KioskGameException):
    """依 validation policy 判定不能再玩"""
    def __init__(self, reason, code):
        self.reason = reason
        self.code = code
        super().__init__(reason)


# ============ Token 異常 ============

class InvalidToken(KioskGameException):
    """
    Token 不存在、過期或不屬於該 display

    對外一律顯示同一個訊息，detail 只寫進 log
    """
    PUBLIC_MESSAGE = "Invalid or expired token. Please scan the QR code again."

    def __init__(self, detail):
        self.detail = detail
        super().__init__(detail)


# ============ Session 狀態異常 ============

class SessionNotFound(KioskGameException):
    """Session 不存在"""
    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class InvalidState(KioskGameException):
    """非法的狀態轉換"""
    def __init__(self, session_id, status):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Game cannot be started. Current status: {status}")


# ============ Redemption 異常 ============

class RedemptionNotFound(KioskGameException):
    """兌換紀錄不存在"""
    def __init__(self, redemption_id):
        self.redemption_id = redemption_id
        super().__init__(f"Redemption {redemption_id} not found")
