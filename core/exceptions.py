"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理。
每個異常都帶有 status_code（對應的 HTTP 狀態碼）與可選的 code（給前端判斷用）。
"""


class ForexSpinException(Exception):
    """所有業務異常的基類"""
    status_code = 400
    code = None
    default_message = "Request failed"

    def __init__(self, message: str = None, code: str = None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class NotFound(ForexSpinException):
    """資源不存在"""
    status_code = 404
    default_message = "Resource not found"


class BadRequest(ForexSpinException):
    """請求不合法"""
    status_code = 400
    default_message = "Bad request"


class Unauthorized(ForexSpinException):
    """未登入或 token 無效"""
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ForexSpinException):
    """沒有權限"""
    status_code = 403
    default_message = "Forbidden"


class Conflict(ForexSpinException):
    """資源衝突（重複、狀態不符）"""
    status_code = 409
    default_message = "Conflict"


# ============ Round 相關異常 ============

class RoundNotFound(NotFound):
    """Round not found"""
    def __init__(self, round_id=None):
        self.round_id = round_id
        super().__init__("Round not found")


class NoActiveRound(BadRequest):
    """目前沒有進行中的回合"""
    default_message = "No active round available. Please wait for next round."


class InvalidStateTransition(Conflict):
    """非法的狀態轉換"""
    default_message = "Invalid round state transition"


class InvalidRoundTiming(BadRequest):
    """回合時間設定不合法"""
    default_message = "Invalid round timing"


# ============ Bet 相關異常 ============

class BetNotFound(NotFound):
    """Bet not found"""
    def __init__(self, bet_id=None):
        self.bet_id = bet_id
        super().__init__("Bet not found")


class InvalidSelection(BadRequest):
    """選項與市場不符"""
    default_message = "Selection does not match market"


class MarketNotOpen(BadRequest):
    """市場尚未開放下注"""
    default_message = "Market is not open for orders"


class MarketClosed(BadRequest):
    """市場已關閉，不再接受下注"""
    default_message = "Market closed - orders no longer accepted"


class BetLimitExceeded(BadRequest):
    """下注金額超出範圍"""
    default_message = "Bet amount is out of range"


class BetNotCancellable(BadRequest):
    """此注單無法取消"""
    default_message = "Bet cannot be cancelled"


class PremiumRequired(Forbidden):
    """Premium 限定功能"""
    default_message = "This feature is available to premium users only"


# ============ Wallet 相關異常 ============

class WalletNotFound(NotFound):
    """錢包不存在"""
    default_message = "Wallet not found"


class InsufficientFunds(BadRequest):
    """餘額不足"""
    default_message = "Insufficient funds"


class TransactionNotFound(NotFound):
    """交易不存在"""
    default_message = "Transaction not found"


class TransfersDisabled(Forbidden):
    """站內轉帳已停用"""
    default_message = "Internal transfers are disabled"


# ============ User / Auth 相關異常 ============

class UserNotFound(NotFound):
    """使用者不存在"""
    default_message = "User not found"


class InvalidCredentials(Unauthorized):
    """帳號或密碼錯誤"""
    default_message = "Invalid credentials"


class AccountDisabled(Unauthorized):
    """帳號停用或被封鎖"""
    default_message = "Account is inactive or banned"


class UserAlreadyExists(Conflict):
    """email / phone / username 重複"""
    default_message = "User with this email, phone, or username already exists"


class WeakPassword(BadRequest):
    """密碼強度不足"""
    default_message = "Password is too weak"


class InvalidOtp(BadRequest):
    """OTP 錯誤或過期"""
    default_message = "Invalid or expired OTP. Please request a new one."


# ============ Legal 相關異常 ============

AGE_CONFIRM_REQUIRED = "AGE_CONFIRM_REQUIRED"
LEGAL_REACCEPT_REQUIRED = "LEGAL_REACCEPT_REQUIRED"


class LegalComplianceRequired(Forbidden):
    """使用者尚未完成年齡確認或尚未接受最新條款"""
    default_message = "Age confirmation or acceptance of the latest legal documents is required"


class LegalDocumentNotFound(NotFound):
    """法律文件不存在"""
    default_message = "Legal document not found"


# ============ Chat 相關異常 ============

class ChatRateLimited(BadRequest):
    """發言太頻繁"""
    default_message = "You are sending messages too quickly"


class ChatAccessDenied(Forbidden):
    """無權進入此聊天室"""
    default_message = "You do not have access to this chat room"
