"""
Request schemas（Pydantic）

前端一律使用 camelCase，Python 端使用 snake_case；
兩種寫法都接受（populate_by_name）。
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import BetMarket, ChatRoomType, UserRole


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Auth ============

class RegisterRequest(CamelModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = Field(default=None, max_length=64)
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    referred_by: Optional[str] = None


class LoginRequest(CamelModel):
    identifier: str = Field(validation_alias=AliasChoices("identifier", "email", "username", "phone"))
    password: str


class ProfileUpdateRequest(CamelModel):
    username: Optional[str] = Field(default=None, max_length=64)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str


class ForgotPasswordRequest(CamelModel):
    email: str


class ResetPasswordRequest(CamelModel):
    email: str
    otp: str = Field(min_length=6, max_length=6)
    new_password: str


# ============ Rounds / Bets ============

class PlaceBetDto(CamelModel):
    market: BetMarket
    selection: str
    amount_usd: Decimal = Field(gt=0)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)
    is_demo: bool = False
    user_round_duration: Optional[int] = None


class OpenRoundRequest(CamelModel):
    round_duration: Optional[int] = None
    freeze_offset: Optional[int] = None


class CancelRoundRequest(CamelModel):
    reason: str = Field(default="Cancelled by admin", max_length=255)


# ============ Wallet ============

class DepositRequest(CamelModel):
    amount: Decimal = Field(gt=0)
    method: Optional[str] = None
    reference: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class WithdrawRequest(DepositRequest):
    pass


class ProcessWithdrawalRequest(CamelModel):
    approved: bool


class TransferRequest(CamelModel):
    to_user_id: Optional[str] = None
    amount: Optional[Decimal] = None


# ============ Chat ============

class ChatMessageCreate(CamelModel):
    room_type: ChatRoomType = ChatRoomType.GENERAL
    content: str


# ============ FAQ ============

class FaqCreate(CamelModel):
    category: str
    question: str
    answer: str
    sort_order: int = 0


class FaqUpdate(CamelModel):
    category: Optional[str] = None
    question: Optional[str] = None
    answer: Optional[str] = None
    sort_order: Optional[int] = None


# ============ Legal ============

class LegalDraftCreate(CamelModel):
    version: str
    content: str
    effective_at: datetime


# ============ Premium ============

class PremiumPlanCreate(CamelModel):
    name: str
    price: Decimal = Field(gt=0)
    duration: int = Field(gt=0)
    is_active: bool = True


# ============ Users (admin) / Preferences ============

class AdminUserUpdate(CamelModel):
    username: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None


class BanUserRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class PreferencesUpdate(CamelModel):
    preferred_round_duration: Optional[int] = None
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
