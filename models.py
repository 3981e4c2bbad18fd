"""
資料模型（SQLAlchemy ORM）

金額一律使用 Numeric(18, 2)，在 Python 端是 Decimal。
時間一律存 naive UTC。
"""
import enum
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


def Money(**kwargs):
    return Column(Numeric(18, 2, asdecimal=True), nullable=False, default=Decimal("0"), **kwargs)


# ============ Enums ============

class UserRole(str, enum.Enum):
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class RoundState(str, enum.Enum):
    OPEN = "OPEN"
    FROZEN = "FROZEN"
    SETTLING = "SETTLING"
    SETTLED = "SETTLED"


class BetMarket(str, enum.Enum):
    OUTER = "OUTER"
    MIDDLE = "MIDDLE"
    INNER = "INNER"
    GLOBAL = "GLOBAL"


class BetStatus(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    WON = "WON"
    LOST = "LOST"
    CANCELLED = "CANCELLED"


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    BET = "BET"
    SPIN_WIN = "SPIN_WIN"
    SPIN_LOSS = "SPIN_LOSS"
    REFUND = "REFUND"
    AFFILIATE_EARNING = "AFFILIATE_EARNING"
    PREMIUM_SUBSCRIPTION = "PREMIUM_SUBSCRIPTION"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AffiliateTier(str, enum.Enum):
    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"
    TIER_4 = "TIER_4"
    TIER_5 = "TIER_5"


class ChatRoomType(str, enum.Enum):
    GENERAL = "GENERAL"
    PREMIUM = "PREMIUM"
    ADMIN = "ADMIN"


class LegalDocumentType(str, enum.Enum):
    TERMS = "TERMS"
    PRIVACY = "PRIVACY"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class KycStatus(str, enum.Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# ============ Users / Wallets ============

class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=True, index=True)
    phone = Column(String(32), unique=True, nullable=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)

    is_active = Column(Boolean, nullable=False, default=True)
    is_banned = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_demo = Column(Boolean, nullable=False, default=False)
    kyc_status = Column(Enum(KycStatus), nullable=False, default=KycStatus.NONE)
    ban_reason = Column(String(255), nullable=True)

    premium = Column(Boolean, nullable=False, default=False)
    premium_expires_at = Column(DateTime, nullable=True)

    affiliate_code = Column(String(16), unique=True, nullable=True, index=True)
    referred_by = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    is_age_18_confirmed = Column(Boolean, nullable=False, default=False)
    age_confirmed_at = Column(DateTime, nullable=True)
    age_confirmed_ip = Column(String(64), nullable=True)
    age_confirmed_user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    wallet = relationship("Wallet", back_populates="user", uselist=False)
    referrer = relationship("User", remote_side=[id], backref="referrals")
    preferences = relationship("UserPreferences", back_populates="user", uselist=False)


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)

    available = Money()
    held = Money()
    demo_available = Money()
    total_deposited = Money()
    total_withdrawn = Money()
    total_won = Money()
    total_lost = Money()

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="wallet")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Enum(TransactionType), nullable=False)
    amount = Money()
    fee = Money()
    status = Column(Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING)
    method = Column(String(50), nullable=True)
    reference = Column(String(255), nullable=True)
    description = Column(String(500), nullable=True)
    idempotency_key = Column(String(128), unique=True, nullable=True)
    bet_id = Column(String(36), ForeignKey("bets.id"), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)


# ============ Rounds / Bets ============

class Round(Base):
    __tablename__ = "rounds"

    id = Column(String(36), primary_key=True, default=_uuid)
    round_number = Column(Integer, unique=True, nullable=False, index=True)
    state = Column(Enum(RoundState), nullable=False, default=RoundState.OPEN, index=True)

    opened_at = Column(DateTime, nullable=False)
    freeze_at = Column(DateTime, nullable=False)
    settle_at = Column(DateTime, nullable=False)
    settled_at = Column(DateTime, nullable=True)

    round_duration = Column(Integer, nullable=False)
    freeze_offset = Column(Integer, nullable=False)
    premium_cutoff = Column(Integer, nullable=False)
    regular_cutoff = Column(Integer, nullable=False)

    # Freeze 時結算用的最終總額（含系統種子、不含 demo）
    outer_buy = Money()
    outer_sell = Money()
    middle_blue = Money()
    middle_red = Money()
    inner_high_vol = Money()
    inner_low_vol = Money()
    global_indecision = Money()
    total_volume = Money()

    outer_winner = Column(String(16), nullable=True)
    middle_winner = Column(String(16), nullable=True)
    inner_winner = Column(String(16), nullable=True)
    outer_tied = Column(Boolean, nullable=False, default=False)
    middle_tied = Column(Boolean, nullable=False, default=False)
    inner_tied = Column(Boolean, nullable=False, default=False)
    indecision_triggered = Column(Boolean, nullable=False, default=False)
    total_house_fee = Money()

    checkpoints = Column(JSON, nullable=False, default=dict)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    cancel_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    artifact = relationship("FairnessArtifact", back_populates="round", uselist=False)
    bets = relationship("Bet", back_populates="round")


class FairnessArtifact(Base):
    __tablename__ = "fairness_artifacts"

    id = Column(String(36), primary_key=True, default=_uuid)
    round_id = Column(String(36), ForeignKey("rounds.id"), unique=True, nullable=False)
    commit_hash = Column(String(64), nullable=False)
    secret = Column(String(64), nullable=False)
    artifact_data = Column(JSON, nullable=False, default=dict)
    revealed_at = Column(DateTime, nullable=True)

    round = relationship("Round", back_populates="artifact")


class Bet(Base):
    __tablename__ = "bets"

    id = Column(String(36), primary_key=True, default=_uuid)
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False, index=True)
    # 系統種子注單沒有 user
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    market = Column(Enum(BetMarket), nullable=False)
    selection = Column(String(16), nullable=False)
    amount_usd = Money()
    status = Column(Enum(BetStatus), nullable=False, default=BetStatus.ACCEPTED, index=True)

    is_premium_user = Column(Boolean, nullable=False, default=False)
    is_demo = Column(Boolean, nullable=False, default=False)
    is_system_seed = Column(Boolean, nullable=False, default=False)
    user_round_duration = Column(Integer, nullable=True)
    idempotency_key = Column(String(128), unique=True, nullable=True)

    is_winner = Column(Boolean, nullable=True)
    payout_amount = Column(Numeric(18, 2, asdecimal=True), nullable=True)
    profit_amount = Column(Numeric(18, 2, asdecimal=True), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    settled_at = Column(DateTime, nullable=True)

    round = relationship("Round", back_populates="bets")
    user = relationship("User")


# ============ Affiliate ============

class AffiliateEarning(Base):
    __tablename__ = "affiliate_earnings"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    referred_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    amount = Money()
    deposit_amount = Money()
    tier = Column(Enum(AffiliateTier), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    referred_user = relationship("User", foreign_keys=[referred_user_id])


# ============ Chat ============

class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    room_type = Column(Enum(ChatRoomType), nullable=False, index=True)
    content = Column(Text, nullable=False)
    ip_address = Column(String(64), nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_by = Column(String(36), nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    delete_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User")


# ============ FAQ / Legal ============

class FaqItem(Base):
    __tablename__ = "faq_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    category = Column(String(100), nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class LegalDocument(Base):
    __tablename__ = "legal_documents"
    __table_args__ = (UniqueConstraint("type", "version", name="uq_legal_type_version"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    type = Column(Enum(LegalDocumentType), nullable=False)
    version = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)
    effective_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_by_admin_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    created_by_admin = relationship("User")


class UserLegalAcceptance(Base):
    __tablename__ = "user_legal_acceptances"
    __table_args__ = (UniqueConstraint("user_id", "legal_document_id", name="uq_user_legal_doc"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    legal_document_id = Column(String(36), ForeignKey("legal_documents.id"), nullable=False)
    accepted_at = Column(DateTime, nullable=False, default=utcnow)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)

    legal_document = relationship("LegalDocument")


# ============ Premium ============

class PremiumPlan(Base):
    __tablename__ = "premium_plans"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    price = Money()
    duration = Column(Integer, nullable=False)  # months
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PremiumSubscription(Base):
    __tablename__ = "premium_subscriptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("premium_plans.id"), nullable=False)
    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE)
    start_date = Column(DateTime, nullable=False, default=utcnow)
    end_date = Column(DateTime, nullable=False)
    amount_paid = Money()
    created_at = Column(DateTime, nullable=False, default=utcnow)

    plan = relationship("PremiumPlan")


# ============ Preferences ============

class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    preferred_round_duration = Column(Integer, nullable=False, default=20)  # minutes
    email_notifications = Column(Boolean, nullable=False, default=True)
    push_notifications = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="preferences")
