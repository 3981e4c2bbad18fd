"""
推薦（Affiliate）服務

被推薦人每次存款，推薦人依存款金額所在級距拿到一筆固定佣金：

    存款 < 50     TIER_1   $0
    存款 < 100    TIER_2   $1
    存款 < 500    TIER_3   $2
    存款 < 2000   TIER_4   $5
    其他          TIER_5   $7
"""
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    AffiliateEarning,
    AffiliateTier,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    Wallet,
)
from core.exceptions import BadRequest
from core.locks import with_wallet_lock
from database import transactional, utcnow
from services.history_service import paginate
from services.naming_service import generate_unique_affiliate_code
from services.payoff_service import quantize

logger = logging.getLogger(__name__)

# (存款上限, tier, 佣金)；上限 None 表示沒有上限
AFFILIATE_TIERS: Tuple[Tuple[Optional[Decimal], AffiliateTier, Decimal], ...] = (
    (Decimal("50"), AffiliateTier.TIER_1, Decimal("0")),
    (Decimal("100"), AffiliateTier.TIER_2, Decimal("1")),
    (Decimal("500"), AffiliateTier.TIER_3, Decimal("2")),
    (Decimal("2000"), AffiliateTier.TIER_4, Decimal("5")),
    (None, AffiliateTier.TIER_5, Decimal("7")),
)

LEADERBOARD_PERIODS = ("allTime", "monthly", "weekly")


def get_tier_for_deposit(amount) -> Tuple[AffiliateTier, Decimal]:
    amount = Decimal(str(amount))
    for upper, tier, commission in AFFILIATE_TIERS:
        if upper is None or amount < upper:
            return tier, commission
    return AFFILIATE_TIERS[-1][1], AFFILIATE_TIERS[-1][2]


def describe_tiers() -> List[Dict[str, Any]]:
    """給前端顯示的級距表"""
    tiers = []
    lower = Decimal("0")
    for upper, tier, commission in AFFILIATE_TIERS:
        tiers.append({
            "tier": tier.value,
            "minDeposit": str(lower),
            "maxDeposit": str(upper) if upper is not None else None,
            "commission": str(commission),
        })
        lower = upper if upper is not None else lower
    return tiers


def get_referrer_id(db: Session, user_id: str) -> Optional[str]:
    referred = db.query(User).filter(User.id == user_id).first()
    return referred.referred_by if referred else None


def process_affiliate_commission(db: Session, referred_user_id: str, deposit_amount, now=None) -> Optional[AffiliateEarning]:
    """
    發放推薦佣金

    流程：
    1. 找被推薦人的推薦人（沒有就結束）
    2. 依存款金額決定 tier 與佣金（$0 不入帳）
    3. 推薦人錢包入帳，寫 AFFILIATE_EARNING 交易與佣金紀錄

    只 flush，不 commit（在存款的 transaction 內執行）；
    推薦人錢包的 walletUpdated 事件由呼叫端發送
    """
    referrer_id = get_referrer_id(db, referred_user_id)
    if not referrer_id:
        return None

    tier, commission = get_tier_for_deposit(deposit_amount)
    if commission <= 0:
        logger.debug(f"Deposit {deposit_amount} by {referred_user_id} is below the commission tiers")
        return None

    now = now or utcnow()
    wallet = with_wallet_lock(referrer_id, db).first()
    if not wallet:
        wallet = Wallet(
            user_id=referrer_id,
            available=Decimal("0"),
            held=Decimal("0"),
            demo_available=get_settings().demo_starting_balance,
        )
        db.add(wallet)
    wallet.available = quantize(wallet.available + commission)

    earning = AffiliateEarning(
        user_id=referrer_id,
        referred_user_id=referred_user_id,
        amount=commission,
        deposit_amount=deposit_amount,
        tier=tier,
        is_paid=True,
        created_at=now,
    )
    db.add(earning)
    db.add(Transaction(
        user_id=referrer_id,
        type=TransactionType.AFFILIATE_EARNING,
        amount=commission,
        status=TransactionStatus.COMPLETED,
        description=f"Affiliate commission ({tier.value}) from referral deposit",
        processed_at=now,
    ))
    db.flush()

    logger.info(f"Affiliate commission {commission} ({tier.value}) credited to {referrer_id}")
    return earning


def _earnings_sum(db: Session, *filters) -> Decimal:
    total = db.query(func.coalesce(func.sum(AffiliateEarning.amount), 0)).filter(*filters).scalar()
    return quantize(total or 0)


def get_affiliate_stats(db: Session, user: User, now=None) -> Dict[str, Any]:
    now = now or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    total_referrals = db.query(User).filter(User.referred_by == user.id).count()
    return {
        "affiliateCode": user.affiliate_code,
        "totalReferrals": total_referrals,
        "totalEarnings": str(_earnings_sum(db, AffiliateEarning.user_id == user.id)),
        "thisMonthEarnings": str(_earnings_sum(
            db, AffiliateEarning.user_id == user.id, AffiliateEarning.created_at >= month_start
        )),
        "tiers": describe_tiers(),
    }


def get_referrals(db: Session, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    def serialize(referred: User) -> Dict[str, Any]:
        return {
            "id": referred.id,
            "username": referred.username,
            "joinedAt": referred.created_at.isoformat() if referred.created_at else None,
            "totalCommission": str(_earnings_sum(
                db,
                AffiliateEarning.user_id == user_id,
                AffiliateEarning.referred_user_id == referred.id,
            )),
        }

    query = db.query(User).filter(User.referred_by == user_id).order_by(User.created_at.desc())
    return paginate(query, page, limit, serialize)


def get_leaderboard(db: Session, period: str = "allTime", limit: int = 10, now=None) -> List[Dict[str, Any]]:
    """
    推薦排行榜

    參數：
        period: allTime / monthly / weekly
        limit: 取前幾名（最多 100）
    """
    if period not in LEADERBOARD_PERIODS:
        raise BadRequest(f"period must be one of {', '.join(LEADERBOARD_PERIODS)}")
    now = now or utcnow()
    limit = min(max(1, limit), 100)

    total = func.sum(AffiliateEarning.amount).label("total")
    query = (
        db.query(User.id, User.username, total, func.count(AffiliateEarning.id).label("earnings"))
        .join(AffiliateEarning, AffiliateEarning.user_id == User.id)
    )
    if period == "monthly":
        query = query.filter(AffiliateEarning.created_at >= now - timedelta(days=30))
    elif period == "weekly":
        query = query.filter(AffiliateEarning.created_at >= now - timedelta(days=7))

    rows = query.group_by(User.id, User.username).order_by(total.desc()).limit(limit).all()
    return [
        {
            "rank": index + 1,
            "userId": row.id,
            "username": row.username,
            "totalEarnings": str(quantize(row.total or 0)),
            "commissions": row.earnings,
        }
        for index, row in enumerate(rows)
    ]


def get_global_stats(db: Session) -> Dict[str, Any]:
    """管理員用：整站推薦統計"""
    return {
        "totalAffiliates": db.query(func.count(func.distinct(AffiliateEarning.user_id))).scalar() or 0,
        "totalReferredUsers": db.query(User).filter(User.referred_by.isnot(None)).count(),
        "totalCommissionsPaid": str(_earnings_sum(db)),
        "totalCommissions": db.query(AffiliateEarning).count(),
    }


@transactional
def generate_code(db: Session, user_id: str) -> str:
    """使用者還沒有推薦碼時產生一組；已經有就直接回傳"""
    user = db.query(User).filter(User.id == user_id).with_for_update(nowait=False).one()
    if not user.affiliate_code:
        user.affiliate_code = generate_unique_affiliate_code(db)
        db.flush()
        logger.info(f"Generated affiliate code for user {user_id}")
    return user.affiliate_code
