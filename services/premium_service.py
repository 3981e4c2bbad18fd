"""
Premium 訂閱服務

- Premium 使用者：下注上限較低（200），可以取消注單，可進入 PREMIUM 聊天室
- 訂閱以「月」為單位，從錢包扣款
- 排程器定期把過期的訂閱標成 EXPIRED 並拿掉使用者的 premium 旗標
"""
import calendar
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from models import (
    PremiumPlan,
    PremiumSubscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from core.exceptions import BadRequest, InsufficientFunds, NotFound
from core.locks import with_wallet_lock
from core.wallet_manager import publish_wallet
from database import transactional, utcnow
from services.payoff_service import quantize

logger = logging.getLogger(__name__)


def is_premium_active(user: Optional[User], now: Optional[datetime] = None) -> bool:
    """premium 旗標有開，而且沒有到期日或到期日在未來"""
    if user is None or not user.premium:
        return False
    if user.premium_expires_at is None:
        return True
    return user.premium_expires_at > (now or utcnow())


def add_months(moment: datetime, months: int) -> datetime:
    """
    加 N 個月，月底日期自動往前對齊

    範例：
        add_months(2024-01-31, 1) -> 2024-02-29
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def serialize_plan(plan: PremiumPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "price": str(quantize(plan.price)),
        "duration": plan.duration,
        "isActive": plan.is_active,
    }


def serialize_subscription(sub: PremiumSubscription) -> Dict[str, Any]:
    return {
        "id": sub.id,
        "planId": sub.plan_id,
        "planName": sub.plan.name if sub.plan else None,
        "status": sub.status.value,
        "startDate": sub.start_date.isoformat(),
        "endDate": sub.end_date.isoformat(),
        "amountPaid": str(quantize(sub.amount_paid)),
    }


def list_plans(db: Session) -> List[PremiumPlan]:
    return db.query(PremiumPlan).filter(PremiumPlan.is_active == True).order_by(PremiumPlan.price).all()  # noqa: E712


@transactional
def create_plan(db: Session, name: str, price, duration: int, is_active: bool = True) -> PremiumPlan:
    if quantize(price) <= 0:
        raise BadRequest("Price must be greater than 0")
    if duration <= 0:
        raise BadRequest("Duration must be at least 1 month")
    plan = PremiumPlan(name=name, price=quantize(price), duration=duration, is_active=is_active)
    db.add(plan)
    db.flush()
    logger.info(f"Premium plan {name} created ({duration} months, {plan.price})")
    return plan


@transactional
def subscribe(db: Session, user_id: str, plan_id: str, now: Optional[datetime] = None) -> PremiumSubscription:
    """
    訂閱 Premium

    流程：
    1. 驗證方案存在且啟用
    2. 鎖定錢包扣款，寫 PREMIUM_SUBSCRIPTION 交易
    3. 建立訂閱；若目前還在 premium 期間，從原到期日往後延

    異常：
        NotFound: 方案不存在或已停用
        InsufficientFunds: 餘額不足
    """
    now = now or utcnow()
    plan = db.query(PremiumPlan).filter(PremiumPlan.id == plan_id, PremiumPlan.is_active == True).first()  # noqa: E712
    if not plan:
        raise NotFound("Premium plan not found")

    user = db.query(User).filter(User.id == user_id).one()
    wallet = with_wallet_lock(user_id, db).first()
    price = quantize(plan.price)
    if not wallet or wallet.available < price:
        raise InsufficientFunds()

    wallet.available = quantize(wallet.available - price)
    db.add(Transaction(
        user_id=user_id,
        type=TransactionType.PREMIUM_SUBSCRIPTION,
        amount=price,
        status=TransactionStatus.COMPLETED,
        description=f"Premium subscription: {plan.name}",
        processed_at=now,
    ))

    start = user.premium_expires_at if is_premium_active(user, now) and user.premium_expires_at else now
    end = add_months(start, plan.duration)
    subscription = PremiumSubscription(
        user_id=user_id,
        plan_id=plan.id,
        status=SubscriptionStatus.ACTIVE,
        start_date=now,
        end_date=end,
        amount_paid=price,
    )
    db.add(subscription)

    user.premium = True
    user.premium_expires_at = end
    db.flush()

    logger.info(f"User {user_id} subscribed to {plan.name} until {end.isoformat()}")
    publish_wallet(db, wallet)
    return subscription


def get_current_subscription(db: Session, user_id: str) -> Optional[PremiumSubscription]:
    return (
        db.query(PremiumSubscription)
        .filter(
            PremiumSubscription.user_id == user_id,
            PremiumSubscription.status == SubscriptionStatus.ACTIVE,
        )
        .order_by(PremiumSubscription.end_date.desc())
        .first()
    )


@transactional
def check_expired_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    """
    把到期的訂閱標成 EXPIRED，並拿掉已過期使用者的 premium 旗標

    返回：
        這次處理的訂閱數量
    """
    now = now or utcnow()
    expired = db.query(PremiumSubscription).filter(
        PremiumSubscription.status == SubscriptionStatus.ACTIVE,
        PremiumSubscription.end_date <= now,
    ).all()

    for sub in expired:
        sub.status = SubscriptionStatus.EXPIRED

    users = db.query(User).filter(
        User.premium == True,  # noqa: E712
        User.premium_expires_at.isnot(None),
        User.premium_expires_at <= now,
    ).all()
    for user in users:
        user.premium = False

    db.flush()
    if expired or users:
        logger.info(f"Expired {len(expired)} subscriptions, cleared premium for {len(users)} users")
    return len(expired)
