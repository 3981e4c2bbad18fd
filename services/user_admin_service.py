"""
使用者管理服務（後台）

職責：
1. 使用者列表、搜尋、詳細資料與統計
2. 封鎖 / 解除封鎖（封鎖後 token 立即失效，見 api/deps.py）
3. KYC 審核：通過後 is_verified = True，可以進 PREMIUM 聊天室
4. 管理員修改使用者資料；role / 狀態欄位只有 SUPER_ADMIN 能改
5. 後台首頁的統計與最近活動
"""
from typing import Any, Dict, Optional
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from models import (
    Bet,
    KycStatus,
    Round,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    UserRole,
    Wallet,
)
from core.exceptions import BadRequest, Forbidden, UserAlreadyExists, UserNotFound
from database import transactional
from services.auth_service import serialize_user
from services.history_service import paginate, serialize_bet
from services.payoff_service import quantize

logger = logging.getLogger(__name__)

# 只有 SUPER_ADMIN 可以修改的欄位
PRIVILEGED_FIELDS = ("role", "is_active", "is_verified")
PROFILE_FIELDS = ("username", "email", "phone", "first_name", "last_name")


def serialize_admin_user(user: User) -> Dict[str, Any]:
    data = serialize_user(user)
    wallet = user.wallet
    data.update({
        "isActive": user.is_active,
        "isBanned": user.is_banned,
        "banReason": user.ban_reason,
        "kycStatus": user.kyc_status.value,
        "referredBy": user.referred_by,
        "referralCount": len(user.referrals),
        "wallet": {
            "available": str(quantize(wallet.available)),
            "held": str(quantize(wallet.held)),
            "totalDeposited": str(quantize(wallet.total_deposited)),
            "totalWithdrawn": str(quantize(wallet.total_withdrawn)),
        } if wallet else None,
    })
    return data


def get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()
    return user


def list_users(db: Session, page: int = 1, limit: int = 20, search: Optional[str] = None) -> Dict[str, Any]:
    """
    使用者列表（最新註冊的在前）

    search 會比對 email / username / first_name / last_name（不分大小寫）
    """
    query = db.query(User)
    term = (search or "").strip().lower()
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            func.lower(User.email).like(pattern),
            func.lower(User.username).like(pattern),
            func.lower(User.first_name).like(pattern),
            func.lower(User.last_name).like(pattern),
        ))
    return paginate(query.order_by(User.created_at.desc()), page, limit, serialize_admin_user)


def get_user_stats(db: Session) -> Dict[str, Any]:
    deposited, withdrawn = db.query(
        func.coalesce(func.sum(Wallet.total_deposited), 0),
        func.coalesce(func.sum(Wallet.total_withdrawn), 0),
    ).one()
    return {
        "totalUsers": db.query(User).count(),
        "activeUsers": db.query(User).filter(User.is_active == True).count(),  # noqa: E712
        "bannedUsers": db.query(User).filter(User.is_banned == True).count(),  # noqa: E712
        "premiumUsers": db.query(User).filter(User.premium == True).count(),  # noqa: E712
        "verifiedUsers": db.query(User).filter(User.is_verified == True).count(),  # noqa: E712
        "demoUsers": db.query(User).filter(User.is_demo == True).count(),  # noqa: E712
        "totalDeposits": str(quantize(deposited or 0)),
        "totalWithdrawals": str(quantize(withdrawn or 0)),
    }


@transactional
def update_user(db: Session, actor: User, user_id: str, **changes) -> User:
    """
    管理員修改使用者

    流程：
    1. role / is_active / is_verified 只有 SUPER_ADMIN 能改
    2. username / email / phone 必須維持唯一
    3. 只更新有給值的欄位

    異常：
        UserNotFound: 使用者不存在
        Forbidden: 非 SUPER_ADMIN 修改特權欄位
        UserAlreadyExists: username / email / phone 已被使用
    """
    user = get_user(db, user_id)

    privileged = [field for field in PRIVILEGED_FIELDS if changes.get(field) is not None]
    if privileged and actor.role != UserRole.SUPER_ADMIN:
        raise Forbidden(f"Only super admins can change {', '.join(privileged)}")

    for field in PROFILE_FIELDS:
        value = changes.get(field)
        if value is None:
            continue
        value = value.strip()
        if field == "email":
            value = value.lower()
        if field in ("username", "email", "phone"):
            if not value:
                raise BadRequest(f"{field} cannot be empty")
            column = getattr(User, field)
            if db.query(User).filter(column == value, User.id != user_id).first():
                raise UserAlreadyExists(f"{field} is already taken")
        setattr(user, field, value)

    for field in privileged:
        setattr(user, field, changes[field])

    db.flush()
    logger.info(f"Admin {actor.id} updated user {user_id} ({', '.join(k for k, v in changes.items() if v is not None)})")
    return user


@transactional
def ban_user(db: Session, actor: User, user_id: str, reason: Optional[str] = None) -> User:
    """
    封鎖使用者：is_banned = True、is_active = False

    管理員不能封鎖自己；一般 ADMIN 不能封鎖 SUPER_ADMIN
    """
    if actor.id == user_id:
        raise BadRequest("You cannot ban yourself")
    user = get_user(db, user_id)
    if user.role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
        raise Forbidden("Only super admins can ban a super admin")

    user.is_banned = True
    user.is_active = False
    user.ban_reason = reason
    db.flush()
    logger.warning(f"Admin {actor.id} banned user {user_id} ({reason or 'no reason given'})")
    return user


@transactional
def unban_user(db: Session, actor: User, user_id: str) -> User:
    user = get_user(db, user_id)
    user.is_banned = False
    user.is_active = True
    user.ban_reason = None
    db.flush()
    logger.info(f"Admin {actor.id} unbanned user {user_id}")
    return user


@transactional
def approve_kyc(db: Session, user_id: str) -> User:
    user = get_user(db, user_id)
    user.kyc_status = KycStatus.APPROVED
    user.is_verified = True
    db.flush()
    logger.info(f"KYC approved for user {user_id}")
    return user


@transactional
def reject_kyc(db: Session, user_id: str) -> User:
    user = get_user(db, user_id)
    user.kyc_status = KycStatus.REJECTED
    user.is_verified = False
    db.flush()
    logger.info(f"KYC rejected for user {user_id}")
    return user


# ============ 後台首頁 ============

def get_dashboard_stats(db: Session) -> Dict[str, Any]:
    stats = get_user_stats(db)
    return {
        "users": {
            "total": stats["totalUsers"],
            "active": stats["activeUsers"],
            "banned": stats["bannedUsers"],
            "premium": stats["premiumUsers"],
            "verified": stats["verifiedUsers"],
        },
        "activity": {
            "totalRounds": db.query(Round).count(),
            "totalBets": db.query(Bet).filter(Bet.is_system_seed == False).count(),  # noqa: E712
            "totalTransactions": db.query(Transaction).count(),
            "pendingWithdrawals": db.query(Transaction).filter(
                Transaction.type == TransactionType.WITHDRAWAL,
                Transaction.status == TransactionStatus.PENDING,
            ).count(),
        },
    }


def get_recent_activity(db: Session, limit: int = 20) -> Dict[str, Any]:
    """最近註冊的使用者、最近的真人注單與最近的交易"""
    limit = min(max(1, limit), 100)
    users = db.query(User).order_by(User.created_at.desc()).limit(limit).all()
    bets = (
        db.query(Bet)
        .filter(Bet.is_system_seed == False)  # noqa: E712
        .order_by(Bet.created_at.desc())
        .limit(limit)
        .all()
    )
    transactions = db.query(Transaction).order_by(Transaction.created_at.desc()).limit(limit).all()
    return {
        "recentUsers": [
            {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "createdAt": user.created_at.isoformat() if user.created_at else None,
            }
            for user in users
        ],
        "recentBets": [serialize_bet(bet) for bet in bets],
        "recentTransactions": [
            {
                "id": tx.id,
                "userId": tx.user_id,
                "type": tx.type.value,
                "amount": str(quantize(tx.amount)),
                "status": tx.status.value,
                "createdAt": tx.created_at.isoformat() if tx.created_at else None,
            }
            for tx in transactions
        ],
    }
