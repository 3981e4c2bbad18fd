"""
帳號服務：註冊、登入、Demo、個人資料、密碼重設

密碼重設 OTP 存在記憶體（單一 process），不寄信，只寫 log。
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import secrets
from threading import Lock
from typing import Any, Dict, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from config import get_settings
from models import User, UserRole
from core.exceptions import (
    AccountDisabled,
    BadRequest,
    InvalidCredentials,
    InvalidOtp,
    UserAlreadyExists,
    UserNotFound,
)
from core.security import create_access_token, hash_password, validate_password_strength, verify_password
from core.wallet_manager import create_wallet
from database import transactional, utcnow
from services.naming_service import (
    generate_demo_username,
    generate_unique_affiliate_code,
    generate_unique_username,
)
from services.premium_service import is_premium_active

logger = logging.getLogger(__name__)


# ============ OTP ============

@dataclass
class _OtpEntry:
    code: str
    expires_at: datetime
    attempts: int = 0


class OtpStore:
    """
    密碼重設 OTP（6 位數字）

    - 有效 OTP_TTL_SECONDS 秒
    - 最多嘗試 OTP_MAX_ATTEMPTS 次，超過就作廢
    """

    def __init__(self):
        self._lock = Lock()
        self._entries: Dict[str, _OtpEntry] = {}

    def issue(self, key: str, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        code = f"{secrets.randbelow(1_000_000):06d}"
        with self._lock:
            self._entries[key] = _OtpEntry(
                code=code,
                expires_at=now + timedelta(seconds=get_settings().otp_ttl_seconds),
            )
        return code

    def verify(self, key: str, code: str, now: Optional[datetime] = None) -> bool:
        """驗證成功會直接作廢（一次性）"""
        now = now or utcnow()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.expires_at <= now or entry.attempts >= get_settings().otp_max_attempts:
                del self._entries[key]
                return False
            if not secrets.compare_digest(entry.code, str(code)):
                entry.attempts += 1
                if entry.attempts >= get_settings().otp_max_attempts:
                    del self._entries[key]
                return False
            del self._entries[key]
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


otp_store = OtpStore()


# ============ 序列化 ============

def serialize_user(user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "phone": user.phone,
        "username": user.username,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role.value,
        "isVerified": user.is_verified,
        "isDemo": user.is_demo,
        "premium": is_premium_active(user, now),
        "premiumExpiresAt": user.premium_expires_at.isoformat() if user.premium_expires_at else None,
        "affiliateCode": user.affiliate_code,
        "isAge18Confirmed": user.is_age_18_confirmed,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def issue_token(user: User) -> Dict[str, Any]:
    return {
        "accessToken": create_access_token(user.id, user.role.value),
        "tokenType": "bearer",
        "user": serialize_user(user),
    }


def _normalize_email(email: Optional[str]) -> Optional[str]:
    email = (email or "").strip().lower()
    return email or None


# ============ 註冊 / 登入 ============

@transactional
def register(
    db: Session,
    password: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    referred_by: Optional[str] = None,
    role: UserRole = UserRole.USER,
) -> User:
    """
    註冊新使用者

    流程：
    1. email 或 phone 至少一個，密碼強度檢查
    2. email / phone / 指定的 username 唯一性檢查
       （沒指定 username 時由 email 前綴或手機末四碼推導，重複就加後綴）
    3. 建立使用者、推薦碼、錢包
    4. referred_by 是推薦碼，存在才建立推薦關係

    異常：
        BadRequest: email 與 phone 都沒有
        WeakPassword: 密碼強度不足
        UserAlreadyExists: 重複的 email / phone / username
    """
    email = _normalize_email(email)
    phone = (phone or "").strip() or None
    if not email and not phone:
        raise BadRequest("Email or phone is required")
    validate_password_strength(password)

    username = (username or "").strip() or None

    conditions = []
    if username:
        conditions.append(User.username == username)
    if email:
        conditions.append(User.email == email)
    if phone:
        conditions.append(User.phone == phone)
    if db.query(User).filter(or_(*conditions)).first():
        raise UserAlreadyExists()

    if not username:
        username = generate_unique_username(db, email.split("@")[0] if email else f"user{phone[-4:]}")

    referrer = None
    if referred_by:
        referrer = db.query(User).filter(User.affiliate_code == referred_by.strip().upper()).first()
        if not referrer:
            logger.warning(f"Registration with unknown affiliate code {referred_by}")

    user = User(
        email=email,
        phone=phone,
        username=username,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        affiliate_code=generate_unique_affiliate_code(db),
        referred_by=referrer.id if referrer else None,
    )
    db.add(user)
    db.flush()
    create_wallet(db, user.id)

    logger.info(f"Registered user {user.id} ({username})")
    return user


def login(db: Session, identifier: str, password: str) -> User:
    """
    登入：identifier 可以是 email、phone 或 username

    異常：
        InvalidCredentials: 帳號不存在或密碼錯誤
        AccountDisabled: 帳號停用或被封鎖
    """
    identifier = (identifier or "").strip()
    user = db.query(User).filter(or_(
        User.email == identifier.lower(),
        User.phone == identifier,
        User.username == identifier,
    )).first()
    if not user or not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    if not user.is_active or user.is_banned:
        raise AccountDisabled()
    return user


@transactional
def create_demo_user(db: Session) -> User:
    """Demo 帳號：沒有密碼，只有 demo 餘額"""
    user = User(username=generate_demo_username(db), is_demo=True, role=UserRole.USER)
    db.add(user)
    db.flush()
    create_wallet(db, user.id)
    logger.info(f"Created demo user {user.username}")
    return user


# ============ 個人資料 ============

@transactional
def update_profile(db: Session, user_id: str, username: Optional[str] = None,
                   first_name: Optional[str] = None, last_name: Optional[str] = None) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()

    if username is not None:
        username = username.strip()
        if not username:
            raise BadRequest("Username cannot be empty")
        taken = db.query(User).filter(User.username == username, User.id != user_id).first()
        if taken:
            raise UserAlreadyExists("Username is already taken")
        user.username = username
    if first_name is not None:
        user.first_name = first_name
    if last_name is not None:
        user.last_name = last_name
    db.flush()
    return user


@transactional
def change_password(db: Session, user_id: str, current_password: str, new_password: str) -> None:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()
    if not verify_password(current_password, user.password_hash):
        raise BadRequest("Current password is incorrect")
    validate_password_strength(new_password)
    user.password_hash = hash_password(new_password)
    db.flush()
    logger.info(f"User {user_id} changed password")


def request_password_reset(db: Session, email: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    產生 OTP（寫 log，不寄信）

    不論 email 是否存在都回傳同樣訊息，避免帳號被列舉
    """
    email = _normalize_email(email)
    user = db.query(User).filter(User.email == email).first() if email else None
    if user:
        code = otp_store.issue(email, now)
        logger.info(f"Password reset OTP for {email}: {code}")
    else:
        logger.warning(f"Password reset requested for unknown email {email}")
    return {"message": "If the email exists, an OTP has been sent"}


@transactional
def reset_password(db: Session, email: str, otp: str, new_password: str,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    email = _normalize_email(email)
    validate_password_strength(new_password)
    if not email or not otp_store.verify(email, otp, now):
        raise InvalidOtp()

    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise InvalidOtp()
    user.password_hash = hash_password(new_password)
    db.flush()
    logger.info(f"Password reset completed for {email}")
    return {"message": "Password has been reset"}
