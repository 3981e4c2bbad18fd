"""
使用者偏好設定

- preferred_round_duration: 玩家自選的回合長度（5 / 10 / 20 分鐘），Premium 限定
- email_notifications / push_notifications: 通知開關

沒有設定過的使用者在第一次讀取時建立預設值。
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from models import User, UserPreferences
from core.exceptions import BadRequest, PremiumRequired, UserNotFound
from database import transactional
from services.premium_service import is_premium_active

logger = logging.getLogger(__name__)

ALLOWED_ROUND_DURATIONS = (5, 10, 20)
DEFAULT_ROUND_DURATION = 20


def serialize_preferences(preferences: UserPreferences) -> Dict[str, Any]:
    return {
        "preferredRoundDuration": preferences.preferred_round_duration,
        "emailNotifications": preferences.email_notifications,
        "pushNotifications": preferences.push_notifications,
        "updatedAt": preferences.updated_at.isoformat() if preferences.updated_at else None,
    }


def _get_or_create(db: Session, user_id: str) -> UserPreferences:
    preferences = db.query(UserPreferences).filter(UserPreferences.user_id == user_id).first()
    if preferences is None:
        preferences = UserPreferences(
            user_id=user_id,
            preferred_round_duration=DEFAULT_ROUND_DURATION,
            email_notifications=True,
            push_notifications=True,
        )
        db.add(preferences)
        db.flush()
    return preferences


@transactional
def get_preferences(db: Session, user_id: str) -> UserPreferences:
    return _get_or_create(db, user_id)


@transactional
def update_preferences(
    db: Session,
    user_id: str,
    preferred_round_duration: Optional[int] = None,
    email_notifications: Optional[bool] = None,
    push_notifications: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> UserPreferences:
    """
    更新偏好設定

    異常：
        UserNotFound: 使用者不存在
        PremiumRequired: 非 Premium 使用者修改回合長度
        BadRequest: 回合長度不是 5 / 10 / 20
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()

    if preferred_round_duration is not None:
        if not is_premium_active(user, now):
            raise PremiumRequired("Flexible round timing is available to premium users only")
        if preferred_round_duration not in ALLOWED_ROUND_DURATIONS:
            raise BadRequest("preferredRoundDuration must be 5, 10 or 20")

    preferences = _get_or_create(db, user_id)
    if preferred_round_duration is not None:
        preferences.preferred_round_duration = preferred_round_duration
    if email_notifications is not None:
        preferences.email_notifications = email_notifications
    if push_notifications is not None:
        preferences.push_notifications = push_notifications
    db.flush()

    logger.info(f"User {user_id} updated preferences")
    return preferences


def get_preferred_round_duration(db: Session, user: User, now: Optional[datetime] = None) -> int:
    """Premium 使用者用自己的設定；其他人一律 20 分鐘"""
    if not is_premium_active(user, now):
        return DEFAULT_ROUND_DURATION
    preferences = db.query(UserPreferences).filter(UserPreferences.user_id == user.id).first()
    return preferences.preferred_round_duration if preferences else DEFAULT_ROUND_DURATION
