"""
聊天室服務

房間權限：
- GENERAL: 所有登入使用者
- PREMIUM: Premium 或已驗證使用者
- ADMIN: 管理員

每位使用者每 CHAT_RATE_LIMIT_SECONDS 秒只能發一則訊息。
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from config import get_settings
from models import ADMIN_ROLES, ChatMessage, ChatRoomType, User
from core.exceptions import BadRequest, ChatAccessDenied, ChatRateLimited, Forbidden, NotFound
from database import transactional, utcnow
from services.premium_service import is_premium_active

logger = logging.getLogger(__name__)


def parse_room_type(room_type) -> ChatRoomType:
    try:
        return room_type if isinstance(room_type, ChatRoomType) else ChatRoomType(str(room_type).upper())
    except ValueError:
        raise BadRequest(f"Unknown chat room {room_type}")


def can_access_room(user: User, room_type: ChatRoomType, now: Optional[datetime] = None) -> bool:
    if room_type == ChatRoomType.ADMIN:
        return user.role in ADMIN_ROLES
    if room_type == ChatRoomType.PREMIUM:
        return user.role in ADMIN_ROLES or is_premium_active(user, now) or user.is_verified
    return True


def serialize_message(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "roomType": message.room_type.value,
        "content": message.content,
        "userId": message.user_id,
        "username": message.user.username if message.user else None,
        "createdAt": message.created_at.isoformat(),
    }


@transactional
def send_message(db: Session, user: User, room_type, content: str,
                 ip_address: Optional[str] = None, now: Optional[datetime] = None) -> ChatMessage:
    """
    發送訊息

    異常：
        ChatAccessDenied: 沒有權限進入此房間
        BadRequest: 內容空白或超過長度上限
        ChatRateLimited: 發言太頻繁
    """
    settings = get_settings()
    now = now or utcnow()
    room = parse_room_type(room_type)
    if not can_access_room(user, room, now):
        raise ChatAccessDenied(f"You do not have access to the {room.value} room")

    text = (content or "").strip()
    if not text:
        raise BadRequest("Message cannot be empty")
    if len(text) > settings.chat_max_length:
        raise BadRequest(f"Message cannot exceed {settings.chat_max_length} characters")

    last = (
        db.query(ChatMessage)
        .filter(ChatMessage.user_id == user.id)
        .order_by(ChatMessage.created_at.desc())
        .first()
    )
    if last and now - last.created_at < timedelta(seconds=settings.chat_rate_limit_seconds):
        raise ChatRateLimited(f"Please wait {settings.chat_rate_limit_seconds} seconds between messages")

    message = ChatMessage(
        user_id=user.id,
        room_type=room,
        content=text,
        ip_address=ip_address,
        created_at=now,
    )
    db.add(message)
    db.flush()
    return message


def get_messages(db: Session, user: User, room_type, limit: int = 50) -> List[ChatMessage]:
    """最新的在前，已刪除的不顯示"""
    room = parse_room_type(room_type)
    if not can_access_room(user, room):
        raise ChatAccessDenied(f"You do not have access to the {room.value} room")
    limit = min(max(1, limit), 200)
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.room_type == room, ChatMessage.is_deleted == False)  # noqa: E712
        .order_by(ChatMessage.created_at.desc())
        .limit(limit)
        .all()
    )


@transactional
def delete_message(db: Session, admin: User, message_id: str, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> ChatMessage:
    """管理員軟刪除訊息"""
    if admin.role not in ADMIN_ROLES:
        raise Forbidden("Only admins can delete messages")
    message = db.query(ChatMessage).filter(ChatMessage.id == message_id).first()
    if not message or message.is_deleted:
        raise NotFound("Message not found")

    message.is_deleted = True
    message.deleted_by = admin.id
    message.deleted_at = now or utcnow()
    message.delete_reason = reason
    db.flush()
    logger.info(f"Chat message {message_id} deleted by {admin.id}: {reason}")
    return message
