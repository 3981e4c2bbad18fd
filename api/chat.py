"""
Chat API Endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import ChatMessageCreate
from api.deps import client_ip, get_current_user, require_admin
from services import chat_service

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("", status_code=201)
def send_message(
    payload: ChatMessageCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = chat_service.send_message(
        db, user, payload.room_type, payload.content, ip_address=client_ip(request)
    )
    return chat_service.serialize_message(message)


@router.get("/{room_type}")
def get_messages(
    room_type: str,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """最新的在前，已刪除的訊息不顯示"""
    return [chat_service.serialize_message(m) for m in chat_service.get_messages(db, user, room_type, limit)]


@router.delete("/message/{message_id}")
def delete_message(
    message_id: str,
    reason: Optional[str] = Query(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    chat_service.delete_message(db, admin, message_id, reason)
    return {"deleted": True, "id": message_id}
