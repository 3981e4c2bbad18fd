"""
User Admin API Endpoints

重點：
1. 全部 endpoint 都需要管理員
2. 封鎖後該使用者的 token 立即失效（get_current_user 會檢查 is_banned）
3. 修改 role / is_active / is_verified 需要 SUPER_ADMIN（由 service 判斷）
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import AdminUserUpdate, BanUserRequest
from api.deps import require_admin
from services import user_admin_service
from services.user_admin_service import serialize_admin_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """使用者列表，search 比對 email / username / 姓名"""
    return user_admin_service.list_users(db, page, limit, search)


@router.get("/stats")
def get_user_stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return user_admin_service.get_user_stats(db)


@router.get("/{user_id}")
def get_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return serialize_admin_user(user_admin_service.get_user(db, user_id))


@router.patch("/{user_id}")
def update_user(
    user_id: str,
    payload: AdminUserUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = user_admin_service.update_user(
        db,
        admin,
        user_id,
        username=payload.username,
        email=payload.email,
        phone=payload.phone,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role,
        is_active=payload.is_active,
        is_verified=payload.is_verified,
    )
    return serialize_admin_user(user)


@router.post("/{user_id}/ban")
def ban_user(
    user_id: str,
    payload: Optional[BanUserRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    return serialize_admin_user(user_admin_service.ban_user(db, admin, user_id, reason))


@router.post("/{user_id}/unban")
def unban_user(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return serialize_admin_user(user_admin_service.unban_user(db, admin, user_id))


@router.post("/{user_id}/kyc/approve")
def approve_kyc(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return serialize_admin_user(user_admin_service.approve_kyc(db, user_id))


@router.post("/{user_id}/kyc/reject")
def reject_kyc(user_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return serialize_admin_user(user_admin_service.reject_kyc(db, user_id))
