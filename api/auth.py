"""
Auth API Endpoints

註冊、登入、Demo、個人資料、密碼變更與重設
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import logging

from database import get_db
from models import User
from schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from api.deps import get_current_user
from services import auth_service

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    """
    註冊新帳號

    返回：
        - accessToken / tokenType
        - user: 使用者資訊
    """
    user = auth_service.register(
        db,
        password=payload.password,
        email=payload.email,
        phone=payload.phone,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
        referred_by=payload.referred_by,
    )
    return auth_service.issue_token(user)


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = auth_service.login(db, payload.identifier, payload.password)
    logger.info(f"User {user.id} logged in")
    return auth_service.issue_token(user)


@router.post("/demo", status_code=201)
def demo(db: Session = Depends(get_db)):
    """建立 Demo 帳號（只有 demo 餘額）"""
    user = auth_service.create_demo_user(db)
    return auth_service.issue_token(user)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return auth_service.serialize_user(user)


@router.patch("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = auth_service.update_profile(
        db,
        user.id,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    return auth_service.serialize_user(updated)


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    auth_service.change_password(db, user.id, payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    return auth_service.request_password_reset(db, payload.email)


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    return auth_service.reset_password(db, payload.email, payload.otp, payload.new_password)
