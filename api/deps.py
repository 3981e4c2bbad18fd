"""
API 共用 dependency：登入、管理員、法律合規
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from database import get_db
from models import ADMIN_ROLES, User
from core.exceptions import AccountDisabled, Forbidden, LegalComplianceRequired, Unauthorized
from core.security import decode_access_token
from services.legal_service import check_user_compliance

_auth_scheme = HTTPBearer(auto_error=False)


def user_from_token(db: Session, token: str) -> User:
    payload = decode_access_token(token)
    user = db.query(User).filter(User.id == payload.get("sub")).first()
    if not user:
        raise Unauthorized("Invalid token")
    if not user.is_active or user.is_banned:
        raise AccountDisabled()
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_auth_scheme),
    db: Session = Depends(get_db),
) -> User:
    if creds is None or not creds.credentials:
        raise Unauthorized("Not authenticated")
    return user_from_token(db, creds.credentials)


def get_optional_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_auth_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    if creds is None or not creds.credentials:
        return None
    return user_from_token(db, creds.credentials)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role not in ADMIN_ROLES:
        raise Forbidden("Admin access required")
    return user


def require_legal_compliance(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    """年齡確認 + 最新條款；失敗時 403 並帶 code"""
    code = check_user_compliance(db, user)
    if code is not None:
        raise LegalComplianceRequired(code=code)
    return user


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
