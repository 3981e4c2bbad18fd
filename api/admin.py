"""
Admin Dashboard API Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models import User
from api.deps import require_admin
from services import user_admin_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/dashboard")
def get_dashboard(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    """使用者統計 + 回合 / 注單 / 交易數量"""
    return user_admin_service.get_dashboard_stats(db)


@router.get("/activity")
def get_recent_activity(
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return user_admin_service.get_recent_activity(db, limit)
