"""
Affiliate API Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models import User
from api.deps import get_current_user, require_admin
from services import affiliate_service

router = APIRouter(prefix="/affiliate", tags=["affiliate"])


@router.get("")
def get_affiliate(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """自己的推薦碼、推薦人數與佣金"""
    return affiliate_service.get_affiliate_stats(db, user)


@router.get("/referrals")
def get_referrals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return affiliate_service.get_referrals(db, user.id, page, limit)


@router.get("/tiers")
def get_tiers():
    return affiliate_service.describe_tiers()


@router.get("/leaderboard")
def get_leaderboard(
    period: str = Query("allTime"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return affiliate_service.get_leaderboard(db, period, limit)


@router.get("/stats")
def get_global_stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return affiliate_service.get_global_stats(db)


@router.post("/generate-code")
def generate_code(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"affiliateCode": affiliate_service.generate_code(db, user.id)}
