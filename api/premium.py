"""
Premium API Endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import PremiumPlanCreate
from api.deps import get_current_user, require_admin
from services import premium_service

router = APIRouter(prefix="/premium", tags=["premium"])


@router.get("/plans")
def list_plans(db: Session = Depends(get_db)):
    return [premium_service.serialize_plan(p) for p in premium_service.list_plans(db)]


@router.post("/subscribe/{plan_id}", status_code=201)
def subscribe(plan_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """從錢包扣款訂閱；還在 premium 期間時從原到期日往後延"""
    subscription = premium_service.subscribe(db, user.id, plan_id)
    return premium_service.serialize_subscription(subscription)


@router.get("/subscription")
def get_subscription(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    subscription = premium_service.get_current_subscription(db, user.id)
    return {
        "premium": premium_service.is_premium_active(user),
        "premiumExpiresAt": user.premium_expires_at.isoformat() if user.premium_expires_at else None,
        "subscription": premium_service.serialize_subscription(subscription) if subscription else None,
    }


@router.post("/admin/plans", status_code=201)
def create_plan(payload: PremiumPlanCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    plan = premium_service.create_plan(db, payload.name, payload.price, payload.duration, payload.is_active)
    return premium_service.serialize_plan(plan)
