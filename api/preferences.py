"""
Preferences API Endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import PreferencesUpdate
from api.deps import get_current_user
from services import preferences_service

router = APIRouter(prefix="/preferences", tags=["preferences"])


@router.get("")
def get_preferences(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return preferences_service.serialize_preferences(preferences_service.get_preferences(db, user.id))


@router.put("")
def update_preferences(
    payload: PreferencesUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """回合長度（5 / 10 / 20 分鐘）只有 Premium 使用者能改"""
    preferences = preferences_service.update_preferences(
        db,
        user.id,
        preferred_round_duration=payload.preferred_round_duration,
        email_notifications=payload.email_notifications,
        push_notifications=payload.push_notifications,
    )
    return preferences_service.serialize_preferences(preferences)
