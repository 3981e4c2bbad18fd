"""
FAQ API Endpoints（公開列表 + 管理員 CRUD）
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import FaqCreate, FaqUpdate
from api.deps import require_admin
from services import faq_service

router = APIRouter(tags=["faq"])


@router.get("/api/faq")
def list_faq(db: Session = Depends(get_db)):
    return [faq_service.serialize_faq(item) for item in faq_service.list_faq(db)]


@router.get("/api/admin/faq")
def admin_list_faq(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return [faq_service.serialize_faq(item) for item in faq_service.list_faq(db)]


@router.post("/api/admin/faq", status_code=201)
def admin_create_faq(payload: FaqCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    item = faq_service.create_faq(db, payload.category, payload.question, payload.answer, payload.sort_order)
    return faq_service.serialize_faq(item)


@router.get("/api/admin/faq/{faq_id}")
def admin_get_faq(faq_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return faq_service.serialize_faq(faq_service.get_faq(db, faq_id))


@router.put("/api/admin/faq/{faq_id}")
def admin_update_faq(
    faq_id: str,
    payload: FaqUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    item = faq_service.update_faq(
        db,
        faq_id,
        category=payload.category,
        question=payload.question,
        answer=payload.answer,
        sort_order=payload.sort_order,
    )
    return faq_service.serialize_faq(item)


@router.delete("/api/admin/faq/{faq_id}")
def admin_delete_faq(faq_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    faq_service.delete_faq(db, faq_id)
    return {"deleted": True, "id": faq_id}
