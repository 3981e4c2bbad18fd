"""
Legal API Endpoints

公開：取得 active 文件、接受文件、年齡確認
管理員：建立草稿、啟用版本、版本列表、預覽
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from models import User
from schemas import LegalDraftCreate
from api.deps import client_ip, get_current_user, require_admin
from services import legal_service

router = APIRouter(tags=["legal"])


@router.post("/api/legal/age-confirm")
def confirm_age(request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return legal_service.confirm_age(
        db, user.id, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )


@router.get("/api/legal/compliance")
def get_compliance(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    code = legal_service.check_user_compliance(db, user)
    return {"ok": code is None, "code": code}


@router.get("/api/legal/{doc_type}/active")
def get_active(doc_type: str, db: Session = Depends(get_db)):
    """沒有 active 文件時回傳 null"""
    doc = legal_service.get_active_document(db, legal_service.parse_document_type(doc_type))
    return legal_service.serialize_document(doc) if doc else None


@router.post("/api/legal/{doc_type}/accept")
def accept(
    doc_type: str,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return legal_service.accept_document(
        db,
        user.id,
        legal_service.parse_document_type(doc_type),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


# ============ Admin ============

@router.get("/api/admin/legal/preview/{doc_id}")
def admin_preview(doc_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    doc = legal_service.get_document(db, doc_id)
    data = legal_service.serialize_document(doc)
    data["createdByAdmin"] = (
        {"id": doc.created_by_admin.id, "username": doc.created_by_admin.username}
        if doc.created_by_admin else None
    )
    return data


@router.post("/api/admin/legal/{doc_type}", status_code=201)
def admin_create_draft(
    doc_type: str,
    payload: LegalDraftCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    doc = legal_service.create_draft(
        db,
        legal_service.parse_document_type(doc_type),
        payload.version,
        payload.content,
        payload.effective_at,
        admin.id,
    )
    return legal_service.serialize_document(doc)


@router.put("/api/admin/legal/{doc_id}/activate")
def admin_activate(doc_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return legal_service.serialize_document(legal_service.activate_document(db, doc_id))


@router.get("/api/admin/legal/{doc_type}/versions")
def admin_list_versions(doc_type: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    docs = legal_service.list_versions(db, legal_service.parse_document_type(doc_type))
    return [legal_service.serialize_document(d, include_content=False) for d in docs]
