"""
法律文件服務（服務條款 / 隱私權政策）

- 每種文件可以有多個版本，同一時間只有一個 active
- 使用者必須確認年滿 18 歲，並接受目前 active 的條款與隱私權政策，
  才能使用需要合規的功能（管理員不受限制）
"""
from datetime import datetime
import re
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from models import ADMIN_ROLES, LegalDocument, LegalDocumentType, User, UserLegalAcceptance
from core.exceptions import (
    AGE_CONFIRM_REQUIRED,
    LEGAL_REACCEPT_REQUIRED,
    BadRequest,
    LegalDocumentNotFound,
)
from database import transactional, utcnow

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 500_000

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_IFRAME_RE = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
_HANDLER_RE = re.compile(r"\bon\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)


def sanitize_legal_content(content: Optional[str], max_length: int = MAX_CONTENT_LENGTH) -> str:
    """
    基本清理：截斷長度，移除 <script>、<iframe> 與 inline event handler

    範例：
        sanitize_legal_content('<p onclick="x()">Hi</p><script>alert(1)</script>')
        -> '<p >Hi</p>'
    """
    if not isinstance(content, str):
        return ""
    text = content[:max_length]
    text = _SCRIPT_RE.sub("", text)
    text = _IFRAME_RE.sub("", text)
    text = _HANDLER_RE.sub("", text)
    return text.strip()


def parse_document_type(value) -> LegalDocumentType:
    try:
        return LegalDocumentType(str(value).upper())
    except ValueError:
        raise BadRequest(f"Unknown legal document type {value}, expected terms or privacy")


def serialize_document(doc: LegalDocument, include_content: bool = True) -> Dict[str, Any]:
    data = {
        "id": doc.id,
        "type": doc.type.value.lower(),
        "version": doc.version,
        "effectiveAt": doc.effective_at.isoformat(),
        "isActive": doc.is_active,
        "createdAt": doc.created_at.isoformat() if doc.created_at else None,
        "updatedAt": doc.updated_at.isoformat() if doc.updated_at else None,
        "createdByAdminId": doc.created_by_admin_id,
    }
    if include_content:
        data["content"] = doc.content
    return data


def get_active_document(db: Session, doc_type: LegalDocumentType) -> Optional[LegalDocument]:
    return (
        db.query(LegalDocument)
        .filter(LegalDocument.type == doc_type, LegalDocument.is_active == True)  # noqa: E712
        .order_by(LegalDocument.effective_at.desc())
        .first()
    )


@transactional
def accept_document(db: Session, user_id: str, doc_type: LegalDocumentType,
                    ip_address: Optional[str] = None, user_agent: Optional[str] = None,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    接受目前 active 的文件（重複接受只更新時間與來源）

    異常：
        LegalDocumentNotFound: 這個類型目前沒有 active 文件
    """
    now = now or utcnow()
    doc = get_active_document(db, doc_type)
    if not doc:
        raise LegalDocumentNotFound(f"No active {doc_type.value.lower()} document found")

    acceptance = db.query(UserLegalAcceptance).filter(
        UserLegalAcceptance.user_id == user_id,
        UserLegalAcceptance.legal_document_id == doc.id,
    ).first()
    if acceptance is None:
        acceptance = UserLegalAcceptance(user_id=user_id, legal_document_id=doc.id)
        db.add(acceptance)
    acceptance.accepted_at = now
    if ip_address is not None:
        acceptance.ip_address = ip_address
    if user_agent is not None:
        acceptance.user_agent = user_agent
    db.flush()

    logger.info(f"User {user_id} accepted {doc_type.value} version {doc.version}")
    return {"accepted": True, "documentId": doc.id}


@transactional
def confirm_age(db: Session, user_id: str, ip_address: Optional[str] = None,
                user_agent: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    user = db.query(User).filter(User.id == user_id).one()
    user.is_age_18_confirmed = True
    user.age_confirmed_at = now or utcnow()
    user.age_confirmed_ip = ip_address
    user.age_confirmed_user_agent = user_agent
    db.flush()
    return {"confirmed": True}


def check_user_compliance(db: Session, user: User) -> Optional[str]:
    """
    檢查使用者是否符合法律要求

    返回：
        None 表示通過；否則為失敗代碼
        （AGE_CONFIRM_REQUIRED / LEGAL_REACCEPT_REQUIRED）
    """
    if user.role in ADMIN_ROLES:
        return None
    if not user.is_age_18_confirmed:
        return AGE_CONFIRM_REQUIRED

    accepted_ids = {
        row.legal_document_id
        for row in db.query(UserLegalAcceptance.legal_document_id).filter(
            UserLegalAcceptance.user_id == user.id
        ).all()
    }
    for doc_type in (LegalDocumentType.TERMS, LegalDocumentType.PRIVACY):
        active = get_active_document(db, doc_type)
        if active and active.id not in accepted_ids:
            return LEGAL_REACCEPT_REQUIRED
    return None


# ============ Admin ============

@transactional
def create_draft(db: Session, doc_type: LegalDocumentType, version: str, content: str,
                 effective_at: datetime, admin_id: str) -> LegalDocument:
    """
    建立草稿（is_active = False）

    異常：
        BadRequest: 同類型已經有這個版本號
    """
    version = (version or "").strip()
    if not version:
        raise BadRequest("version is required")

    existing = db.query(LegalDocument).filter(
        LegalDocument.type == doc_type,
        LegalDocument.version == version,
    ).first()
    if existing:
        raise BadRequest(f"Version {version} already exists for {doc_type.value.lower()}")

    if effective_at.tzinfo is not None:
        effective_at = effective_at.replace(tzinfo=None) - (effective_at.utcoffset())

    doc = LegalDocument(
        type=doc_type,
        version=version,
        content=sanitize_legal_content(content),
        effective_at=effective_at,
        is_active=False,
        created_by_admin_id=admin_id,
    )
    db.add(doc)
    db.flush()
    logger.info(f"Legal draft {doc_type.value} {version} created by {admin_id}")
    return doc


@transactional
def activate_document(db: Session, doc_id: str) -> LegalDocument:
    """啟用一個版本，同類型的其他版本全部停用"""
    doc = db.query(LegalDocument).filter(LegalDocument.id == doc_id).first()
    if not doc:
        raise LegalDocumentNotFound()

    db.query(LegalDocument).filter(
        LegalDocument.type == doc.type,
        LegalDocument.is_active == True,  # noqa: E712
        LegalDocument.id != doc.id,
    ).update({"is_active": False}, synchronize_session=False)
    doc.is_active = True
    db.flush()
    logger.info(f"Legal document {doc.type.value} {doc.version} activated")
    return doc


def list_versions(db: Session, doc_type: LegalDocumentType) -> List[LegalDocument]:
    return (
        db.query(LegalDocument)
        .filter(LegalDocument.type == doc_type)
        .order_by(LegalDocument.effective_at.desc(), LegalDocument.created_at.desc())
        .all()
    )


def get_document(db: Session, doc_id: str) -> LegalDocument:
    doc = db.query(LegalDocument).filter(LegalDocument.id == doc_id).first()
    if not doc:
        raise LegalDocumentNotFound()
    return doc
