"""
FAQ 服務：公開列表與管理員 CRUD
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models import FaqItem
from core.exceptions import BadRequest, NotFound
from database import transactional


def serialize_faq(item: FaqItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "category": item.category,
        "question": item.question,
        "answer": item.answer,
        "sortOrder": item.sort_order,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
        "updatedAt": item.updated_at.isoformat() if item.updated_at else None,
    }


def list_faq(db: Session) -> List[FaqItem]:
    return db.query(FaqItem).order_by(FaqItem.category, FaqItem.sort_order, FaqItem.created_at).all()


def get_faq(db: Session, faq_id: str) -> FaqItem:
    item = db.query(FaqItem).filter(FaqItem.id == faq_id).first()
    if not item:
        raise NotFound("FAQ item not found")
    return item


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise BadRequest(f"{field} is required")
    return text


@transactional
def create_faq(db: Session, category: str, question: str, answer: str, sort_order: int = 0) -> FaqItem:
    item = FaqItem(
        category=_require_text(category, "category"),
        question=_require_text(question, "question"),
        answer=_require_text(answer, "answer"),
        sort_order=sort_order,
    )
    db.add(item)
    db.flush()
    return item


@transactional
def update_faq(db: Session, faq_id: str, **changes) -> FaqItem:
    item = get_faq(db, faq_id)
    for field in ("category", "question", "answer"):
        if changes.get(field) is not None:
            setattr(item, field, _require_text(changes[field], field))
    if changes.get("sort_order") is not None:
        item.sort_order = changes["sort_order"]
    db.flush()
    return item


@transactional
def delete_faq(db: Session, faq_id: str) -> None:
    db.delete(get_faq(db, faq_id))
