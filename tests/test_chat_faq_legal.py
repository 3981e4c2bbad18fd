from datetime import datetime, timedelta

import pytest

from models import ChatRoomType, LegalDocumentType, UserRole
from core.exceptions import ChatAccessDenied, ChatRateLimited
from services import chat_service, legal_service
from services.legal_service import sanitize_legal_content


# ============ Chat ============

def test_room_access(db, make_user):
    regular = make_user()
    verified = make_user(is_verified=True)
    admin = make_user(role=UserRole.ADMIN)

    assert chat_service.can_access_room(regular, ChatRoomType.GENERAL)
    assert not chat_service.can_access_room(regular, ChatRoomType.PREMIUM)
    assert chat_service.can_access_room(verified, ChatRoomType.PREMIUM)
    assert not chat_service.can_access_room(verified, ChatRoomType.ADMIN)
    assert chat_service.can_access_room(admin, ChatRoomType.ADMIN)

    with pytest.raises(ChatAccessDenied):
        chat_service.send_message(db, regular, "premium", "hello")


def test_send_message_accepts_room_enum(db, make_user):
    user = make_user()
    message = chat_service.send_message(db, user, ChatRoomType.GENERAL, "hello")
    assert message.room_type == ChatRoomType.GENERAL
    assert chat_service.parse_room_type("general") == ChatRoomType.GENERAL


def test_chat_rate_limit(db, make_user):
    user = make_user()
    now = datetime(2025, 1, 1, 12, 0, 0)
    chat_service.send_message(db, user, "general", "first", now=now)
    with pytest.raises(ChatRateLimited):
        chat_service.send_message(db, user, "general", "second", now=now + timedelta(seconds=1))
    chat_service.send_message(db, user, "general", "third", now=now + timedelta(seconds=3))


def test_chat_endpoints(client, make_user, auth_headers):
    user = make_user(username="frank")
    admin = make_user(role=UserRole.ADMIN)

    sent = client.post("/chat", json={"roomType": "GENERAL", "content": "  gm  "}, headers=auth_headers(user))
    assert sent.status_code == 201
    assert sent.json()["content"] == "gm"
    assert sent.json()["username"] == "frank"

    assert client.post("/chat", json={"content": "   "}, headers=auth_headers(admin)).status_code == 400

    messages = client.get("/chat/general", headers=auth_headers(user)).json()
    assert [m["content"] for m in messages] == ["gm"]

    message_id = sent.json()["id"]
    assert client.delete(f"/chat/message/{message_id}", headers=auth_headers(user)).status_code == 403
    deleted = client.delete(f"/chat/message/{message_id}", params={"reason": "spam"}, headers=auth_headers(admin))
    assert deleted.status_code == 200
    assert client.get("/chat/general", headers=auth_headers(user)).json() == []
    assert client.get("/chat/nowhere", headers=auth_headers(user)).status_code == 400


# ============ FAQ ============

def test_faq_crud(client, make_user, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    headers = auth_headers(admin)

    created = client.post(
        "/api/admin/faq",
        json={"category": "Betting", "question": "What wins?", "answer": "The minority side.", "sortOrder": 1},
        headers=headers,
    )
    assert created.status_code == 201
    faq_id = created.json()["id"]

    updated = client.put(f"/api/admin/faq/{faq_id}", json={"answer": "The smaller side."}, headers=headers)
    assert updated.json()["answer"] == "The smaller side."
    assert updated.json()["question"] == "What wins?"

    public = client.get("/api/faq").json()
    assert [item["id"] for item in public] == [faq_id]

    assert client.delete(f"/api/admin/faq/{faq_id}", headers=headers).status_code == 200
    assert client.get(f"/api/admin/faq/{faq_id}", headers=headers).status_code == 404


def test_faq_admin_requires_admin(client, make_user, auth_headers):
    user = make_user()
    response = client.post(
        "/api/admin/faq",
        json={"category": "x", "question": "y", "answer": "z"},
        headers=auth_headers(user),
    )
    assert response.status_code == 403


# ============ Legal ============

def test_sanitize_legal_content():
    dirty = '<p onclick="steal()">Terms</p><script>alert(1)</script><iframe src="x"></iframe>'
    assert sanitize_legal_content(dirty) == "<p >Terms</p>"
    assert len(sanitize_legal_content("a" * 600_000)) == 500_000
    assert sanitize_legal_content(None) == ""


def test_compliance_flow(db, make_user):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user(compliant=False)

    assert legal_service.check_user_compliance(db, admin) is None
    assert legal_service.check_user_compliance(db, user) == "AGE_CONFIRM_REQUIRED"

    legal_service.confirm_age(db, user.id)
    db.refresh(user)
    assert legal_service.check_user_compliance(db, user) is None

    doc = legal_service.create_draft(
        db, LegalDocumentType.TERMS, "1.0", "<p>Terms</p>", datetime(2025, 1, 1), admin.id
    )
    # drafts are not enforced until activated
    assert legal_service.check_user_compliance(db, user) is None

    legal_service.activate_document(db, doc.id)
    assert legal_service.check_user_compliance(db, user) == "LEGAL_REACCEPT_REQUIRED"

    legal_service.accept_document(db, user.id, LegalDocumentType.TERMS)
    assert legal_service.check_user_compliance(db, user) is None


def test_activating_new_version_requires_reacceptance(db, make_user):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user()
    v1 = legal_service.create_draft(db, LegalDocumentType.PRIVACY, "1.0", "v1", datetime(2025, 1, 1), admin.id)
    legal_service.activate_document(db, v1.id)
    legal_service.accept_document(db, user.id, LegalDocumentType.PRIVACY)

    v2 = legal_service.create_draft(db, LegalDocumentType.PRIVACY, "2.0", "v2", datetime(2025, 6, 1), admin.id)
    legal_service.activate_document(db, v2.id)

    db.refresh(v1)
    assert not v1.is_active
    assert legal_service.get_active_document(db, LegalDocumentType.PRIVACY).id == v2.id
    assert legal_service.check_user_compliance(db, user) == "LEGAL_REACCEPT_REQUIRED"


def test_legal_endpoints(client, make_user, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user(compliant=False)

    assert client.get("/api/legal/terms/active").json() is None
    assert client.get("/api/legal/cookies/active").status_code == 400

    draft = client.post(
        "/api/admin/legal/terms",
        json={"version": "1.0", "content": "<b>Rules</b><script>x()</script>", "effectiveAt": "2025-01-01T00:00:00Z"},
        headers=auth_headers(admin),
    )
    assert draft.status_code == 201
    assert draft.json()["content"] == "<b>Rules</b>"
    doc_id = draft.json()["id"]

    duplicate = client.post(
        "/api/admin/legal/terms",
        json={"version": "1.0", "content": "again", "effectiveAt": "2025-01-01T00:00:00Z"},
        headers=auth_headers(admin),
    )
    assert duplicate.status_code == 400

    assert client.put(f"/api/admin/legal/{doc_id}/activate", headers=auth_headers(admin)).json()["isActive"] is True
    active = client.get("/api/legal/terms/active").json()
    assert active["version"] == "1.0"
    assert active["type"] == "terms"

    versions = client.get("/api/admin/legal/terms/versions", headers=auth_headers(admin)).json()
    assert [v["version"] for v in versions] == ["1.0"]
    assert "content" not in versions[0]

    preview = client.get(f"/api/admin/legal/preview/{doc_id}", headers=auth_headers(admin)).json()
    assert preview["createdByAdmin"]["id"] == admin.id

    headers = auth_headers(user)
    assert client.get("/api/legal/compliance", headers=headers).json() == {"ok": False, "code": "AGE_CONFIRM_REQUIRED"}
    assert client.post("/api/legal/age-confirm", headers=headers).json() == {"confirmed": True}
    assert client.get("/api/legal/compliance", headers=headers).json()["code"] == "LEGAL_REACCEPT_REQUIRED"
    assert client.post("/api/legal/terms/accept", headers=headers).json()["accepted"] is True
    assert client.get("/api/legal/compliance", headers=headers).json() == {"ok": True, "code": None}
