import re
from datetime import timedelta

import pytest

from models import User
from core.exceptions import InvalidOtp, Unauthorized, WeakPassword
from core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    validate_password_strength,
    verify_password,
)
from database import utcnow
from services import auth_service
from services.auth_service import OtpStore, reset_password


def test_password_hash_round_trip():
    hashed = hash_password("Secret123")
    assert hashed.startswith("pbkdf2_sha256$")
    assert verify_password("Secret123", hashed)
    assert not verify_password("secret123", hashed)
    assert not verify_password("Secret123", None)


@pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
def test_weak_passwords_are_rejected(password):
    with pytest.raises(WeakPassword):
        validate_password_strength(password)


def test_access_token_round_trip_and_tampering():
    token = create_access_token("user-1", "USER")
    payload = decode_access_token(token)
    assert payload["sub"] == "user-1"
    assert payload["role"] == "USER"

    body, signature = token.split(".")
    with pytest.raises(Unauthorized):
        decode_access_token(f"{body}.{signature[:-2]}xx")
    with pytest.raises(Unauthorized):
        decode_access_token(create_access_token("user-1", "USER", expires_minutes=-1))


def test_otp_is_single_use_and_limited():
    store = OtpStore()
    now = utcnow()
    code = store.issue("a@example.com", now)
    assert re.fullmatch(r"\d{6}", code)
    assert store.verify("a@example.com", code, now)
    assert not store.verify("a@example.com", code, now)

    code = store.issue("b@example.com", now)
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(3):
        assert not store.verify("b@example.com", wrong, now)
    assert not store.verify("b@example.com", code, now)

    code = store.issue("c@example.com", now)
    assert not store.verify("c@example.com", code, now + timedelta(minutes=10))


def test_register_login_and_me(client):
    response = client.post("/auth/register", json={
        "email": "Trader@Example.com",
        "password": "Password1",
        "firstName": "Ada",
    })
    assert response.status_code == 201
    data = response.json()
    assert data["tokenType"] == "bearer"
    assert data["user"]["email"] == "trader@example.com"
    assert data["user"]["username"] == "trader"
    assert len(data["user"]["affiliateCode"]) == 8

    login = client.post("/auth/login", json={"email": "trader@example.com", "password": "Password1"})
    assert login.status_code == 200
    token = login.json()["accessToken"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["firstName"] == "Ada"

    wallet = client.get("/wallet", headers={"Authorization": f"Bearer {token}"}).json()
    assert wallet["available"] == "0.00"
    assert wallet["demoAvailable"] == "10000.00"


def test_register_rejects_duplicates_and_weak_passwords(client):
    payload = {"email": "dup@example.com", "password": "Password1"}
    assert client.post("/auth/register", json=payload).status_code == 201
    assert client.post("/auth/register", json=payload).status_code == 409
    weak = client.post("/auth/register", json={"email": "weak@example.com", "password": "weak"})
    assert weak.status_code == 400


def test_register_derives_unique_usernames(client):
    first = client.post("/auth/register", json={"email": "john@gmail.com", "password": "Password1"})
    second = client.post("/auth/register", json={"email": "john@yahoo.com", "password": "Password1"})
    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["user"]["username"] == "john"
    assert re.fullmatch(r"john_\d{4}", second.json()["user"]["username"])

    by_phone = client.post("/auth/register", json={"phone": "+15550001234", "password": "Password1"})
    same_suffix = client.post("/auth/register", json={"phone": "+44770001234", "password": "Password1"})
    assert by_phone.json()["user"]["username"] == "user1234"
    assert same_suffix.status_code == 201
    assert same_suffix.json()["user"]["username"].startswith("user1234_")


def test_register_rejects_explicit_username_clash(client):
    client.post("/auth/register", json={"email": "a@example.com", "username": "trader", "password": "Password1"})
    clash = client.post("/auth/register", json={"email": "b@example.com", "username": "trader", "password": "Password1"})
    assert clash.status_code == 409


def test_register_with_affiliate_code_links_referrer(client, db, make_user):
    referrer = make_user()
    response = client.post("/auth/register", json={
        "email": "friend@example.com",
        "password": "Password1",
        "referredBy": referrer.affiliate_code.lower(),
    })
    assert response.status_code == 201
    friend = db.query(User).filter(User.email == "friend@example.com").one()
    assert friend.referred_by == referrer.id


def test_login_with_wrong_password(client, make_user):
    user = make_user(username="carol")
    response = client.post("/auth/login", json={"username": user.username, "password": "Wrong1234"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


def test_banned_user_cannot_use_token(client, db, make_user, auth_headers):
    user = make_user()
    user.is_banned = True
    db.commit()
    assert client.get("/auth/me", headers=auth_headers(user)).status_code == 401


def test_demo_account(client):
    response = client.post("/auth/demo")
    assert response.status_code == 201
    user = response.json()["user"]
    assert user["isDemo"] is True
    assert user["username"].startswith("demo_")


def test_profile_and_password_change(client, make_user, auth_headers):
    user = make_user(username="dave")
    make_user(username="taken")
    headers = auth_headers(user)

    updated = client.patch("/auth/profile", json={"username": "david", "lastName": "Jones"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["username"] == "david"
    assert client.patch("/auth/profile", json={"username": "taken"}, headers=headers).status_code == 409

    wrong = client.post(
        "/auth/change-password",
        json={"currentPassword": "Nope12345", "newPassword": "Another1"},
        headers=headers,
    )
    assert wrong.status_code == 400
    changed = client.post(
        "/auth/change-password",
        json={"currentPassword": "Password1", "newPassword": "Another1"},
        headers=headers,
    )
    assert changed.status_code == 200
    assert client.post("/auth/login", json={"identifier": "david", "password": "Another1"}).status_code == 200


def test_password_reset_with_otp(client, db, make_user, monkeypatch):
    user = make_user(username="erin")
    issued = {}
    original_issue = auth_service.otp_store.issue

    def capture(key, now=None):
        issued["code"] = original_issue(key, now)
        return issued["code"]

    monkeypatch.setattr(auth_service.otp_store, "issue", capture)

    response = client.post("/auth/forgot-password", json={"email": user.email})
    assert response.status_code == 200
    # unknown emails get the same answer
    assert client.post("/auth/forgot-password", json={"email": "ghost@example.com"}).json() == response.json()

    bad = client.post("/auth/reset-password", json={"email": user.email, "otp": "12345x", "newPassword": "Brandnew1"})
    assert bad.status_code == 400

    client.post("/auth/forgot-password", json={"email": user.email})
    reset = client.post(
        "/auth/reset-password",
        json={"email": user.email, "otp": issued["code"], "newPassword": "Brandnew1"},
    )
    assert reset.status_code == 200
    assert client.post("/auth/login", json={"identifier": "erin", "password": "Brandnew1"}).status_code == 200


def test_reset_password_without_otp_raises(db, make_user):
    user = make_user()
    with pytest.raises(InvalidOtp):
        reset_password(db, user.email, "123456", "Brandnew1")
