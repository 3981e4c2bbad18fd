"""
認證工具：密碼雜湊與 Access Token

Token 格式：base64url(payload_json) + "." + base64url(hmac_sha256(payload))
payload = {"sub": user_id, "role": role, "exp": epoch_seconds}
"""
import base64
import hashlib
import hmac
import json
import re
import secrets
import time
from typing import Any, Dict, Optional

from config import get_settings
from core.exceptions import Unauthorized, WeakPassword

PBKDF2_ITERATIONS = 200_000

_PASSWORD_RULES = (
    (re.compile(r".{8,}"), "Password must be at least 8 characters"),
    (re.compile(r"[A-Z]"), "Password must contain an uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain a lowercase letter"),
    (re.compile(r"\d"), "Password must contain a digit"),
)


def validate_password_strength(password: str) -> None:
    for pattern, message in _PASSWORD_RULES:
        if not pattern.search(password or ""):
            raise WeakPassword(message)


def hash_password(password: str) -> str:
    """pbkdf2_sha256$iterations$salt$hash"""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        algorithm, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(message: str) -> str:
    secret = get_settings().secret_key
    return _b64encode(hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest())


def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    if expires_minutes is None:
        expires_minutes = get_settings().access_token_expire_minutes
    payload = {"sub": user_id, "role": role, "exp": int(time.time()) + expires_minutes * 60}
    body = _b64encode(json.dumps(payload, separators=(",", ":")).encode())
    return f"{body}.{_sign(body)}"


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    驗證並解析 token

    異常：
        Unauthorized: 格式錯誤、簽章不符或已過期
    """
    try:
        body, signature = token.split(".")
    except (AttributeError, ValueError):
        raise Unauthorized("Invalid token")

    if not hmac.compare_digest(signature, _sign(body)):
        raise Unauthorized("Invalid token")

    try:
        payload = json.loads(_b64decode(body))
    except ValueError:
        raise Unauthorized("Invalid token")

    if payload.get("exp", 0) < time.time():
        raise Unauthorized("Token expired")
    return payload
