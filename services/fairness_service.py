"""
公平性服務：commit / reveal

開局時只公開 commit hash，結算後才公開 secret，
任何人都可以用 sha256(f"{epoch_ms}||{secret}") 驗證結果沒有被事後竄改。
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timezone


def generate_secret() -> str:
    """32 bytes 隨機數，hex 編碼"""
    return secrets.token_hex(32)


def to_epoch_ms(moment: datetime) -> int:
    """naive datetime 一律視為 UTC"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def generate_commitment(opened_at: datetime, secret: str) -> str:
    return commitment_for(to_epoch_ms(opened_at), secret)


def commitment_for(timestamp_ms: int, secret: str) -> str:
    payload = f"{timestamp_ms}||{secret}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_commitment(commit_hash: str, timestamp_ms: int, secret: str) -> bool:
    return hmac.compare_digest(commit_hash, commitment_for(timestamp_ms, secret))
