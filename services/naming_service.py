"""
命名服務：生成 Affiliate Code 與使用者名稱

純計算邏輯，不涉及狀態轉換
"""
import random
import string

from sqlalchemy.orm import Session

from models import User


def generate_affiliate_code() -> str:
    """
    生成隨機的 8 位大寫英數推薦碼

    範例：K3F9QZ2A

    注意：
    - 不檢查唯一性（由呼叫者負責）
    - 36^8 種可能，碰撞機率極低
    """
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=8))


def generate_unique_affiliate_code(db: Session) -> str:
    code = generate_affiliate_code()
    while db.query(User).filter(User.affiliate_code == code).first():
        code = generate_affiliate_code()
    return code


def generate_demo_username(db: Session) -> str:
    """
    為 Demo 帳號生成使用者名稱

    格式：「demo_」+ 6 位小寫英數，碰撞時重新產生
    """
    alphabet = string.ascii_lowercase + string.digits
    while True:
        username = "demo_" + ''.join(random.choices(alphabet, k=6))
        if not db.query(User).filter(User.username == username).first():
            return username


def generate_unique_username(db: Session, base: str) -> str:
    """
    由 email 前綴或手機號碼推導出的使用者名稱

    已被使用時加上 4 位數字後綴重新產生，例如 john -> john_4821
    """
    username = base
    while db.query(User).filter(User.username == username).first():
        username = f"{base}_{''.join(random.choices(string.digits, k=4))}"
    return username
