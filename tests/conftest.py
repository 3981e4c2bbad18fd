"""
Shared fixtures: in-memory database, API client, user / round factories.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.setdefault("DEBUG", "true")

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from models import User, UserRole
from core.events import event_bus
from core.round_manager import RoundManager
from core.security import create_access_token, hash_password
from core.wallet_manager import create_wallet
from services.auth_service import otp_store

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "Password1"
PASSWORD_HASH = hash_password(PASSWORD)

# 固定的開局時間：freeze 在 12:19，settle 在 12:20
T0 = datetime(2025, 1, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def _reset_state():
    event_bus.clear_history()
    otp_store.clear()
    yield


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(
        username=None,
        role=UserRole.USER,
        balance="0",
        premium=False,
        compliant=True,
        is_verified=False,
        referred_by=None,
        is_demo=False,
    ) -> User:
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = User(
            email=f"{username}@example.com",
            username=username,
            password_hash=PASSWORD_HASH,
            role=role,
            premium=premium,
            is_verified=is_verified,
            is_demo=is_demo,
            is_age_18_confirmed=compliant,
            affiliate_code=f"CODE{counter['n']:04d}",
            referred_by=referred_by,
        )
        db.add(user)
        db.flush()
        wallet = create_wallet(db, user.id)
        wallet.available = Decimal(balance)
        db.commit()
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: User):
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}

    return _headers


@pytest.fixture
def open_round(db):
    """開一個回合；預設在 T0 開局（20 分鐘，freeze offset 60 秒）"""
    def _open(now=T0, **kwargs):
        return RoundManager.open_new_round(db, now=now, **kwargs)

    return _open
