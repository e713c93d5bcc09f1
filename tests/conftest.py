"""Pytest configuration and fixtures"""
import os

# Configure the app for tests before anything imports app.config
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import get_clock
from app.database import Base, enable_sqlite_foreign_keys, get_db
from app.main import app
from app.models.user import User
from app.services.token_service import TokenSessionManager
from app.services.user_store import UserStore, hash_password
from app.utils.jwt_utils import AccessTokenCodec

TEST_DATABASE_URL = "sqlite:///./test.db"
TEST_SECRET = "test-secret-key"
DEFAULT_PASSWORD = "password123"

engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """A settable clock returning naive UTC datetimes"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0))


@pytest.fixture
def codec(clock: FakeClock) -> AccessTokenCodec:
    return AccessTokenCodec(TEST_SECRET, algorithm="HS256", ttl_seconds=3600, clock=clock)


@pytest.fixture
def manager(db: Session, codec: AccessTokenCodec, clock: FakeClock) -> TokenSessionManager:
    return TokenSessionManager(db, codec, UserStore(db), refresh_ttl_days=30, clock=clock)


@pytest.fixture
def make_user(db: Session, clock: FakeClock) -> Callable[..., User]:
    """Factory for verified, active users"""
    counter = {"n": 0}

    def _make_user(email: str = None, password: str = DEFAULT_PASSWORD, **fields) -> User:
        counter["n"] += 1
        user = User(
            name=fields.pop("name", f"Test User {counter['n']}"),
            email=email or f"user{counter['n']}@rewear.test",
            password_hash=hash_password(password),
            email_verified_at=fields.pop("email_verified_at", clock()),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def user(make_user) -> User:
    return make_user(email="buyer@rewear.test", name="Bella Buyer")


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(email="admin@rewear.test", name="ReWear Admin", user_type="admin")


@pytest.fixture(scope="function")
def client(db: Session, clock: FakeClock) -> Generator[TestClient, None, None]:
    """Create test client with database session and clock overrides"""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, device_name: str = None) -> dict:
    """POST /auth/login and return the JSON body (asserting success)"""
    body = {"email": email, "password": password}
    if device_name:
        body["device_name"] = device_name
    response = client.post("/auth/login", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def break_queries(monkeypatch, db: Session) -> None:
    """Make every ORM query on ``db`` fail as if the database were down"""

    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(db, "query", broken_query)
