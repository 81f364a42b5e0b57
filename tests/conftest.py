"""
Test configuration and fixtures.

- In-process MongoDB (mongomock) injected through the get_db dependency
- TestClient fixtures for anonymous, signed-in and admin callers
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

# Add project root to sys.path so the top-level modules import
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

import config
from database import get_db
from main import app
from tests.factories import create_user

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
USER_EMAIL = "student@hostel.io"
ADMIN_EMAIL = "warden@hostel.io"


def make_token(email: Optional[str], expires_in: timedelta = timedelta(hours=1), secret: str = TEST_SECRET) -> str:
    claims = {"exp": datetime.now(timezone.utc) + expires_in}
    if email is not None:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm=config.JWT_ALGORITHM)


def make_client(token: Optional[str] = None) -> TestClient:
    client = TestClient(app, raise_server_exceptions=False)
    if token:
        client.cookies.set(config.COOKIE_NAME, token)
    return client


@pytest.fixture(autouse=True)
def signing_secret(monkeypatch):
    monkeypatch.setattr(config, "JWT_TOKEN_SECRET_KEY", TEST_SECRET)
    monkeypatch.setattr(config, "APP_ENV", "development")


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    database = mongomock.MongoClient()[config.DATABASE_NAME]
    app.dependency_overrides[get_db] = lambda: database
    yield database
    app.dependency_overrides.clear()


@pytest.fixture
def client(db) -> TestClient:
    return make_client()


@pytest.fixture
def test_user(db) -> dict:
    return create_user(db, email=USER_EMAIL, name="Student One")


@pytest.fixture
def admin_user(db) -> dict:
    return create_user(db, email=ADMIN_EMAIL, name="Warden", role="admin")


@pytest.fixture
def user_client(test_user) -> TestClient:
    return make_client(make_token(test_user["email"]))


@pytest.fixture
def admin_client(admin_user) -> TestClient:
    return make_client(make_token(admin_user["email"]))
