"""Shared fixtures: a fake asyncpg connection and a TestClient with auth overridden."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from orkut.auth import User, get_authorized_user
from orkut.libs.database import get_db, get_optional_db
from orkut.main import app

USER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_ID = "22222222-2222-2222-2222-222222222222"
THIRD_ID = "33333333-3333-3333-3333-333333333333"

NOW = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    """Stands in for asyncpg.Connection; queue results on the AsyncMocks."""

    def __init__(self):
        self.fetch = AsyncMock(return_value=[])
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=None)
        self.execute = AsyncMock(return_value="UPDATE 1")
        self.close = AsyncMock()

    def transaction(self):
        return FakeTransaction()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in (
        "DATABASE_URL",
        "ADMIN_EMAILS",
        "ADMIN_TOKEN_SECRET",
        "SUPABASE_JWT_SECRET",
        "GITHUB_TOKEN",
        "GITHUB_OWNER",
        "GITHUB_REPO",
        "GITHUB_FILE_PATH",
        "GITHUB_BRANCH",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LOCAL_ACTIVITY_FILE", str(tmp_path / "local-activity.json"))


@pytest.fixture
def db():
    return FakeConnection()


@pytest.fixture
def current_user():
    return User(sub=USER_ID, email="ana@example.com", display_name="Ana")


@pytest.fixture
def client(db, current_user):
    """Client with the fake database and an authenticated user."""
    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_optional_db] = override_db
    app.dependency_overrides[get_authorized_user] = lambda: current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(db):
    """Client with the fake database but real authentication."""
    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def client_without_db():
    """Client whose optional database dependency yields None."""
    async def no_db():
        yield None

    app.dependency_overrides[get_optional_db] = no_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
