"""Pytest configuration."""

import os

import pytest

# Ensure test environment
os.environ.setdefault("SHORTLY_DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("SHORTLY_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SHORTLY_COOKIE_SECRET", "test-cookie-secret")
os.environ.setdefault("SHORTLY_DEBUG", "true")
os.environ.setdefault("SHORTLY_CREATE_TABLES", "true")
os.environ.setdefault("SHORTLY_DEV_MAIL", "true")
os.environ.setdefault("SHORTLY_FETCH_PAGE_META", "false")
os.environ.setdefault("SHORTLY_REDIS_URL", "")
os.environ.setdefault("SHORTLY_BASE_URL", "https://sho.rt")
os.environ.setdefault("SHORTLY_RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("SHORTLY_REDIRECT_RATE_LIMIT", "10000")
os.environ.setdefault("SHORTLY_PER_LINK_RATE_LIMIT", "10000")

from app.config import get_settings  # noqa: E402
from app.middleware.rate_limit import reset_rate_limits  # noqa: E402

PASSWORD = "hunter22"


@pytest.fixture(autouse=True)
def _fresh_state():
    get_settings.cache_clear()
    reset_rate_limits()
    yield
    get_settings.cache_clear()
    reset_rate_limits()


@pytest.fixture
def client(tmp_path, monkeypatch):
    """App client backed by a fresh SQLite file; the lifespan creates the tables."""
    from fastapi.testclient import TestClient
    from app.main import app

    monkeypatch.setenv("SHORTLY_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'shortly.db'}")
    get_settings.cache_clear()

    with TestClient(app) as c:
        yield c


def _signup(client, email, name, password=PASSWORD) -> dict:
    """Register + verify through the API. Returns {"token", "user", "headers"}."""
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 200, resp.text
    code = resp.json()["dev_code"]

    resp = client.post("/api/auth/verify", json={"email": email, "code": code})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    body["headers"] = {"Authorization": f"Bearer {body['token']}"}
    return body


@pytest.fixture
def make_user(client):
    def _make(email, name="User", password=PASSWORD):
        return _signup(client, email, name, password)
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice@acme.io", "Alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob@acme.io", "Bob")
