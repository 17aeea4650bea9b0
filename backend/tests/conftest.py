"""Pytest configuration and fixtures."""

import os

import pytest

# Cheap bcrypt for tests; must be set before settings are first read
os.environ.setdefault("TAAKL_BCRYPT_ROUNDS", "4")

from app.database import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from taakl.storage import SQLiteStorage  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture
def storage(tmp_path):
    """A fresh database per test, injected in place of the shared handle."""
    storage = SQLiteStorage(db_path=tmp_path / "api.db")
    app.dependency_overrides[get_db] = lambda: storage
    yield storage
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(storage):
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def register(client):
    """Register a user and return the parsed response body."""

    def _register(username: str = "alice", password: str = TEST_PASSWORD, **extra):
        response = client.post("/api/register", json={"username": username, "password": password, **extra})
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def auth_headers(register):
    """Bearer headers for a freshly registered user."""
    token = register()["token"]
    return {"Authorization": f"Bearer {token}"}
