import os
import shutil
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the application at a throwaway database before `gradeflow` is imported.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="gradeflow-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["ENV"] = "dev"
os.environ["AUTH_RATE_LIMIT_PER_MIN"] = "10000"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from gradeflow.database import engine  # noqa: E402
from gradeflow.main import app  # noqa: E402
from gradeflow.services import AuthService  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def reset_db():
    """Remove the temporary SQLite database once the run is over."""
    yield
    engine.dispose()
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


def unique_email(prefix="teacher"):
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


@pytest.fixture
def teacher(session):
    """A freshly registered user with the default groups and categories."""
    return AuthService(session).register(unique_email(), "secret123", "Test Teacher")


@pytest.fixture
def auth_headers(client):
    r = client.post(
        "/api/auth/register",
        json={"email": unique_email(), "password": "secret123", "name": "Test Teacher"},
    )
    assert r.status_code == 201
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
