"""Shared test fixtures."""
import os
import tempfile

# must be set before crm.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["SMS_DRY_RUN"] = "true"
os.environ["AUTOMATION_ENABLED"] = "false"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="crm-logs-"))

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from crm.db import enable_sqlite_foreign_keys, get_session
from crm.main import app
from crm.models import Lead, User
from crm.security import create_access_token, hash_password

NOW = datetime(2026, 3, 2, 10, 0, 0)


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across sessions (StaticPool)."""
    engine = enable_sqlite_foreign_keys(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client(session):
    """TestClient without the lifespan, so startup (runner, seeding) never fires."""
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    def _make(username="agent1", role="agent", password="secret123", **kw):
        user = User(
            username=username,
            password_hash=hash_password(password),
            name=kw.pop("name", username.title()),
            email=kw.pop("email", f"{username}@example.fr"),
            role=role,
            **kw,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    return _make


@pytest.fixture
def auth():
    """Authorization header for a user."""
    def _auth(user):
        token = create_access_token({"sub": str(user.id), "role": user.role})
        return {"Authorization": f"Bearer {token}"}
    return _auth


@pytest.fixture
def make_lead(session):
    def _make(**kw):
        kw.setdefault("full_name", "Jean Dupont")
        kw.setdefault("phone", "+33612345678")
        kw.setdefault("created_at", NOW - timedelta(hours=1))
        lead = Lead(**kw)
        session.add(lead)
        session.commit()
        session.refresh(lead)
        return lead
    return _make
