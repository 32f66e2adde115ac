"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("FORKFORGE_JSON_LOGS", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from forkforge_api.auth.dependencies import get_clock
from forkforge_api.db.models import Base
from forkforge_api.db.session import get_db, get_uow_factory
from forkforge_api.main import app
from forkforge_api.routers.webhooks import get_key_delivery_sink
from forkforge_api.stores.memory import MemoryDatabase
from forkforge_api.stores.sql import SqlUnitOfWork

TEST_PEPPER = "test-pepper-0123456789abcdef"
TEST_WEBHOOK_SECRET = "whsec_test_0123456789"
TEST_ADMIN_TOKEN = "test-admin-token"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingKeySink:
    """Key-delivery sink that keeps deliveries in memory."""

    def __init__(self):
        self.deliveries: list[dict] = []

    def deliver(self, issued, *, billing_ref: str, event_id: str) -> None:
        self.deliveries.append(
            {"issued": issued, "billing_ref": billing_ref, "event_id": event_id}
        )


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """Secrets every component reads from the environment."""
    monkeypatch.setenv("TOKEN_PEPPER_V1", TEST_PEPPER)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("ADMIN_TOKEN", TEST_ADMIN_TOKEN)
    monkeypatch.delenv("PROVISIONED_KEYS_FILE", raising=False)
    monkeypatch.delenv("WEBHOOK_TOLERANCE_SECONDS", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def key_sink() -> RecordingKeySink:
    return RecordingKeySink()


@pytest.fixture
def sql_session_factory():
    """In-memory SQLite with the full schema (partial unique index included)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def sql_uow_factory(sql_session_factory):
    return lambda: SqlUnitOfWork(sql_session_factory)


@pytest.fixture
def memory_uow_factory():
    return MemoryDatabase().unit_of_work


@pytest.fixture(params=["memory", "sql"])
def uow_factory(request):
    """Runs store-contract tests against both backends."""
    return request.getfixturevalue(f"{request.param}_uow_factory")


def _create_user(uow_factory, *, billing_ref=None, external_identity_id=None) -> str:
    with uow_factory() as uow:
        if billing_ref is not None:
            user = uow.users.upsert_by_billing_ref(billing_ref)
        else:
            user = uow.users.upsert_by_external_identity(external_identity_id or "gh-1001")
        uow.commit()
    return user.id


@pytest.fixture
def make_user():
    """Insert a user through the store and commit. Returns the user id."""
    return _create_user


@pytest.fixture
def user_id(uow_factory) -> str:
    return _create_user(uow_factory, external_identity_id="gh-u1")


@pytest.fixture
def test_client(sql_session_factory, sql_uow_factory, clock, key_sink):
    """TestClient bound to in-memory SQLite, the fake clock and a recording sink."""

    def override_get_db():
        db = sql_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_uow_factory] = lambda: sql_uow_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_key_delivery_sink] = lambda: key_sink
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": TEST_ADMIN_TOKEN}
