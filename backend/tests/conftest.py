"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- In-memory SQLite engine and sessions (StaticPool, so every session sees the same database)
- A controllable clock
- A fake email transport that records sends and can fail on demand
- Preference profile and queue processor factories
"""

import os

# Set test environment variables before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMAIL_PROVIDER"] = "development"

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers models on Base.metadata)
from app.core.errors import TransportError
from app.db.base import Base
from app.models.delivery_job import DeliveryJob
from app.services.email_transport import DeliveryReceipt, OutboundEmail
from app.services.preference_service import get_or_create_profile
from app.services.queue_processor import QueueProcessor
from app.services.templates import TemplateRenderer

# Saturday 2026-10-17 12:00 UTC
T0 = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def reload_job(session, job_id: int) -> DeliveryJob:
    """Fresh read of a job after another session changed it."""
    session.expire_all()
    return session.get(DeliveryJob, job_id)


# ============================================================================
# Clock / transport fakes
# ============================================================================

class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class FakeTransport:
    """Records every send. The first `failures` calls raise TransportError."""

    name = "fake"

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.sent: list[OutboundEmail] = []

    def send(self, message: OutboundEmail) -> DeliveryReceipt:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransportError(f"provider down (call {self.calls})")
        self.sent.append(message)
        return DeliveryReceipt(message_id=f"fake-{self.calls}", provider=self.name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_profile(db_session):
    """Create (or update) a user's preference profile with the given column values."""

    def _create(user_id: str = "user-1", email: str | None = "user-1@example.com", **fields):
        row = get_or_create_profile(db_session, user_id, email=email)
        row.email = email
        for key, value in fields.items():
            setattr(row, key, value)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _create


@pytest.fixture
def make_processor(session_factory, clock):
    def _create(transport, renderer: TemplateRenderer | None = None, **kwargs):
        kwargs.setdefault("owner", "test-processor")
        kwargs.setdefault("frontend_url", "http://portal.test")
        return QueueProcessor(
            session_factory,
            transport,
            renderer or TemplateRenderer(),
            clock=clock,
            **kwargs,
        )

    return _create
