# backend/tests/conftest.py
"""
Pytest configuration.

Tests run against an in-memory SQLite database created from the ORM
metadata. SQLite has no row locks, so concurrency is exercised through the
compare-and-set paths instead.
"""

import os

# Must be set before any ambulance import builds the engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "testing")

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ambulance.database import Base
import ambulance.models  # noqa: F401  registers tables
from tests.helpers.clock import FixedClock
from tests.helpers.notifier import RecordingNotifier

NOW = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    """Session bound to a schema that is emptied after every test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock(now) -> FixedClock:
    return FixedClock(now)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
