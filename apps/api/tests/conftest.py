"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database (DATABASE_URL=sqlite://).
Every test gets freshly created tables, so nothing leaks between tests.

The engine uses a single shared connection: service-level tests use
`db_session`; API tests seed data through `seed_session` and let the app open
its own sessions, so only one transaction is ever open at a time.
"""
import os
import sys
from uuid import uuid4

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["LOG_FORMAT"] = "text"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest  # noqa: E402

from core.database import Base, SessionLocal, engine  # noqa: E402
from core.security import ROLE_COACH, ROLE_STUDENT  # noqa: E402
import models  # noqa: E402,F401  (registers tables)
from tests.scheduling_helpers import auth_headers_for  # noqa: E402


@pytest.fixture(autouse=True)
def _schema():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Session for calling services directly."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class _SeedSession:
    """`with seed_session() as s:` commits and closes on exit."""

    def __enter__(self):
        self.session = SessionLocal()
        return self.session

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.session.commit()
            else:
                self.session.rollback()
        finally:
            self.session.close()
        return False


@pytest.fixture
def seed_session():
    return _SeedSession


@pytest.fixture
def coach_id():
    return uuid4()


@pytest.fixture
def student_id():
    return uuid4()


@pytest.fixture
def coach_headers(coach_id):
    return auth_headers_for(coach_id, ROLE_COACH)


@pytest.fixture
def student_headers(student_id):
    return auth_headers_for(student_id, ROLE_STUDENT)


@pytest.fixture
def cron_headers():
    return {"X-Cron-Secret": os.environ["CRON_SECRET"]}
