"""
Test configuration and fixtures for the dance booking auth service.

- Function-scoped database (in-memory SQLite by default, or
  TEST_DATABASE_URL) with tables created and dropped around each test
- TestClient with database and audit dependency overrides
- Authenticated client fixtures per role
"""

import os

# Must be set before the app is imported: selects the stub dramatiq broker
# and keeps the default engine off PostgreSQL.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import Base, build_engine, get_db
from app.main import app
from app.models import Session as UserSession, User, UserRole
from app.services.audit import AuditPublisher
from app.services.auth.dependencies import get_audit_publisher
from tests.factories import create_session, create_user


# =============================================================================
# Database Fixtures
# =============================================================================


def get_test_database_url() -> str:
    """
    Get the test database URL.

    Priority:
    1. TEST_DATABASE_URL environment variable
    2. In-memory SQLite
    """
    return os.environ.get("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture
def test_engine():
    """
    Create a fresh schema for each test.

    In-memory SQLite uses a StaticPool so every thread (the TestClient runs
    the app in its own) sees the same connection and therefore the same data.
    """
    database_url = get_test_database_url()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = build_engine(database_url)

    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(test_engine) -> Generator[Session, None, None]:
    """Database session shared by the test body and the app under test."""
    TestingSessionLocal = sessionmaker(
        bind=test_engine, autoflush=False, expire_on_commit=False
    )
    session = TestingSessionLocal()

    yield session

    session.close()


# =============================================================================
# Audit Fixtures
# =============================================================================


@pytest.fixture
def audit() -> MagicMock:
    """Recording stand-in for the Redis audit publisher."""
    return MagicMock(spec=AuditPublisher)


# =============================================================================
# TestClient Fixtures
# =============================================================================


def _make_client(db: Session, audit: MagicMock, session_id: str | None = None):
    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close - managed by db fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_publisher] = lambda: audit

    test_client = TestClient(app)
    if session_id:
        test_client.cookies.set(settings.session_cookie_name, session_id)
    # Set default Referer so CSRF Origin middleware allows requests
    test_client.headers["referer"] = "http://testserver/"
    return test_client


@pytest.fixture
def client(db: Session, audit: MagicMock) -> Generator[TestClient, None, None]:
    """Anonymous TestClient with database dependency override."""
    with _make_client(db, audit) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# =============================================================================
# Authentication Fixtures
# =============================================================================


@pytest.fixture
def test_user(db: Session) -> User:
    return create_user(db, email="testuser@example.com", password="testpassword123")


@pytest.fixture
def instructor_user(db: Session) -> User:
    return create_user(
        db,
        email="instructor@example.com",
        password="instructorpassword123",
        role=UserRole.INSTRUCTOR,
    )


@pytest.fixture
def admin_user(db: Session) -> User:
    return create_user(
        db, email="admin@example.com", password="adminpassword123", role=UserRole.ADMIN
    )


@pytest.fixture
def test_session(db: Session, test_user: User) -> UserSession:
    return create_session(db, test_user)


@pytest.fixture
def instructor_session(db: Session, instructor_user: User) -> UserSession:
    return create_session(db, instructor_user)


@pytest.fixture
def admin_session(db: Session, admin_user: User) -> UserSession:
    return create_session(db, admin_user)


@pytest.fixture
def auth_client(
    db: Session, audit: MagicMock, test_session: UserSession
) -> Generator[TestClient, None, None]:
    """Authenticated TestClient for a regular user."""
    with _make_client(db, audit, test_session.id) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def instructor_client(
    db: Session, audit: MagicMock, instructor_session: UserSession
) -> Generator[TestClient, None, None]:
    """Authenticated TestClient for an instructor."""
    with _make_client(db, audit, instructor_session.id) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(
    db: Session, audit: MagicMock, admin_session: UserSession
) -> Generator[TestClient, None, None]:
    """Authenticated TestClient for an admin."""
    with _make_client(db, audit, admin_session.id) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# =============================================================================
# pytest markers
# =============================================================================


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "security: marks tests as security tests (deselect with '-m not security')",
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m not slow')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
