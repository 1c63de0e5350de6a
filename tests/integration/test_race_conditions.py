"""
Tests for race conditions in login token redemption.

Two database sessions race to consume the last use of a token. These need
real row locking, so they only run against TEST_DATABASE_URL (PostgreSQL);
in-memory SQLite shares a single connection and cannot race.
"""
import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.orm import Session, sessionmaker

from app.models import LoginAttempt, LoginToken
from app.services.auth.errors import TokenExhausted
from app.services.auth.login_tokens import LoginTokenService
from tests.factories import create_login_token, make_connection_metadata

pytestmark = [
    pytest.mark.slow,
    pytest.mark.skipif(
        not os.environ.get("TEST_DATABASE_URL"),
        reason="needs TEST_DATABASE_URL pointing at a real database",
    ),
]


class TestTokenRedemptionRace:
    """Concurrent successful attempts against a single-use token."""

    def test_single_use_token_consumed_once(self, test_engine, db: Session):
        login_token = create_login_token(db, max_uses=1, allowed_roles=["USER"])
        db.commit()

        WorkerSession = sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)
        barrier = threading.Barrier(2)

        def redeem(email: str) -> str:
            session = WorkerSession()
            try:
                service = LoginTokenService(session)
                barrier.wait(timeout=10)
                service.record_attempt(
                    login_token.token, email, True, None, make_connection_metadata()
                )
                return "success"
            except TokenExhausted:
                return "exhausted"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(redeem, f"racer{i}@example.com") for i in range(2)
            ]
            results = [future.result() for future in futures]

        assert sorted(results) == ["exhausted", "success"]

        db.expire_all()
        assert db.get(LoginToken, login_token.id).used_count == 1
        successes = (
            db.query(LoginAttempt)
            .filter(LoginAttempt.token_id == login_token.id, LoginAttempt.success.is_(True))
            .count()
        )
        assert successes == 1
