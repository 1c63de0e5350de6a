"""
Integration tests for Authentication API.

Tests the full auth flow including:
- Login/logout
- Current user and session context
- Role switching
- Own-session management
"""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import User, UserRole, Session as UserSession
from tests.factories import create_session, create_user


def session_row(db: Session, session_id: str) -> UserSession:
    return db.get(UserSession, session_id, populate_existing=True)


class TestLoginFlow:
    """Tests for login functionality."""

    def test_login_success(self, client: TestClient, db: Session, audit: MagicMock):
        user = create_user(db, email="test@example.com", password="password123")

        response = client.post(
            "/auth/login", json={"email": "test@example.com", "password": "password123"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["email"] == "test@example.com"
        assert data["user"]["role"] == "USER"
        assert response.cookies[settings.session_cookie_name] == data["sessionId"]
        assert response.cookies[settings.user_role_cookie_name] == "USER"
        assert response.cookies[settings.user_id_cookie_name] == str(user.id)
        audit.login.assert_called_once_with(user.id, data["sessionId"], method="password")

        session = session_row(db, data["sessionId"])
        assert session.is_active is True
        assert session.user_role == UserRole.USER

    def test_login_then_me(self, client: TestClient, db: Session):
        create_user(db, email="test@example.com", password="password123")
        client.post(
            "/auth/login", json={"email": "test@example.com", "password": "password123"}
        )

        response = client.get("/auth/me")

        assert response.status_code == 200
        assert response.json()["activeRole"] == "USER"
        assert response.json()["deviceMismatch"] is False

    def test_login_email_case_insensitive(self, client: TestClient, db: Session):
        create_user(db, email="test@example.com", password="password123")

        response = client.post(
            "/auth/login", json={"email": "Test@Example.COM", "password": "password123"}
        )

        assert response.status_code == 200

    def test_login_wrong_password(self, client: TestClient, db: Session):
        create_user(db, email="test@example.com", password="password123")

        response = client.post(
            "/auth/login", json={"email": "test@example.com", "password": "wrongpassword"}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"
        assert settings.session_cookie_name not in response.cookies

    def test_login_nonexistent_user(self, client: TestClient):
        response = client.post(
            "/auth/login", json={"email": "nobody@example.com", "password": "password"}
        )

        assert response.status_code == 401

    def test_login_missing_fields(self, client: TestClient):
        response = client.post("/auth/login", json={"email": "test@example.com"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_login_oversized_fields(self, client: TestClient):
        response = client.post(
            "/auth/login", json={"email": "a" * 300, "password": "p" * 100}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_instructor_login_gets_instructor_session(
        self, client: TestClient, db: Session, instructor_user: User
    ):
        response = client.post(
            "/auth/login",
            json={"email": "instructor@example.com", "password": "instructorpassword123"},
        )

        assert response.status_code == 200
        assert session_row(db, response.json()["sessionId"]).user_role == UserRole.INSTRUCTOR


class TestDemoLogin:
    def test_disabled_by_default(self, client: TestClient):
        response = client.post("/auth/demo-login", json={})

        assert response.status_code == 403

    def test_creates_demo_account(self, client: TestClient, db: Session, monkeypatch):
        monkeypatch.setattr(settings, "demo_login_enabled", True)

        response = client.post("/auth/demo-login", json={"role": "INSTRUCTOR"})

        assert response.status_code == 200
        assert response.json()["user"]["role"] == "INSTRUCTOR"
        assert db.query(User).filter(User.email == "instructor@demo.com").count() == 1

        # Second login reuses the account
        client.post("/auth/demo-login", json={"role": "INSTRUCTOR"})
        assert db.query(User).filter(User.email == "instructor@demo.com").count() == 1

    def test_store_unavailable(self, client: TestClient, db: Session, monkeypatch):
        monkeypatch.setattr(settings, "demo_login_enabled", True)
        monkeypatch.setattr(
            db, "scalar", MagicMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        )

        response = client.post("/auth/demo-login", json={"role": "USER"})

        assert response.status_code == 503
        assert response.json()["error"] == "StoreUnavailable"


class TestLogout:
    def test_logout_terminates_session(
        self, auth_client: TestClient, db: Session, test_session: UserSession, audit: MagicMock
    ):
        response = auth_client.post("/auth/logout")

        assert response.status_code == 200
        assert session_row(db, test_session.id).is_active is False
        audit.logout.assert_called_once_with(test_session.user_id, test_session.id)

        set_cookie = " ".join(response.headers.get_list("set-cookie"))
        assert f"{settings.session_cookie_name}=" in set_cookie

    def test_session_rejected_after_logout(self, auth_client: TestClient):
        auth_client.post("/auth/logout")

        response = auth_client.get("/auth/me")

        assert response.status_code == 401

    def test_logout_without_session(self, client: TestClient, audit: MagicMock):
        response = client.post("/auth/logout")

        assert response.status_code == 200
        audit.logout.assert_not_called()

    def test_logout_twice(self, auth_client: TestClient, audit: MagicMock):
        auth_client.post("/auth/logout")
        response = auth_client.post("/auth/logout")

        assert response.status_code == 200
        assert audit.logout.call_count == 1


class TestMe:
    def test_me(self, auth_client: TestClient, test_user: User, test_session: UserSession):
        response = auth_client.get("/auth/me")

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == str(test_user.id)
        assert data["sessionId"] == test_session.id
        assert data["activeRole"] == "USER"

    def test_me_unauthenticated(self, client: TestClient):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json() == {
            "detail": "Missing session credentials",
            "error": "Unauthenticated",
            "reason": "Missing",
        }

    def test_me_expired_session(self, client: TestClient, db: Session, test_user: User):
        session = create_session(db, test_user, expires_in=timedelta(seconds=-1))
        client.cookies.set(settings.session_cookie_name, session.id)

        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["reason"] == "Expired"

    def test_browser_request_redirects_to_login(self, client: TestClient):
        response = client.get(
            "/auth/me", headers={"accept": "text/html"}, follow_redirects=False
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/login?next=/auth/me"

    def test_htmx_request_gets_json(self, client: TestClient):
        response = client.get(
            "/auth/me",
            headers={"accept": "text/html", "hx-request": "true"},
            follow_redirects=False,
        )

        assert response.status_code == 401


class TestSwitchRole:
    def test_instructor_switches_to_user(
        self,
        instructor_client: TestClient,
        db: Session,
        instructor_session: UserSession,
        audit: MagicMock,
    ):
        response = instructor_client.post("/auth/switch-role", json={"targetRole": "USER"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["sessionId"] != instructor_session.id
        assert response.cookies[settings.session_cookie_name] == data["sessionId"]
        assert response.cookies[settings.user_role_cookie_name] == "USER"

        assert session_row(db, instructor_session.id).is_active is False
        assert session_row(db, data["sessionId"]).user_role == UserRole.USER
        audit.role_switch.assert_called_once_with(
            instructor_session.user_id, "INSTRUCTOR", "USER", data["sessionId"]
        )

    def test_new_session_is_usable(self, instructor_client: TestClient):
        response = instructor_client.post("/auth/switch-role", json={"targetRole": "USER"})
        new_id = response.json()["sessionId"]

        instructor_client.cookies.clear()
        instructor_client.cookies.set(settings.session_cookie_name, new_id)
        me = instructor_client.get("/auth/me")

        assert me.status_code == 200
        assert me.json()["activeRole"] == "USER"

    def test_instructor_cannot_switch_to_admin(
        self, instructor_client: TestClient, db: Session, instructor_session: UserSession
    ):
        response = instructor_client.post("/auth/switch-role", json={"targetRole": "ADMIN"})

        assert response.status_code == 403
        assert response.json()["error"] == "InsufficientPrivilege"
        assert session_row(db, instructor_session.id).is_active is True

    def test_same_role_is_a_no_op(
        self, instructor_client: TestClient, db: Session, instructor_session: UserSession
    ):
        response = instructor_client.post(
            "/auth/switch-role", json={"targetRole": "INSTRUCTOR"}
        )

        assert response.status_code == 200
        assert response.json()["sessionId"] == instructor_session.id
        assert response.json()["message"] == "Already in the requested role"
        assert db.query(UserSession).count() == 1

    def test_user_cannot_switch_to_instructor(self, auth_client: TestClient):
        response = auth_client.post("/auth/switch-role", json={"targetRole": "INSTRUCTOR"})

        assert response.status_code == 403

    def test_admin_switches_to_instructor(self, admin_client: TestClient):
        response = admin_client.post("/auth/switch-role", json={"targetRole": "INSTRUCTOR"})

        assert response.status_code == 200
        assert response.cookies[settings.user_role_cookie_name] == "INSTRUCTOR"

    def test_unknown_role(self, auth_client: TestClient):
        response = auth_client.post("/auth/switch-role", json={"targetRole": "SUPERUSER"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_missing_target_role(self, auth_client: TestClient):
        response = auth_client.post("/auth/switch-role", json={})

        assert response.status_code == 400

    def test_unauthenticated(self, client: TestClient):
        response = client.post("/auth/switch-role", json={"targetRole": "USER"})

        assert response.status_code == 401


class TestOwnSessions:
    def test_list_sessions_marks_current(
        self, auth_client: TestClient, db: Session, test_user: User, test_session: UserSession
    ):
        other = create_session(db, test_user, device_id="phone")
        create_session(db, test_user, is_active=False)

        response = auth_client.get("/auth/sessions")

        assert response.status_code == 200
        sessions = {s["id"]: s for s in response.json()["sessions"]}
        assert set(sessions) == {test_session.id, other.id}
        assert sessions[test_session.id]["current"] is True
        assert sessions[other.id]["current"] is False

    def test_terminate_own_session(
        self, auth_client: TestClient, db: Session, test_user: User
    ):
        other = create_session(db, test_user, device_id="phone")

        response = auth_client.delete(f"/auth/sessions/{other.id}")

        assert response.status_code == 200
        assert response.json() == {"terminated": True}
        assert session_row(db, other.id).is_active is False

    def test_cannot_terminate_foreign_session(
        self, auth_client: TestClient, db: Session
    ):
        stranger = create_user(db)
        foreign = create_session(db, stranger)

        response = auth_client.delete(f"/auth/sessions/{foreign.id}")

        assert response.status_code == 404
        assert session_row(db, foreign.id).is_active is True

    def test_revoke_other_sessions(
        self, auth_client: TestClient, db: Session, test_user: User, test_session: UserSession
    ):
        first = create_session(db, test_user, device_id="phone")
        second = create_session(db, test_user, device_id="tablet")

        response = auth_client.post("/auth/sessions/revoke-others")

        assert response.status_code == 200
        assert response.json()["terminatedCount"] == 2
        assert session_row(db, first.id).is_active is False
        assert session_row(db, second.id).is_active is False
        assert session_row(db, test_session.id).is_active is True


class TestDebug:
    def test_debug_with_session(self, auth_client: TestClient, test_session: UserSession):
        response = auth_client.get("/auth/debug")

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["cookies"][settings.session_cookie_name] == "present"
        assert data["session"]["id"] == test_session.id
        assert data["session"]["isValid"] is True

    def test_debug_without_session(self, client: TestClient):
        response = client.get("/auth/debug")

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["session"] is None

    def test_debug_disabled_in_production(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")

        response = client.get("/auth/debug")

        assert response.status_code == 403


def test_health(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
