"""Authentication routes: login, logout, role switching and session management."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models.user import User, UserRole
from app.services.audit import AuditPublisher
from app.services.auth import get_auth_provider
from app.services.auth.cookies import clear_session_cookies, set_session_cookies
from app.services.auth.dependencies import (
    get_audit_publisher,
    get_connection_metadata,
    get_current_user,
    get_optional_session,
    get_session_id,
    get_session_manager,
    require_session,
)
from app.services.auth.errors import InsufficientPrivilege, Unauthenticated
from app.services.auth.fingerprint import ConnectionMetadata, fingerprint
from app.services.auth.role_switcher import RoleSwitcher
from app.services.auth.session_manager import SessionContext, SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

DEMO_ACCOUNTS = {
    UserRole.ADMIN: ("admin@dev.local", "admin123", "Development Admin"),
    UserRole.INSTRUCTOR: ("instructor@demo.com", "instructor123", "Demo Instructor"),
    UserRole.USER: ("user@demo.com", "user123", "Demo User"),
}


# =============================================================================
# Request Models
# =============================================================================


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=72)


class DemoLoginRequest(BaseModel):
    role: UserRole = UserRole.ADMIN


class SwitchRoleRequest(BaseModel):
    targetRole: UserRole


def user_payload(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "fullName": user.full_name,
        "role": user.role.value,
        "isVerified": user.is_verified,
    }


def session_payload(session) -> dict:
    return {
        "id": session.id,
        "userRole": session.user_role.value,
        "deviceId": session.device_id,
        "deviceInfo": session.device_info,
        "ipAddress": session.ip_address,
        "lastAccessedAt": session.last_accessed_at.isoformat(),
        "createdAt": session.created_at.isoformat(),
        "expiresAt": session.expires_at.isoformat(),
    }


# =============================================================================
# Login / Logout
# =============================================================================


@router.post("/login")
async def login(
    body: LoginRequest,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """Password login. Creates a session under the user's canonical role."""
    auth_provider = get_auth_provider()
    user = await auth_provider.authenticate(db, body.email, body.password)

    if not user:
        raise Unauthenticated("Invalid email or password")

    session = manager.create_session(user.id, user.role, metadata)

    response = JSONResponse(
        {"message": "Login successful", "sessionId": session.id, "user": user_payload(user)}
    )
    set_session_cookies(response, session)
    audit.login(user.id, session.id, method="password")
    return response


@router.post("/demo-login")
async def demo_login(
    body: DemoLoginRequest,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """Log in as a demo account, creating it on first use. Development only."""
    if not settings.demo_login_enabled or settings.is_production:
        raise InsufficientPrivilege("Demo login is disabled")

    email, password, full_name = DEMO_ACCOUNTS[body.role]
    auth_provider = get_auth_provider()

    user = await auth_provider.get_user_by_email(db, email)
    if not user:
        logger.info("Creating demo %s account", body.role.value.lower())
        user = await auth_provider.create_user(
            db, email, password, role=body.role, full_name=full_name
        )

    session = manager.create_session(user.id, user.role, metadata)

    response = JSONResponse(
        {
            "message": "Demo login successful",
            "sessionId": session.id,
            "user": user_payload(user),
        }
    )
    set_session_cookies(response, session)
    audit.login(user.id, session.id, method="demo")
    return response


@router.post("/logout")
async def logout(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """Terminate the current session and clear cookies. Safe to repeat."""
    session_id = get_session_id(request)
    if session_id:
        session = manager.repository.get(session_id)
        if manager.terminate_session(session_id) and session:
            audit.logout(session.user_id, session_id)

    response = JSONResponse({"message": "Logout successful"})
    clear_session_cookies(response)
    return response


@router.get("/me")
async def me(
    context: SessionContext = Depends(require_session),
    user: User = Depends(get_current_user),
):
    """Current user, session and active role."""
    return {
        "success": True,
        "user": user_payload(user),
        "sessionId": context.session_id,
        "activeRole": context.role.value,
        "deviceMismatch": context.device_mismatch,
    }


# =============================================================================
# Role Switching
# =============================================================================


@router.post("/switch-role")
async def switch_role(
    body: SwitchRoleRequest,
    request: Request,
    db: Session = Depends(get_db),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """
    Re-authenticate under ``targetRole``.

    Cookies are only replaced once the new session has been committed.
    """
    switcher = RoleSwitcher(db)
    result = switcher.switch_role(get_session_id(request), body.targetRole, metadata)

    if not result.switched:
        return {
            "success": True,
            "sessionId": result.session_id,
            "message": "Already in the requested role",
        }

    response = JSONResponse(
        {
            "success": True,
            "sessionId": result.session_id,
            "message": f"Successfully switched to {result.role.value} role",
        }
    )
    set_session_cookies(response, result.session)
    audit.role_switch(
        result.session.user_id,
        result.previous_role.value,
        result.role.value,
        result.session_id,
    )
    return response


# =============================================================================
# Session Management (own sessions)
# =============================================================================


@router.get("/sessions")
async def list_sessions(
    context: SessionContext = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
):
    """Active sessions of the current user, most recently used first."""
    sessions = manager.list_user_sessions(context.user_id)
    return {
        "sessions": [
            dict(session_payload(s), current=s.id == context.session_id) for s in sessions
        ]
    }


@router.delete("/sessions/{session_id}")
async def terminate_session(
    session_id: str,
    context: SessionContext = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
):
    """Terminate one of the current user's own sessions."""
    session = manager.repository.get(session_id)
    if session is None or session.user_id != context.user_id:
        raise HTTPException(status_code=404, detail="Session not found")

    terminated = manager.terminate_session(session_id)
    return {"terminated": terminated}


@router.post("/sessions/revoke-others")
async def revoke_other_sessions(
    context: SessionContext = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """Terminate every session of the current user except this one."""
    count = manager.terminate_other_sessions(context.user_id, context.session_id)
    audit.publish("sessions_revoked", context.user_id, count=count, scope="others")
    return {
        "message": f"{count} session(s) terminated successfully",
        "terminatedCount": count,
    }


# =============================================================================
# Debug (non-production)
# =============================================================================


@router.get("/debug")
async def auth_debug(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
    context: Optional[SessionContext] = Depends(get_optional_session),
):
    """Cookie presence, live fingerprint and stored session. Never in production."""
    if settings.is_production:
        raise InsufficientPrivilege("Debug endpoint is disabled")

    device = fingerprint(metadata)
    session_id = get_session_id(request)
    stored = manager.repository.get(session_id) if session_id else None

    return {
        "debug": True,
        "cookies": {
            name: "present" if request.cookies.get(name) else "missing"
            for name in (
                settings.session_cookie_name,
                settings.user_id_cookie_name,
                settings.user_role_cookie_name,
            )
        },
        "deviceInfo": {
            "deviceId": device.device_id,
            "deviceInfo": device.device_info,
            "ipAddress": device.ip_address,
            "userAgent": device.user_agent[:100],
        },
        "session": (
            dict(
                session_payload(stored),
                isActive=stored.is_active,
                isValid=stored.is_valid(manager.clock()),
                deviceMatch=stored.device_id == device.device_id,
            )
            if stored
            else None
        ),
        "valid": context is not None,
    }
