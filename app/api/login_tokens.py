"""Login token routes: issuance, listing, validation, attempts and redemption."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import UserRole
from app.services.audit import AuditPublisher
from app.services.auth import get_auth_provider
from app.services.auth.cookies import set_session_cookies
from app.services.auth.dependencies import (
    get_audit_publisher,
    get_connection_metadata,
    get_session_manager,
    require_admin,
)
from app.services.auth.errors import InsufficientPrivilege, Unauthenticated
from app.services.auth.fingerprint import ConnectionMetadata
from app.services.auth.login_tokens import (
    LoginTokenService,
    build_login_url,
    serialize_token,
)
from app.services.auth.role_switcher import can_assume_role
from app.services.auth.session_manager import SessionContext, SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/login-tokens", tags=["login-tokens"])


# =============================================================================
# Request Models
# =============================================================================


class IssueTokenRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    purpose: Optional[str] = Field(default=None, max_length=64)
    maxUses: Optional[int] = Field(default=None, gt=0)
    expiresAt: Optional[datetime] = None
    allowedRoles: Optional[List[UserRole]] = None
    metadata: Optional[Dict[str, Any]] = None


class DeleteTokenRequest(BaseModel):
    tokenId: int


class UpdateTokenRequest(BaseModel):
    isActive: bool


class RecordAttemptRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    success: bool
    failureReason: Optional[str] = Field(default=None, max_length=255)


class RedeemRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=72)
    role: Optional[UserRole] = None


def get_login_token_service(db: Session = Depends(get_db)) -> LoginTokenService:
    return LoginTokenService(db)


# =============================================================================
# Admin: issue / list / update / delete
# =============================================================================


@router.post("")
async def issue_token(
    body: IssueTokenRequest,
    context: SessionContext = Depends(require_admin),
    service: LoginTokenService = Depends(get_login_token_service),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """Issue a new login token (admin only)."""
    login_token = service.issue_token(
        context.user_id,
        name=body.name,
        purpose=body.purpose,
        max_uses=body.maxUses,
        expires_at=body.expiresAt,
        allowed_roles=[role.value for role in body.allowedRoles]
        if body.allowedRoles is not None
        else None,
        metadata=body.metadata,
    )
    audit.publish(
        "login_token_issued", context.user_id, tokenId=login_token.id, purpose=login_token.purpose
    )

    data = serialize_token(login_token)
    data.update(
        {
            "token": login_token.token,
            "loginUrl": build_login_url(login_token.token),
            "createdAt": login_token.created_at.isoformat(),
        }
    )
    return {"success": True, "data": data}


@router.get("")
async def list_tokens(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    purpose: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    context: SessionContext = Depends(require_admin),
    service: LoginTokenService = Depends(get_login_token_service),
):
    """List tokens with usage statistics (admin only)."""
    result = service.list_tokens(
        page=page, limit=limit, search=search, purpose=purpose, is_active=active
    )
    return {
        "success": True,
        "data": {
            "tokens": result.tokens,
            "pagination": {
                "page": result.page,
                "limit": result.limit,
                "total": result.total,
                "pages": result.pages,
            },
        },
    }


@router.delete("")
async def delete_token(
    body: DeleteTokenRequest,
    context: SessionContext = Depends(require_admin),
    service: LoginTokenService = Depends(get_login_token_service),
):
    """Delete a token and all of its attempts (admin only)."""
    service.delete_token(body.tokenId)
    return {"success": True, "message": "Login token deleted successfully"}


@router.patch("/{token_id}")
async def update_token(
    token_id: int,
    body: UpdateTokenRequest,
    context: SessionContext = Depends(require_admin),
    service: LoginTokenService = Depends(get_login_token_service),
):
    """Activate or deactivate a token (admin only)."""
    login_token = service.set_active(token_id, body.isActive)
    return {"success": True, "data": {"id": login_token.id, "isActive": login_token.is_active}}


# =============================================================================
# Public: validate / record attempt / redeem
# =============================================================================


@router.get("/{token}")
async def validate_token(
    token: str,
    service: LoginTokenService = Depends(get_login_token_service),
):
    """Check whether a token can be redeemed. Read-only; safe for link previews."""
    login_token = service.check_redeemable(token)
    return {"valid": True, "data": serialize_token(login_token)}


@router.post("/{token}")
async def record_attempt(
    token: str,
    body: RecordAttemptRequest,
    service: LoginTokenService = Depends(get_login_token_service),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
):
    """Record a redemption attempt; a successful one consumes a use."""
    attempt = service.record_attempt(
        token, body.email, body.success, body.failureReason, metadata
    )
    return {"success": True, "attemptId": attempt.id}


@router.post("/{token}/redeem")
async def redeem_token(
    token: str,
    body: RedeemRequest,
    db: Session = Depends(get_db),
    service: LoginTokenService = Depends(get_login_token_service),
    manager: SessionManager = Depends(get_session_manager),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """
    Log in through a login token.

    The use is consumed and the session inserted in one commit, so a
    failed session write does not burn a use.
    """
    login_token = service.check_redeemable(token)

    auth_provider = get_auth_provider()
    user = await auth_provider.authenticate(db, body.email, body.password)
    if not user:
        service.record_attempt(token, body.email, False, "Invalid email or password", metadata)
        raise Unauthenticated("Invalid email or password")

    role = body.role or user.role
    if role.value not in (login_token.allowed_roles or []) or not can_assume_role(user.role, role):
        service.record_attempt(token, body.email, False, "Role not allowed for this link", metadata)
        raise InsufficientPrivilege(f"This link does not grant the {role.value} role")

    service.record_attempt(token, body.email, True, None, metadata, commit=False)
    session = manager.create_session(user.id, role, metadata)

    response = JSONResponse(
        {
            "success": True,
            "sessionId": session.id,
            "role": role.value,
            "userId": str(user.id),
        }
    )
    set_session_cookies(response, session)
    audit.publish(
        "login_token_redeemed", user.id, tokenId=login_token.id, sessionId=session.id
    )
    audit.login(user.id, session.id, method="login_token")
    return response
