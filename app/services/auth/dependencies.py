"""FastAPI dependencies for authentication."""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models.user import User, UserRole
from app.services.audit import AuditPublisher, audit_publisher
from app.services.auth.errors import Unauthenticated
from app.services.auth.fingerprint import ConnectionMetadata
from app.services.auth.session_manager import SessionContext, SessionManager


def get_connection_metadata(request: Request) -> ConnectionMetadata:
    """Connection metadata, captured once per request."""
    return ConnectionMetadata.from_request(request)


def get_session_manager(db: Session = Depends(get_db)) -> SessionManager:
    return SessionManager(db)


def get_audit_publisher() -> AuditPublisher:
    return audit_publisher


def get_session_id(request: Request) -> Optional[str]:
    return request.cookies.get(settings.session_cookie_name)


class RequireSession:
    """
    Dependency class resolving the request's SessionContext.

    Raises Unauthenticated (401) for a missing or invalid session and
    InsufficientPrivilege (403) when the session's role does not satisfy
    ``required_role``.
    """

    def __init__(self, required_role: Optional[UserRole] = None):
        self.required_role = required_role

    async def __call__(
        self,
        request: Request,
        manager: SessionManager = Depends(get_session_manager),
        metadata: ConnectionMetadata = Depends(get_connection_metadata),
    ) -> SessionContext:
        return manager.validate_session(
            get_session_id(request), metadata, required_role=self.required_role
        )


# Pre-configured instances
require_session = RequireSession()
require_admin = RequireSession(required_role=UserRole.ADMIN)


async def get_optional_session(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    metadata: ConnectionMetadata = Depends(get_connection_metadata),
) -> Optional[SessionContext]:
    """
    The current SessionContext if the request carries a valid session.

    Use for endpoints that behave differently for logged in vs logged out
    callers. Store failures still propagate (fail closed).
    """
    try:
        return manager.validate_session(get_session_id(request), metadata)
    except Unauthenticated:
        return None


async def get_current_user(
    context: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> User:
    """The user owning the current session."""
    user = db.get(User, context.user_id)
    if not user:
        raise Unauthenticated("User not found")
    return user
