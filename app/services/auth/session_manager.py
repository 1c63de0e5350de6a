"""
Session lifecycle: create, validate and terminate sessions.

The datastore is the only source of truth. Nothing about a session's
validity is cached in-process; every validation re-reads the row and
re-derives validity from ``is_active`` and ``expires_at``.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.config import settings
from app.database import utcnow
from app.models.session import Session
from app.models.user import UserRole
from app.services.auth.errors import (
    InsufficientPrivilege,
    InvalidReason,
    StoreUnavailable,
    Unauthenticated,
)
from app.services.auth.fingerprint import ConnectionMetadata, fingerprint
from app.services.auth.session_repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Who is calling, under which role, through which session."""

    session_id: str
    user_id: UUID
    role: UserRole
    device_id: str
    device_mismatch: bool = False


def role_satisfies(session_role: UserRole, required_role: Optional[UserRole]) -> bool:
    """ADMIN satisfies any requirement; every other role only satisfies itself."""
    if required_role is None:
        return True
    if session_role == UserRole.ADMIN:
        return True
    return session_role == required_role


def generate_session_id() -> str:
    """Generate a cryptographically secure session handle."""
    return secrets.token_urlsafe(32)


class SessionManager:
    """Creates, validates and terminates sessions."""

    def __init__(
        self,
        db: DBSession,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = SessionRepository(db)
        self.ttl = ttl or timedelta(hours=settings.session_ttl_hours)
        self.clock = clock

    def create_session(
        self,
        user_id: UUID,
        role: UserRole,
        metadata: ConnectionMetadata,
        commit: bool = True,
    ) -> Session:
        """
        Insert a new session stamped with ``role``.

        Active sessions on the same device held under a different role are
        deactivated first, so each device has one enforced role context.

        Args:
            user_id: Owning principal
            role: Role snapshot for the session
            metadata: Connection metadata for fingerprinting
            commit: Commit immediately; pass False to join a larger unit of work

        Returns:
            The new Session row
        """
        device = fingerprint(metadata)
        now = self.clock()

        self.repository.deactivate_other_roles_on_device(device.device_id, role, now)

        session = Session(
            id=generate_session_id(),
            user_id=user_id,
            user_role=role,
            device_id=device.device_id,
            device_info=device.device_info,
            ip_address=device.ip_address,
            user_agent=device.user_agent[:512],
            is_active=True,
            created_at=now,
            expires_at=now + self.ttl,
            last_accessed_at=now,
            updated_at=now,
        )
        self.repository.add(session)
        if commit:
            self.repository.commit()
        return session

    def validate_session(
        self,
        session_id: Optional[str],
        metadata: Optional[ConnectionMetadata] = None,
        required_role: Optional[UserRole] = None,
    ) -> SessionContext:
        """
        Resolve a session handle to a SessionContext.

        Raises:
            Unauthenticated: missing, unknown, expired or inactive session
            InsufficientPrivilege: session role does not satisfy required_role
            StoreUnavailable: datastore unreachable (callers must fail closed)
        """
        if not session_id:
            raise Unauthenticated("Missing session credentials", InvalidReason.MISSING.value)

        session = self.repository.get(session_id)
        now = self.clock()

        if session is None:
            raise Unauthenticated("Invalid session", InvalidReason.NOT_FOUND.value)
        if session.expires_at <= now:
            raise Unauthenticated("Session has expired", InvalidReason.EXPIRED.value)
        if not session.is_active:
            raise Unauthenticated("Session is no longer active", InvalidReason.INACTIVE.value)
        if not role_satisfies(session.user_role, required_role):
            raise InsufficientPrivilege(
                f"Access denied: {required_role.value} role required",
                InvalidReason.INSUFFICIENT_ROLE.value,
            )

        device_mismatch = False
        live_ip = None
        if metadata is not None:
            device = fingerprint(metadata)
            live_ip = device.ip_address
            if device.device_id != session.device_id:
                device_mismatch = True
                logger.warning(
                    "Device fingerprint mismatch for session %s (user %s)",
                    session.id,
                    session.user_id,
                )

        self._touch(session.id, now, live_ip)

        return SessionContext(
            session_id=session.id,
            user_id=session.user_id,
            role=session.user_role,
            device_id=session.device_id,
            device_mismatch=device_mismatch,
        )

    def _touch(self, session_id: str, now: datetime, ip_address: Optional[str]) -> None:
        """Best-effort last-access update. Never fails the validation."""
        try:
            self.repository.touch(session_id, now, ip_address)
            self.repository.commit()
        except StoreUnavailable:
            logger.warning("Could not update last access time for session %s", session_id)

    def terminate_session(self, session_id: str) -> bool:
        """
        Deactivate a session. Idempotent.

        Returns True if the session changed state, False if it was already
        inactive or does not exist.
        """
        changed = self.repository.deactivate(session_id, self.clock())
        self.repository.commit()
        return changed > 0

    def terminate_other_sessions(self, user_id: UUID, current_session_id: str) -> int:
        count = self.repository.deactivate_for_user(
            user_id, self.clock(), except_session_id=current_session_id
        )
        self.repository.commit()
        return count

    def terminate_device_sessions(self, user_id: UUID, device_id: str) -> int:
        count = self.repository.deactivate_for_user(
            user_id, self.clock(), device_id=device_id
        )
        self.repository.commit()
        return count

    def list_user_sessions(self, user_id: UUID) -> List[Session]:
        return self.repository.list_active_for_user(user_id, self.clock())
