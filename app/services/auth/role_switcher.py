"""Re-authenticate a principal under a different, permission-checked role."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session as DBSession

from app.models.session import Session
from app.models.user import UserRole
from app.services.auth.errors import InsufficientPrivilege, InvalidReason, Unauthenticated
from app.services.auth.fingerprint import ConnectionMetadata
from app.services.auth.session_manager import SessionContext, SessionManager

logger = logging.getLogger(__name__)


def can_assume_role(canonical_role: UserRole, target_role: UserRole) -> bool:
    """
    Whether a principal whose canonical role is ``canonical_role`` may act
    as ``target_role``.

    ADMIN requires ADMIN; INSTRUCTOR requires INSTRUCTOR or ADMIN; USER is
    open to everyone.
    """
    if target_role == UserRole.ADMIN:
        return canonical_role == UserRole.ADMIN
    if target_role == UserRole.INSTRUCTOR:
        return canonical_role in (UserRole.INSTRUCTOR, UserRole.ADMIN)
    return True


@dataclass(frozen=True)
class RoleSwitchResult:
    session_id: str
    role: UserRole
    previous_role: UserRole
    switched: bool
    session: Optional[Session] = None


class RoleSwitcher:
    """Replaces the caller's session with one stamped with a new role."""

    def __init__(self, db: DBSession, session_manager: Optional[SessionManager] = None):
        self.session_manager = session_manager or SessionManager(db)
        self.repository = self.session_manager.repository

    def switch_role(
        self,
        session_id: Optional[str],
        target_role: UserRole,
        metadata: ConnectionMetadata,
    ) -> RoleSwitchResult:
        """
        Switch the current session to ``target_role``.

        The old session is terminated and the new one inserted in a single
        transaction: either both land or neither does, so a failure leaves
        the caller on the previous, still-valid session.

        Raises:
            Unauthenticated: current session invalid or owner gone
            InsufficientPrivilege: canonical role does not permit target_role
            StoreUnavailable: datastore failure; nothing was changed
        """
        context: SessionContext = self.session_manager.validate_session(session_id, metadata)

        user = self.repository.get_user(context.user_id)
        if user is None:
            raise Unauthenticated("User not found")

        if not can_assume_role(user.role, target_role):
            raise InsufficientPrivilege(
                f"Insufficient permissions for {target_role.value.lower()} role"
            )

        if context.role == target_role:
            return RoleSwitchResult(
                session_id=context.session_id,
                role=target_role,
                previous_role=context.role,
                switched=False,
            )

        with self.repository.transaction():
            # A concurrent logout between validation and here wins
            if not self.repository.deactivate(context.session_id, self.session_manager.clock()):
                raise Unauthenticated(
                    "Session is no longer active", InvalidReason.INACTIVE.value
                )
            new_session = self.session_manager.create_session(
                context.user_id, target_role, metadata, commit=False
            )

        logger.info(
            "User %s switched role %s -> %s (session %s)",
            context.user_id,
            context.role.value,
            target_role.value,
            new_session.id,
        )
        return RoleSwitchResult(
            session_id=new_session.id,
            role=target_role,
            previous_role=context.role,
            switched=True,
            session=new_session,
        )
