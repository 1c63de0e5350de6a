"""
Persistence for Session rows.

All reads and writes funnel through here so that datastore failures are
converted to ``StoreUnavailable`` in one place. Methods stage changes on the
ORM session; callers decide when to commit so that multi-step operations
(role switch, token redemption) can share a single unit of work.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from functools import wraps
from typing import Iterator, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from app.models.session import Session
from app.models.user import User, UserRole
from app.services.auth.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def store_call(func_):
    """Convert SQLAlchemy failures into StoreUnavailable (fail closed)."""

    @wraps(func_)
    def wrapper(self, *args, **kwargs):
        try:
            return func_(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("Session store call %s failed: %s", func_.__name__, e)
            self.db.rollback()
            raise StoreUnavailable() from e

    return wrapper


class SessionRepository:
    """Datastore access for sessions and the users that own them."""

    def __init__(self, db: DBSession):
        self.db = db

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    @store_call
    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error("Rollback failed: %s", e)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit everything staged inside the block, or nothing at all."""
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise

    # -------------------------------------------------------------------------
    # Single-row access
    # -------------------------------------------------------------------------

    @store_call
    def get(self, session_id: str) -> Optional[Session]:
        return self.db.get(Session, session_id, populate_existing=True)

    @store_call
    def add(self, session: Session) -> Session:
        self.db.add(session)
        self.db.flush()
        return session

    @store_call
    def get_user(self, user_id: UUID) -> Optional[User]:
        return self.db.get(User, user_id)

    @store_call
    def deactivate(self, session_id: str, now: datetime) -> int:
        """Deactivate one session. Already-inactive rows are left untouched."""
        result = self.db.execute(
            update(Session)
            .where(Session.id == session_id, Session.is_active.is_(True))
            .values(is_active=False, updated_at=now)
        )
        return result.rowcount

    @store_call
    def touch(self, session_id: str, now: datetime, ip_address: Optional[str]) -> None:
        values = {"last_accessed_at": now}
        if ip_address:
            values["ip_address"] = ip_address
        self.db.execute(update(Session).where(Session.id == session_id).values(**values))

    # -------------------------------------------------------------------------
    # Bulk state changes
    # -------------------------------------------------------------------------

    @store_call
    def deactivate_other_roles_on_device(
        self, device_id: str, role: UserRole, now: datetime
    ) -> int:
        result = self.db.execute(
            update(Session)
            .where(
                Session.device_id == device_id,
                Session.user_role != role,
                Session.is_active.is_(True),
            )
            .values(is_active=False, updated_at=now)
        )
        return result.rowcount

    @store_call
    def deactivate_for_user(
        self,
        user_id: UUID,
        now: datetime,
        except_session_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> int:
        stmt = update(Session).where(
            Session.user_id == user_id, Session.is_active.is_(True)
        )
        if except_session_id:
            stmt = stmt.where(Session.id != except_session_id)
        if device_id:
            stmt = stmt.where(Session.device_id == device_id)
        result = self.db.execute(stmt.values(is_active=False, updated_at=now))
        return result.rowcount

    @store_call
    def expire_due(self, now: datetime) -> int:
        result = self.db.execute(
            update(Session)
            .where(Session.expires_at <= now, Session.is_active.is_(True))
            .values(is_active=False, updated_at=now)
        )
        return result.rowcount

    @store_call
    def purge_inactive(self, cutoff: datetime) -> int:
        result = self.db.execute(
            delete(Session).where(
                Session.is_active.is_(False), Session.updated_at < cutoff
            )
        )
        return result.rowcount

    @store_call
    def delete_orphans(self) -> int:
        result = self.db.execute(
            delete(Session).where(Session.user_id.not_in(select(User.id)))
        )
        return result.rowcount

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @store_call
    def list_active_for_user(self, user_id: UUID, now: datetime) -> List[Session]:
        return list(
            self.db.scalars(
                select(Session)
                .where(
                    Session.user_id == user_id,
                    Session.is_active.is_(True),
                    Session.expires_at > now,
                )
                .order_by(Session.last_accessed_at.desc())
            )
        )

    @store_call
    def stats(self, now: datetime) -> dict:
        valid = (Session.is_active.is_(True), Session.expires_at > now)

        total = self.db.scalar(select(func.count()).select_from(Session))
        active = self.db.scalar(select(func.count()).select_from(Session).where(*valid))
        inactive = self.db.scalar(
            select(func.count()).select_from(Session).where(Session.is_active.is_(False))
        )
        recent = self.db.scalar(
            select(func.count())
            .select_from(Session)
            .where(Session.created_at >= now - timedelta(hours=1))
        )
        by_role = self.db.execute(
            select(Session.user_role, func.count())
            .where(*valid)
            .group_by(Session.user_role)
        ).all()

        return {
            "total": total,
            "active": active,
            "expired": inactive,
            "recentlyCreated": recent,
            "byRole": [{"role": role.value, "count": count} for role, count in by_role],
        }
