"""
Periodic session cleanup and session observability.

Each phase is a single bounded statement committed on its own, so the
phases can run while requests are being served and re-running the job with
no new activity changes nothing.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.config import settings
from app.database import utcnow
from app.services.auth.session_repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    expired: int = 0
    purged: int = 0
    orphaned: int = 0

    @property
    def total(self) -> int:
        return self.expired + self.purged + self.orphaned

    def to_dict(self) -> dict:
        data = asdict(self)
        data["total"] = self.total
        return data


class SessionCleanupService:
    """Expire, purge and orphan sweeps plus admin force-logout."""

    def __init__(
        self,
        db: DBSession,
        clock: Callable[[], datetime] = utcnow,
        purge_after: Optional[timedelta] = None,
    ):
        self.repository = SessionRepository(db)
        self.clock = clock
        self.purge_after = purge_after or timedelta(days=settings.session_purge_after_days)

    def expire_sessions(self) -> int:
        """Deactivate active sessions whose expiry has passed."""
        count = self.repository.expire_due(self.clock())
        self.repository.commit()
        logger.info("Deactivated %d expired sessions", count)
        return count

    def purge_inactive_sessions(self) -> int:
        """Delete inactive sessions not modified within the purge window."""
        cutoff = self.clock() - self.purge_after
        count = self.repository.purge_inactive(cutoff)
        self.repository.commit()
        logger.info("Deleted %d old inactive sessions", count)
        return count

    def delete_orphaned_sessions(self) -> int:
        """Delete sessions whose owning user no longer exists."""
        count = self.repository.delete_orphans()
        self.repository.commit()
        logger.info("Deleted %d orphaned sessions", count)
        return count

    def run(self) -> CleanupReport:
        """Run all three phases in order and report the counts."""
        report = CleanupReport(
            expired=self.expire_sessions(),
            purged=self.purge_inactive_sessions(),
            orphaned=self.delete_orphaned_sessions(),
        )
        logger.info("Session cleanup completed. Total sessions processed: %d", report.total)
        return report

    def expire_user_sessions(self, user_id: UUID) -> int:
        """Force-logout: deactivate every active session of one user."""
        count = self.repository.deactivate_for_user(user_id, self.clock())
        self.repository.commit()
        logger.info("Expired %d sessions for user %s", count, user_id)
        return count

    def get_session_stats(self) -> dict:
        return self.repository.stats(self.clock())

    def get_user_session_details(self, user_id: UUID) -> List[dict]:
        return [
            {
                "id": s.id,
                "userRole": s.user_role.value,
                "deviceId": s.device_id,
                "deviceInfo": s.device_info,
                "ipAddress": s.ip_address,
                "userAgent": s.user_agent,
                "lastAccessedAt": s.last_accessed_at.isoformat(),
                "createdAt": s.created_at.isoformat(),
                "expiresAt": s.expires_at.isoformat(),
            }
            for s in self.repository.list_active_for_user(user_id, self.clock())
        ]
