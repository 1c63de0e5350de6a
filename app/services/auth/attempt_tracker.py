"""Append-only audit trail of login-token redemption attempts."""

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session as DBSession

from app.models.login_attempt import LoginAttempt
from app.services.auth.fingerprint import ConnectionMetadata, fingerprint
from app.services.auth.session_repository import store_call


class AttemptTracker:
    """Records attempts and summarises them per token. Never mutates rows."""

    def __init__(self, db: DBSession):
        self.db = db

    @store_call
    def append(
        self,
        token_id: int,
        email: Optional[str],
        success: bool,
        failure_reason: Optional[str],
        metadata: ConnectionMetadata,
        now: datetime,
    ) -> LoginAttempt:
        """Stage a new attempt row. The caller commits."""
        device = fingerprint(metadata)
        attempt = LoginAttempt(
            token_id=token_id,
            email=email.lower() if email else None,
            success=success,
            failure_reason=None if success else (failure_reason or None),
            ip_address=device.ip_address,
            user_agent=device.user_agent[:512] or None,
            created_at=now,
        )
        self.db.add(attempt)
        self.db.flush()
        return attempt

    @store_call
    def stats_for_tokens(
        self, token_ids: Iterable[int], now: datetime
    ) -> Dict[int, dict]:
        """
        Per-token attempt counters.

        Returns a dict keyed by token id with ``totalAttempts``,
        ``successfulAttempts``, ``successRate`` (rounded percent) and
        ``recentAttempts24h``. Tokens without attempts get zeroes.
        """
        token_ids = list(token_ids)
        stats = {
            token_id: {
                "totalAttempts": 0,
                "successfulAttempts": 0,
                "successRate": 0,
                "recentAttempts24h": 0,
            }
            for token_id in token_ids
        }
        if not token_ids:
            return stats

        since = now - timedelta(hours=24)
        rows = self.db.execute(
            select(
                LoginAttempt.token_id,
                func.count(LoginAttempt.id),
                func.sum(case((LoginAttempt.success.is_(True), 1), else_=0)),
                func.sum(case((LoginAttempt.created_at > since, 1), else_=0)),
            )
            .where(LoginAttempt.token_id.in_(token_ids))
            .group_by(LoginAttempt.token_id)
        ).all()

        for token_id, total, successful, recent in rows:
            successful = successful or 0
            stats[token_id] = {
                "totalAttempts": total,
                "successfulAttempts": successful,
                "successRate": round(successful / total * 100) if total else 0,
                "recentAttempts24h": recent or 0,
            }
        return stats
