"""
Audit event publisher for authentication events.

Uses Redis pub/sub; the audit store subscribes to the channel. Publishing is
strictly best-effort: a failure is logged and never reaches the caller.
"""
import json
import logging
from typing import Optional

import redis

from app.config import settings
from app.database import utcnow

logger = logging.getLogger(__name__)


class AuditPublisher:
    """Publishes audit events via Redis pub/sub."""

    def __init__(self, client: Optional[redis.Redis] = None, channel: Optional[str] = None):
        self.redis = client or redis.from_url(
            settings.redis_url,
            socket_connect_timeout=settings.database_timeout_seconds,
            socket_timeout=settings.database_timeout_seconds,
        )
        self.channel = channel or settings.audit_channel

    def publish(self, event_type: str, user_id=None, **data) -> bool:
        """
        Publish one audit event.

        Args:
            event_type: Event name (login, logout, role_switch, ...)
            user_id: Acting principal, if known
            **data: Extra JSON-serialisable fields

        Returns:
            True if the event was handed to Redis, False otherwise
        """
        message = json.dumps(
            {
                "event": event_type,
                "userId": str(user_id) if user_id else None,
                "timestamp": utcnow().isoformat(),
                "data": data,
            },
            default=str,
        )
        try:
            self.redis.publish(self.channel, message)
            return True
        except (redis.RedisError, OSError) as e:
            logger.warning("Failed to publish audit event %s: %s", event_type, e)
            return False

    def login(self, user_id, session_id: str, method: str) -> bool:
        return self.publish("login", user_id, sessionId=session_id, method=method)

    def logout(self, user_id, session_id: str) -> bool:
        return self.publish("logout", user_id, sessionId=session_id)

    def role_switch(self, user_id, from_role: str, to_role: str, session_id: str) -> bool:
        return self.publish(
            "role_switch", user_id, fromRole=from_role, toRole=to_role, sessionId=session_id
        )


audit_publisher = AuditPublisher()
