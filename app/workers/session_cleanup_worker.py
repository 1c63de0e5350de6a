"""
Dramatiq actor running the recurring session cleanup sweep.

Each run re-enqueues itself with a delay of
``settings.session_cleanup_interval_minutes``, whether the sweep succeeded
or not, so a datastore outage delays the schedule but never ends it. The
chain is its own retry: dramatiq retries are disabled so a failed run does
not fork a second chain.

Start the cycle once per deployment with ``dance-auth schedule-cleanup``
(or ``cleanup_sessions.send()``).
"""
import logging

import dramatiq

# Import broker setup (must be before actor definitions)
from app.workers import broker  # noqa: F401
from app.config import settings
from app.database import SessionLocal
from app.services.auth.session_cleanup import SessionCleanupService

logger = logging.getLogger(__name__)


@dramatiq.actor(max_retries=0)
def cleanup_sessions(reschedule: bool = True) -> dict:
    """
    Expire, purge and orphan-sweep sessions.

    Args:
        reschedule: Enqueue the next run after this one finishes

    Returns:
        Cleanup report as a dict (expired, purged, orphaned, total)
    """
    db = SessionLocal()
    try:
        report = SessionCleanupService(db).run()
    except Exception as e:
        logger.error("Session cleanup sweep failed: %s", e)
        raise
    finally:
        db.close()
        if reschedule:
            schedule_next_cleanup()

    return report.to_dict()


def schedule_next_cleanup() -> None:
    delay_ms = settings.session_cleanup_interval_minutes * 60 * 1000
    cleanup_sessions.send_with_options(kwargs={"reschedule": True}, delay=delay_ms)
    logger.info("Next session cleanup scheduled in %d minutes",
                settings.session_cleanup_interval_minutes)
