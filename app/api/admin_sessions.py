"""Admin session tooling: statistics, per-user details, force logout, cleanup."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.audit import AuditPublisher
from app.services.auth.dependencies import get_audit_publisher, require_admin
from app.services.auth.session_cleanup import SessionCleanupService
from app.services.auth.session_manager import SessionContext

router = APIRouter(prefix="/admin/sessions", tags=["admin"])


def get_cleanup_service(db: Session = Depends(get_db)) -> SessionCleanupService:
    return SessionCleanupService(db)


@router.get("/stats")
async def session_stats(
    context: SessionContext = Depends(require_admin),
    cleanup: SessionCleanupService = Depends(get_cleanup_service),
):
    return cleanup.get_session_stats()


@router.get("/users/{user_id}")
async def user_session_details(
    user_id: UUID,
    context: SessionContext = Depends(require_admin),
    cleanup: SessionCleanupService = Depends(get_cleanup_service),
):
    return {"userId": str(user_id), "sessions": cleanup.get_user_session_details(user_id)}


@router.post("/users/{user_id}/expire")
async def expire_user_sessions(
    user_id: UUID,
    context: SessionContext = Depends(require_admin),
    cleanup: SessionCleanupService = Depends(get_cleanup_service),
    audit: AuditPublisher = Depends(get_audit_publisher),
):
    """Force-logout a user on every device."""
    count = cleanup.expire_user_sessions(user_id)
    audit.publish(
        "sessions_revoked", context.user_id, targetUserId=str(user_id), count=count, scope="all"
    )
    return {"expiredSessions": count}


@router.post("/cleanup")
async def run_cleanup(
    context: SessionContext = Depends(require_admin),
    cleanup: SessionCleanupService = Depends(get_cleanup_service),
):
    """Run one cleanup sweep immediately."""
    report = cleanup.run()
    return {"message": "Session cleanup completed successfully", **report.to_dict()}
