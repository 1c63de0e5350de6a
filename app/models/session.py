"""Session model for device-bound, role-stamped login sessions."""

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import relationship

from app.database import Base, UTCDateTime, utcnow
from app.models.user import UserRole


class Session(Base):
    """
    One login of one principal, under one role, on one device.

    A session is only valid while ``is_active`` is set *and* ``expires_at``
    lies in the future; neither flag alone is authoritative.
    """

    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_role = Column(Enum(UserRole, name="user_role"), nullable=False)
    device_id = Column(String(64), nullable=False, index=True)
    device_info = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    last_accessed_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="sessions")

    __table_args__ = (Index("ix_sessions_active_expires", "is_active", "expires_at"),)

    def is_valid(self, now) -> bool:
        return bool(self.is_active) and self.expires_at > now
