"""Login token model for pre-authenticated, limited-use login links."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.database import Base, UTCDateTime, utcnow


class LoginToken(Base):
    """
    Capability string granting one or more logins under constrained conditions.

    ``max_uses`` and ``expires_at`` are optional; ``None`` means unlimited
    and never expiring respectively.
    """

    __tablename__ = "login_tokens"

    id = Column(Integer, primary_key=True)
    token = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    purpose = Column(String(64), nullable=True, index=True)
    created_by_user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    expires_at = Column(UTCDateTime, nullable=True)
    allowed_roles = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    metadata_json = Column("metadata", Text, nullable=True)
    last_used_at = Column(UTCDateTime, nullable=True)
    last_used_ip = Column(String(45), nullable=True)
    last_user_agent = Column(String(512), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    created_by_user = relationship(
        "User", foreign_keys=[created_by_user_id], back_populates="login_tokens_created"
    )
    login_attempts = relationship(
        "LoginAttempt",
        back_populates="login_token",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "max_uses IS NULL OR used_count <= max_uses",
            name="ck_login_tokens_used_within_max",
        ),
    )
