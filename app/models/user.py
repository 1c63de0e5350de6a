import enum
import uuid

from sqlalchemy import Boolean, Column, Enum, String, Uuid
from sqlalchemy.orm import relationship

from app.database import Base, UTCDateTime, utcnow


class UserRole(str, enum.Enum):
    USER = "USER"
    INSTRUCTOR = "INSTRUCTOR"
    ADMIN = "ADMIN"


class User(Base):
    """User model for authentication and data ownership."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    # Canonical role; sessions snapshot it at creation
    role = Column(
        Enum(UserRole, name="user_role"), default=UserRole.USER, nullable=False
    )
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sessions = relationship(
        "Session", back_populates="user", cascade="all, delete-orphan"
    )
    login_tokens_created = relationship(
        "LoginToken",
        foreign_keys="LoginToken.created_by_user_id",
        back_populates="created_by_user",
    )
