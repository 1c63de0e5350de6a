"""
Database models for the dance booking auth service.

Import all models here so Alembic can detect them for migrations.
"""

from app.database import Base
from app.models.user import User, UserRole
from app.models.session import Session
from app.models.login_token import LoginToken
from app.models.login_attempt import LoginAttempt

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Session",
    "LoginToken",
    "LoginAttempt",
]
