"""Local password-based authentication provider."""
from typing import Optional

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from app.models.user import User, UserRole
from app.services.auth.base import AuthProvider
from app.services.auth.errors import StoreUnavailable


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


class LocalAuthProvider(AuthProvider):
    """Local authentication provider using bcrypt password hashes."""

    async def authenticate(self, db: DBSession, email: str, password: str) -> Optional[User]:
        """Authenticate user with email and password."""
        user = await self.get_user_by_email(db, email)
        if not user or not user.password_hash:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    async def get_user_by_email(self, db: DBSession, email: str) -> Optional[User]:
        try:
            return db.scalar(select(User).where(User.email == email.lower()))
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable() from e

    async def create_user(
        self,
        db: DBSession,
        email: str,
        password: str,
        role: UserRole = UserRole.USER,
        full_name: Optional[str] = None,
    ) -> User:
        """Create a new user with hashed password."""
        user = User(
            email=email.lower(),
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
            is_verified=True,
        )
        try:
            db.add(user)
            db.commit()
            db.refresh(user)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable() from e
        return user


# Singleton instance
local_auth_provider = LocalAuthProvider()
