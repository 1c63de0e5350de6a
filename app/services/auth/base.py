"""Abstract base class for authentication providers."""
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.orm import Session as DBSession

from app.models.user import User, UserRole


class AuthProvider(ABC):
    """
    Abstract credential check interface.

    Sessions are owned by SessionManager; a provider only answers "who is
    this?" so that local passwords can later be swapped for an external
    identity provider without touching session handling.
    """

    @abstractmethod
    async def authenticate(self, db: DBSession, email: str, password: str) -> Optional[User]:
        """
        Authenticate user with email and password.

        Returns User if credentials are valid, None otherwise.
        """
        pass

    @abstractmethod
    async def get_user_by_email(self, db: DBSession, email: str) -> Optional[User]:
        """Look up a user by email (case-insensitive). Returns None if absent."""
        pass

    @abstractmethod
    async def create_user(
        self,
        db: DBSession,
        email: str,
        password: str,
        role: UserRole = UserRole.USER,
        full_name: Optional[str] = None,
    ) -> User:
        """
        Create a new user with the given credentials.

        Returns the created User.
        """
        pass
