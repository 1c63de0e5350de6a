"""
Login token issuance and validation.

A login token is a capability: whoever holds the string may attempt a
pre-authenticated login, subject to the token's role set, expiry and usage
cap. Validation is a pure read; only a successful redemption mutates the
token, and it does so with a single conditional UPDATE so that concurrent
redemptions can never push ``used_count`` past ``max_uses``.
"""

import json
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session as DBSession

from app.config import settings
from app.database import utcnow
from app.models.login_attempt import LoginAttempt
from app.models.login_token import LoginToken
from app.models.user import UserRole
from app.services.auth.attempt_tracker import AttemptTracker
from app.services.auth.errors import (
    InvalidRequest,
    TokenError,
    TokenExhausted,
    TokenExpired,
    TokenInactive,
    TokenNotFound,
)
from app.services.auth.fingerprint import ConnectionMetadata, fingerprint
from app.services.auth.session_repository import store_call

logger = logging.getLogger(__name__)

ALL_ROLES = [role.value for role in UserRole]


def generate_login_token() -> str:
    """Generate a high-entropy, URL-safe token string (43 chars)."""
    return secrets.token_urlsafe(32)


def build_login_url(token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/auth/login/{token}"


def redeemability_error(login_token: LoginToken, now: datetime) -> Optional[TokenError]:
    """
    First reason ``login_token`` cannot be redeemed, or None.

    Checked in order: inactive, expired, exhausted. Expiry wins over
    exhaustion so a caller learns the link itself is dead.
    """
    if not login_token.is_active:
        return TokenInactive()
    if login_token.expires_at is not None and login_token.expires_at <= now:
        return TokenExpired()
    if login_token.max_uses is not None and login_token.used_count >= login_token.max_uses:
        return TokenExhausted()
    return None


def decode_metadata(login_token: LoginToken) -> Optional[Any]:
    if not login_token.metadata_json:
        return None
    try:
        return json.loads(login_token.metadata_json)
    except ValueError:
        logger.warning("Login token %s has unreadable metadata", login_token.id)
        return None


def serialize_token(login_token: LoginToken) -> Dict[str, Any]:
    """Public view of a token, as returned by validation and issuance."""
    return {
        "id": login_token.id,
        "name": login_token.name,
        "purpose": login_token.purpose,
        "allowedRoles": list(login_token.allowed_roles or []),
        "usedCount": login_token.used_count,
        "maxUses": login_token.max_uses,
        "expiresAt": login_token.expires_at.isoformat() if login_token.expires_at else None,
        "metadata": decode_metadata(login_token),
        "createdBy": (
            login_token.created_by_user.full_name or login_token.created_by_user.email
            if login_token.created_by_user
            else "System"
        ),
    }


@dataclass
class TokenPage:
    tokens: List[Dict[str, Any]]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class LoginTokenService:
    """Issues, validates and redeems login tokens."""

    def __init__(self, db: DBSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.attempts = AttemptTracker(db)

    # -------------------------------------------------------------------------
    # Issuance (admin only; enforced by the caller's session check)
    # -------------------------------------------------------------------------

    @store_call
    def issue_token(
        self,
        issuing_admin_id: Optional[UUID],
        name: Optional[str] = None,
        purpose: Optional[str] = None,
        max_uses: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        allowed_roles: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LoginToken:
        """
        Persist a new redeemable token.

        Args:
            issuing_admin_id: Admin creating the token (None when issued from the CLI)
            name: Display name
            purpose: Free-form purpose tag (defaults to "general")
            max_uses: Usage cap; None for unlimited
            expires_at: Expiry; None for never
            allowed_roles: Roles a redeemer may assume; defaults to all roles
            metadata: Opaque JSON-serialisable data (e.g. a pre-filled email)

        Returns:
            Created LoginToken with used_count=0 and is_active=True
        """
        if max_uses is not None and max_uses < 1:
            raise InvalidRequest("maxUses must be a positive integer")

        roles = list(dict.fromkeys(allowed_roles)) if allowed_roles is not None else list(ALL_ROLES)
        if not roles:
            raise InvalidRequest("allowedRoles must not be empty")
        unknown = [role for role in roles if role not in ALL_ROLES]
        if unknown:
            raise InvalidRequest(f"Unknown roles: {', '.join(unknown)}")

        login_token = LoginToken(
            token=generate_login_token(),
            name=name,
            purpose=purpose or settings.login_token_default_purpose,
            created_by_user_id=issuing_admin_id,
            max_uses=max_uses,
            used_count=0,
            expires_at=expires_at,
            allowed_roles=roles,
            is_active=True,
            metadata_json=json.dumps(metadata) if metadata is not None else None,
            created_at=self.clock(),
        )
        self.db.add(login_token)
        self.db.commit()
        self.db.refresh(login_token)

        logger.info(
            "Login token %s issued by %s (purpose=%s, max_uses=%s)",
            login_token.id,
            issuing_admin_id,
            login_token.purpose,
            max_uses,
        )
        return login_token

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @store_call
    def get_by_token(self, token: str) -> Optional[LoginToken]:
        return self.db.scalar(
            select(LoginToken)
            .where(LoginToken.token == token)
            .execution_options(populate_existing=True)
        )

    def check_redeemable(self, token: str) -> LoginToken:
        """
        Return the token if it can be redeemed right now. Never mutates.

        Raises:
            TokenNotFound, TokenInactive, TokenExpired, TokenExhausted
        """
        login_token = self.get_by_token(token) if token else None
        if login_token is None:
            raise TokenNotFound()
        error = redeemability_error(login_token, self.clock())
        if error is not None:
            raise error
        return login_token

    # -------------------------------------------------------------------------
    # Attempts
    # -------------------------------------------------------------------------

    def record_attempt(
        self,
        token: str,
        email: Optional[str],
        success: bool,
        failure_reason: Optional[str],
        metadata: ConnectionMetadata,
        commit: bool = True,
    ) -> LoginAttempt:
        """
        Append a LoginAttempt and, on success, consume one use of the token.

        The usage increment is a conditional UPDATE re-checking activity,
        expiry and the cap in the same statement. If it matches no row the
        redemption lost a race (or the token became unusable); the attempt
        is then stored as a failure and the matching token error is raised.

        Args:
            commit: Commit on success; pass False to join a larger unit of
                work (the failure path always commits its attempt row)
        """
        login_token = self.get_by_token(token) if token else None
        if login_token is None:
            raise TokenNotFound()

        now = self.clock()

        if success and not self._consume_use(login_token, metadata, now):
            self._refresh(login_token)
            error = redeemability_error(login_token, now) or TokenExhausted()
            self.attempts.append(login_token.id, email, False, error.kind.value, metadata, now)
            self._commit()
            logger.warning(
                "Redemption of login token %s rejected at increment: %s",
                login_token.id,
                error.kind.value,
            )
            raise error

        attempt = self.attempts.append(
            login_token.id, email, success, failure_reason, metadata, now
        )
        if commit:
            self._commit()
        return attempt

    @store_call
    def _consume_use(
        self, login_token: LoginToken, metadata: ConnectionMetadata, now: datetime
    ) -> bool:
        device = fingerprint(metadata)
        result = self.db.execute(
            update(LoginToken)
            .where(
                LoginToken.id == login_token.id,
                LoginToken.is_active.is_(True),
                or_(LoginToken.expires_at.is_(None), LoginToken.expires_at > now),
                or_(
                    LoginToken.max_uses.is_(None),
                    LoginToken.used_count < LoginToken.max_uses,
                ),
            )
            .values(
                used_count=LoginToken.used_count + 1,
                last_used_at=now,
                last_used_ip=device.ip_address,
                last_user_agent=device.user_agent[:512] or None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @store_call
    def _commit(self) -> None:
        self.db.commit()

    @store_call
    def _refresh(self, login_token: LoginToken) -> None:
        self.db.refresh(login_token)

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    @store_call
    def list_tokens(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        purpose: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> TokenPage:
        """Paginated token listing with per-token attempt statistics."""
        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        filters = []
        if search:
            pattern = f"%{search}%"
            filters.append(
                or_(
                    LoginToken.name.ilike(pattern),
                    LoginToken.purpose.ilike(pattern),
                    LoginToken.token.ilike(pattern),
                )
            )
        if purpose:
            filters.append(LoginToken.purpose == purpose)
        if is_active is not None:
            filters.append(LoginToken.is_active.is_(is_active))

        total = self.db.scalar(select(func.count(LoginToken.id)).where(*filters))
        tokens = list(
            self.db.scalars(
                select(LoginToken)
                .where(*filters)
                .order_by(LoginToken.created_at.desc(), LoginToken.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        )

        stats = self.attempts.stats_for_tokens([t.id for t in tokens], self.clock())
        rows = []
        for login_token in tokens:
            row = serialize_token(login_token)
            row.update(
                {
                    "token": login_token.token,
                    "isActive": login_token.is_active,
                    "createdAt": login_token.created_at.isoformat(),
                    "lastUsedAt": (
                        login_token.last_used_at.isoformat()
                        if login_token.last_used_at
                        else None
                    ),
                    "lastUsedIp": login_token.last_used_ip,
                    "stats": stats[login_token.id],
                    "loginUrl": build_login_url(login_token.token),
                }
            )
            rows.append(row)

        return TokenPage(tokens=rows, page=page, limit=limit, total=total)

    @store_call
    def set_active(self, token_id: int, is_active: bool) -> LoginToken:
        login_token = self.db.get(LoginToken, token_id)
        if login_token is None:
            raise TokenNotFound()
        login_token.is_active = is_active
        login_token.updated_at = self.clock()
        self.db.commit()
        return login_token

    @store_call
    def delete_token(self, token_id: int) -> None:
        """Delete a token together with all of its attempts."""
        login_token = self.db.get(LoginToken, token_id)
        if login_token is None:
            raise TokenNotFound()
        self.db.delete(login_token)
        self.db.commit()
        logger.info("Login token %s deleted", token_id)

