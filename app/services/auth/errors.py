"""
Error taxonomy for the session and login-token services.

Services raise these; the HTTP layer maps them to responses in exactly one
place (the exception handler in ``app.main``). Every error carries a
machine-readable ``kind`` so callers can tell "try again" from "get a new
link" without parsing messages.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    UNAUTHENTICATED = "Unauthenticated"
    INSUFFICIENT_PRIVILEGE = "InsufficientPrivilege"
    TOKEN_NOT_FOUND = "TokenNotFound"
    TOKEN_INACTIVE = "TokenInactive"
    TOKEN_EXPIRED = "TokenExpired"
    TOKEN_EXHAUSTED = "TokenExhausted"
    VALIDATION_ERROR = "ValidationError"
    STORE_UNAVAILABLE = "StoreUnavailable"


class InvalidReason(str, enum.Enum):
    """Why a session failed validation."""

    MISSING = "Missing"
    NOT_FOUND = "NotFound"
    EXPIRED = "Expired"
    INACTIVE = "Inactive"
    INSUFFICIENT_ROLE = "InsufficientRole"


class AuthError(Exception):
    kind: ErrorKind = ErrorKind.UNAUTHENTICATED
    status_code: int = 500
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        self.message = message or self.default_message
        self.reason = reason
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"detail": self.message, "error": self.kind.value}
        if self.reason:
            body["reason"] = self.reason
        return body


class Unauthenticated(AuthError):
    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401
    default_message = "Not authenticated"


class InsufficientPrivilege(AuthError):
    kind = ErrorKind.INSUFFICIENT_PRIVILEGE
    status_code = 403
    default_message = "Insufficient privilege"


class TokenError(AuthError):
    """Base for the ordered token-invalidity reasons."""


class TokenNotFound(TokenError):
    kind = ErrorKind.TOKEN_NOT_FOUND
    status_code = 404
    default_message = "Invalid token"


class TokenInactive(TokenError):
    kind = ErrorKind.TOKEN_INACTIVE
    status_code = 403
    default_message = "Token is inactive"


class TokenExpired(TokenError):
    kind = ErrorKind.TOKEN_EXPIRED
    status_code = 403
    default_message = "Token has expired"


class TokenExhausted(TokenError):
    kind = ErrorKind.TOKEN_EXHAUSTED
    status_code = 403
    default_message = "Token usage limit reached"


class InvalidRequest(AuthError):
    kind = ErrorKind.VALIDATION_ERROR
    status_code = 400
    default_message = "Invalid request"


class StoreUnavailable(AuthError):
    """Datastore unreachable or timed out. Always fails closed."""

    kind = ErrorKind.STORE_UNAVAILABLE
    status_code = 503
    default_message = "Authentication store unavailable"
