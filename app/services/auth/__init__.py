"""
Authentication service package.

- ``fingerprint``: device fingerprint from connection metadata
- ``session_manager``: create / validate / terminate sessions
- ``role_switcher``: re-authenticate under another role
- ``login_tokens`` + ``attempt_tracker``: pre-authenticated login links
- ``session_cleanup``: expiry, purge and orphan sweeps

Usage:
    from app.services.auth.dependencies import require_session, require_admin

    @router.get("/protected")
    async def protected_route(context: SessionContext = Depends(require_session)):
        ...
"""
from app.services.auth.base import AuthProvider
from app.services.auth.local_provider import local_auth_provider


def get_auth_provider() -> AuthProvider:
    """
    Factory function to get the configured auth provider.

    Currently returns LocalAuthProvider.
    """
    return local_auth_provider


__all__ = [
    "AuthProvider",
    "get_auth_provider",
    "local_auth_provider",
]
