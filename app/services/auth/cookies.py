"""Session cookie handling. The ``session_id`` cookie is the only handle trusted."""
from fastapi import Response

from app.config import settings
from app.models.session import Session


def _cookie_options() -> dict:
    return {
        "max_age": settings.session_max_age,
        "httponly": True,
        "samesite": "lax",
        "secure": settings.session_cookie_secure or settings.is_production,
        "path": "/",
    }


def set_session_cookies(response: Response, session: Session) -> None:
    """Set session_id, user_id and user_role cookies for a committed session."""
    options = _cookie_options()
    response.set_cookie(key=settings.session_cookie_name, value=session.id, **options)
    response.set_cookie(key=settings.user_id_cookie_name, value=str(session.user_id), **options)
    response.set_cookie(
        key=settings.user_role_cookie_name, value=session.user_role.value, **options
    )


def clear_session_cookies(response: Response) -> None:
    for name in (
        settings.session_cookie_name,
        settings.user_id_cookie_name,
        settings.user_role_cookie_name,
    ):
        response.delete_cookie(name, path="/")
