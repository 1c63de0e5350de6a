import logging
from urllib.parse import urlparse

from fastapi import FastAPI, Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from app.api import admin_sessions, auth, login_tokens
from app.services.auth.errors import AuthError, ErrorKind, StoreUnavailable

logger = logging.getLogger(__name__)

app = FastAPI(title="Dance Booking Auth", version="0.1.0")


# =============================================================================
# CSRF Origin Validation Middleware
# =============================================================================


class CSRFOriginMiddleware(BaseHTTPMiddleware):
    """
    Validate Origin/Referer headers on state-changing requests to prevent CSRF.

    - POST, PUT, PATCH, DELETE must include a matching Origin or Referer header
    - GET, HEAD, OPTIONS are always allowed (safe methods)
    - Health check endpoints are exempt
    """

    SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
    EXEMPT_PATHS = {"/health"}

    async def dispatch(self, request: Request, call_next):
        if request.method in self.SAFE_METHODS:
            return await call_next(request)

        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        expected_host = request.headers.get("host", "")

        # Origin first, Referer as fallback
        source = request.headers.get("origin") or request.headers.get("referer")
        if not source:
            logger.warning(
                "CSRF missing origin/referer: method=%s, path=%s",
                request.method,
                request.url.path,
            )
            return self._reject()

        if urlparse(source).netloc != expected_host:
            logger.warning(
                "CSRF origin mismatch: source=%s, expected=%s, path=%s",
                source,
                expected_host,
                request.url.path,
            )
            return self._reject()

        return await call_next(request)

    @staticmethod
    def _reject() -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": "Origin validation failed"},
        )


app.add_middleware(CSRFOriginMiddleware)


# =============================================================================
# Error mapping
# =============================================================================


def _wants_html(request: Request) -> bool:
    """Browser navigation (not API/AJAX/htmx)."""
    accept = request.headers.get("accept", "")
    is_htmx = request.headers.get("hx-request") == "true"
    return "text/html" in accept and not is_htmx


def _login_redirect(request: Request) -> RedirectResponse:
    return_url = str(request.url.path)
    if request.url.query:
        return_url += f"?{request.url.query}"
    return RedirectResponse(
        url=f"/auth/login?next={return_url}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """
    Map the auth error taxonomy to HTTP responses.

    Unauthenticated browser requests are redirected to the login page;
    everything else gets JSON with the error kind and, where known, reason.
    """
    if exc.status_code == status.HTTP_401_UNAUTHORIZED and _wants_html(request):
        return _login_redirect(request)

    body = exc.to_dict()
    if exc.kind in (
        ErrorKind.TOKEN_NOT_FOUND,
        ErrorKind.TOKEN_INACTIVE,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.TOKEN_EXHAUSTED,
    ):
        body["valid"] = False
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    """Any datastore failure that escaped a service still fails closed."""
    logger.error("Unhandled datastore error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=StoreUnavailable.status_code, content=StoreUnavailable().to_dict()
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request data",
            "error": ErrorKind.VALIDATION_ERROR.value,
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code == status.HTTP_401_UNAUTHORIZED and _wants_html(request):
        return _login_redirect(request)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Include routers
app.include_router(auth.router)
app.include_router(login_tokens.router)
app.include_router(admin_sessions.router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
