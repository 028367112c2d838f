"""API middleware: error envelope, security headers and request logging.

Registers FastAPI exception handlers that convert domain exceptions into
standardised ``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``UnauthorizedError`` → 401 Unauthorized
- ``ValueError`` → 400 Bad Request
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from katalyst.api.models import ErrorDetail, ErrorResponse
from katalyst.core.logging import log_api_error, log_api_request, log_security_event

logger = logging.getLogger(__name__)

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "origin-when-cross-origin",
    "X-XSS-Protection": "1; mode=block",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "script-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https://*.googleusercontent.com; "
        "connect-src 'self' https://www.googleapis.com https://oauth2.googleapis.com; "
        "frame-ancestors 'none'"
    ),
}


class UnauthorizedError(Exception):
    """Raised when a request needs a signed-in user and has none."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)
        self.message = message


async def _handle_unauthorized(
    request: Request,
    exc: UnauthorizedError,
) -> JSONResponse:
    """Return 401 when the session is missing or expired."""
    log_security_event(
        "unauthorized_access",
        {"method": request.method, "path": request.url.path},
    )
    body = ErrorResponse(error=ErrorDetail(code="UNAUTHORIZED", message=exc.message))
    return JSONResponse(status_code=401, content=body.model_dump(exclude_none=True))


async def _handle_value_error(
    request: Request,
    exc: ValueError,
) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    body = ErrorResponse(
        error=ErrorDetail(
            code="VALIDATION_ERROR",
            message=str(exc),
        )
    )
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    This sits above the Starlette exception handler layer, ensuring that
    even exceptions not caught by ``add_exception_handler`` are converted
    to the standard error envelope rather than bubbling up as raw 500s.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            log_api_error(request.method, request.url.path, exc)
            body = ErrorResponse(
                error=ErrorDetail(
                    code="INTERNAL_ERROR",
                    message="Internal server error",
                )
            )
            return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add the fixed browser-hardening headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each API request with its duration and the session user, if any."""

    async def dispatch(self, request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        if request.url.path.startswith("/api/"):
            session = request.scope.get("session") or {}
            user = session.get("user") if isinstance(session, dict) else None
            user_id = user.get("email") if isinstance(user, dict) else None
            log_api_request(
                request.method,
                request.url.path,
                user_id=user_id,
                duration_ms=(time.monotonic() - started) * 1000,
            )
        return response


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.

    Domain-specific exceptions are registered via ``add_exception_handler``.
    The generic catch-all is an ASGI middleware that wraps the entire app
    to intercept any unhandled exception before Starlette's default
    ``ServerErrorMiddleware`` can convert it to a plain-text 500.
    """
    app.add_exception_handler(UnauthorizedError, _handle_unauthorized)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
