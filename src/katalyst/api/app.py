"""Katalyst API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- Signed cookie sessions (Starlette ``SessionMiddleware``, 24 hour lifetime)
- CORS middleware (configurable origins)
- Error envelope handlers and a catch-all 500 middleware
- Security headers on every response
- Lifespan handler for startup/shutdown of the DB pool and HTTP client
- Health endpoint at GET /api/health
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from katalyst import __version__
from katalyst.api.deps import (
    get_database,
    get_settings,
    init_dependencies,
    set_settings,
    shutdown_dependencies,
)
from katalyst.api.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    register_error_handlers,
)
from katalyst.api.models import HealthResponse
from katalyst.api.routers.auth import router as auth_router
from katalyst.api.routers.calendar import router as calendar_router
from katalyst.api.routers.meetings import router as meetings_router
from katalyst.config import SESSION_MAX_AGE_SECONDS, Settings
from katalyst.db import Database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle for the DB pool and shared HTTP client."""
    await init_dependencies(get_settings())
    logger.info("Katalyst API started")

    yield

    await shutdown_dependencies()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    settings:
        Application settings. Loaded from the environment when omitted;
        production refuses to start with required variables missing.
    """
    if settings is None:
        settings = Settings.load()
    set_settings(settings)

    app = FastAPI(
        title="Katalyst Calendar API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    # Middleware added last runs first: security headers wrap everything.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        max_age=SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=settings.is_production,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(auth_router)
    app.include_router(calendar_router)
    app.include_router(meetings_router)

    @app.get("/api/health")
    async def health(database: Database | None = Depends(get_database)) -> HealthResponse:
        return HealthResponse(database=database is not None)

    return app
