from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
startup/shutdown of shared resources) to improve testability.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from authgate.api.routes import auth_router, health_router
from authgate.core.config import settings
from authgate.core.exception_handlers import setup_exception_handlers
from authgate.core.logging import configure_logging
from authgate.core.middleware import request_id_middleware
from authgate.core.openapi import apply_openapi_customizations
from authgate.core.rate_limit import set_rate_limiter
from authgate.db.session import create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create missing tables on startup; stop rate limiter workers on shutdown."""
    if settings.database.auto_create:
        create_tables()
        logger.info("database.tables_ready")
    try:
        yield
    finally:
        set_rate_limiter(None)
        logger.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Authgate",
        description=(
            "Session and credential service: registration, cookie sessions, "
            "email verification and password recovery, protected by per-scope "
            "rate limiting."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(health_router)

    # OpenAPI customizations (cookie security scheme, tags)
    apply_openapi_customizations(app)

    return app
