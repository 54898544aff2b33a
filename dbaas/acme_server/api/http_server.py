"""
FastAPI application factory for Acme Server.

This module creates the HTTP host with:
- Storage bootstrap in the lifespan hook (schema initialized once per store per process)
- CORS configuration
- Entity CRUD routes and read-only admin routes
- Mapping of storage errors to HTTP statuses

Invariants:
    - No request is served before bootstrap() has initialized the schema
    - Bootstrap runs at most once per application instance
    - Error bodies are {"error", "error_code", "details"}

How to change safely:
    - Keep routes thin; behavior belongs in the storage core
    - Add new error types to ERROR_STATUS
"""

import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import ServerConfig
from ..context import AppContext, bootstrap
from ..errors import (
    AcmeError,
    ConflictError,
    ConnectionError,
    NotFoundError,
    SchemaError,
    StorageError,
    ValidationError,
)
from ..schema.types import EntityDescriptor
from .routes import admin_router, router
from .settings import HttpSettings

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[AcmeError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    ConnectionError: 503,
    SchemaError: 500,
    StorageError: 500,
}


def status_for(error: AcmeError) -> int:
    """HTTP status for a storage error (most specific class wins)."""
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(
    config: ServerConfig | None = None,
    descriptors: Iterable[EntityDescriptor] | None = None,
    context: AppContext | None = None,
    settings: HttpSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (loaded from env at startup if omitted)
        descriptors: Entities to serve (built-in bookings if omitted)
        context: Already bootstrapped context; skips bootstrap when given
        settings: HTTP host settings (loaded from env if omitted)

    Returns:
        FastAPI application
    """
    settings = settings or HttpSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Bootstrap the storage core before serving."""
        app.state.context = context or bootstrap(config, descriptors)
        yield

    app = FastAPI(
        title="Acme Server",
        description="Audited CRUD over registered entities, backed by SQLite.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(AcmeError)
    async def acme_error_handler(request: Request, exc: AcmeError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(exc.to_dict(), status_code=status)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"HTTP handler error: {exc}", exc_info=True)
        ctx = getattr(request.app.state, "context", None)
        debug = ctx is not None and ctx.config.debug
        return JSONResponse(
            {
                "error": str(exc) if debug else "Internal server error",
                "error_code": "INTERNAL",
                "details": {},
            },
            status_code=500,
        )

    app.include_router(router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        ctx: AppContext = request.app.state.context
        healthy = ctx.provider.ping()
        return JSONResponse(
            {
                "status": "healthy" if healthy else "unavailable",
                "service": "acme-server",
                "fingerprint": ctx.fingerprint,
            },
            status_code=200 if healthy else 503,
        )

    return app
