"""FastAPI application entry-point for the Storefront Meter gateway.

Run locally with ``uvicorn gateway.main:app``.  With the default settings the
gateway uses a SQLite file under ``.storefront/`` and creates its tables on
startup; point ``GATEWAY_DATABASE_URL`` at PostgreSQL and run Alembic for
shared deployments.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from gateway import __version__
from gateway.config import GatewaySettings, PlatformEnv, load_gateway_settings
from gateway.dependencies import dispose_engine, init_engine
from gateway.middleware.auth import AuthenticationMiddleware
from gateway.middleware.logging import RequestLoggingMiddleware
from gateway.middleware.prometheus import PrometheusMiddleware
from gateway.routers import events, health, stores, usage, webhooks
from gateway.routers import metrics as metrics_router
from gateway.security import resolve_jwt_secret
from gateway.services.exceptions import StoreNotFoundError

logger = logging.getLogger(__name__)


def configure_logging(settings: GatewaySettings) -> None:
    """Route all records through :class:`JSONFormatter` when structured logging is on."""
    if not settings.structured_logging:
        return
    from gateway.middleware.json_formatter import JSONFormatter

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    logger.info("Structured JSON logging enabled")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Validate secrets, open the database, and close it again on shutdown.

    Tables are created automatically for SQLite and in the dev environment.
    Staging and production schemas are owned by Alembic.
    """
    settings: GatewaySettings = app.state.settings
    configure_logging(settings)

    # Fails fast outside dev when GATEWAY_JWT_SECRET is missing.
    resolve_jwt_secret(settings)

    engine = init_engine(settings)
    backend = engine.dialect.name
    logger.info("Metering store connected (backend=%s, env=%s)", backend, settings.platform_env.value)

    if backend == "sqlite" or settings.platform_env == PlatformEnv.DEV:
        from metering_core.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)

    try:
        yield
    finally:
        await dispose_engine()
        logger.info("Metering store disconnected")


def _register_exception_handlers(app: FastAPI) -> None:
    """Map domain and infrastructure errors to JSON responses.

    Details go to the log; clients only ever see a fixed message.
    """

    @app.exception_handler(StoreNotFoundError)
    async def store_not_found_handler(request: Request, exc: StoreNotFoundError) -> JSONResponse:
        logger.info("Store %s not found on %s", exc.store_id, request.url.path)
        return JSONResponse(status_code=404, content={"detail": "Store not found"})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("Rejected request on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
        logger.warning("Forbidden on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": "Permission denied"})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error on %s", request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})


def create_app(settings: GatewaySettings | None = None) -> FastAPI:
    """Build the gateway application for *settings* (environment by default)."""
    settings = settings or load_gateway_settings()

    app = FastAPI(
        title="Storefront Meter",
        description="Marketplace webhook ingestion and usage metering.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Starlette runs the last-added middleware first.  CORS is outermost so
    # preflight requests never reach authentication, and metrics and the
    # access log both wrap auth so that 401s are counted and logged.
    app.add_middleware(AuthenticationMiddleware, settings=settings)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Accept"],
    )

    for api_router in (health.router, events.router, usage.router, stores.router):
        app.include_router(api_router, prefix="/api/v1")

    # Unversioned: the webhook URL is registered with each storefront platform
    # and must not change, and probes/scrapers expect fixed paths.
    app.include_router(webhooks.router)
    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    _register_exception_handlers(app)
    return app


app = create_app()
