"""FastAPI application factory exposing search and health endpoints."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from mailsync.config import Settings
from mailsync.middleware.logging import RequestLoggingMiddleware
from mailsync.routes import health, search
from mailsync.search.index import ElasticIndex
from mailsync.source.gateway import MongoSource
from mailsync.sync.engine import SyncEngine

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Log API startup and shutdown.

    The gateways and the engine are owned by the worker process, not by
    the application, so nothing is opened or closed here.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings: Settings = app.state.settings
    logger.info("api_startup", host=settings.host, port=settings.port)
    try:
        yield
    finally:
        logger.info("api_shutdown")


def create_app(
    settings: Settings,
    *,
    engine: SyncEngine,
    index: ElasticIndex,
    source: MongoSource,
) -> FastAPI:
    """Factory function to create the configured FastAPI application.

    Args:
        settings: Worker configuration.
        engine: Running sync engine (read for readiness).
        index: Connected index gateway used for queries.
        source: Connected source gateway (pinged for readiness).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Email Search Sync",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/v1/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/v1/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.index = index
    app.state.source = source

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(search.router, prefix="/api/v1")

    return app
