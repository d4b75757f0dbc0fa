"""
FastAPI Application Factory

Creates and configures the API application: webhook intake, health,
sync status and Prometheus metrics.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
import structlog

from src.config import get_settings
from src.config.logging import configure_logging
from src.database.connection import close_database, init_database
from src.serving.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from src.serving.api.routes import health_router, sync_router, webhooks_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and open the database pool for the app's lifetime"""
    settings = get_settings()
    configure_logging()

    logger.info("Starting POS Sales Analytics API", environment=settings.app_env)
    await init_database()

    yield

    logger.info("Shutting down...")
    await close_database()


def create_api_app(with_lifespan: bool = True) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        with_lifespan: Attach startup/shutdown hooks (database pool, logging)

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="POS Sales Analytics API",
        description="POS webhook intake and replica sync status",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(sync_router, prefix="/api/v1/sync", tags=["Sync"])
    app.include_router(webhooks_router, prefix="/api/webhooks", tags=["Webhooks"])

    if settings.monitoring.enable_metrics:
        app.mount("/metrics", make_asgi_app())

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
