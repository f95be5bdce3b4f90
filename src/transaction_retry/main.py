"""
FastAPI application entry point for the transaction retry metrics API.
"""

from typing import Optional

import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from transaction_retry.api.dependencies import get_services, get_settings
from transaction_retry.api.error_handlers import EXCEPTION_HANDLERS
from transaction_retry.api.middleware import RequestContextMiddleware
from transaction_retry.api.routes import health_router, router
from transaction_retry.config import Settings, settings as default_settings
from transaction_retry.logging_config import configure_logging
from transaction_retry.services import TransactionRetryServices, build_services

# Configure structured logging before any other imports
configure_logging(
    default_settings.LOG_LEVEL,
    default_settings.ENVIRONMENT,
    sql_echo=default_settings.DEBUG,
)
logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[TransactionRetryServices] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to the global settings)
        services: Pre-built service graph (built from ``settings`` when omitted)

    Returns:
        Configured FastAPI app; ``app.state.services`` holds the service graph
    """
    settings = settings or (services.settings if services else get_settings())
    if services is None:
        services = get_services() if settings is get_settings() else build_services(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Retry events, slow transactions and query exceptions of a SQLAlchemy application",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_services] = lambda: services

    # Request context middleware (binds request_id and caller attribution)
    app.add_middleware(RequestContextMiddleware)

    for exc_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exc_class, handler)

    app.include_router(health_router, tags=["health"])
    if settings.API_ENABLED:
        app.include_router(router, prefix=settings.API_PREFIX, tags=["events"])

    @app.on_event("startup")
    async def startup():
        """Application startup - report configuration and store reachability."""
        logger.info(
            "Application startup",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            connection=settings.CONNECTION_NAME,
            retries_enabled=services.toggle.is_enabled(),
            slow_transactions=settings.SLOW_TRANSACTIONS_ENABLED,
        )
        if not services.repository.ping():
            logger.error("Observability store unreachable, run `db-transaction-retry install`")
        logger.info("Application startup complete")

    @app.on_event("shutdown")
    async def shutdown():
        """Application shutdown - detach the monitor and dispose engines."""
        logger.info("Application shutdown")
        services.close()
        logger.info("Application shutdown complete")

    # Prometheus metrics instrumentation
    if settings.PROMETHEUS_ENABLED:
        Instrumentator().instrument(app).expose(app)

    @app.get("/")
    async def root():
        """Root endpoint with API documentation links."""
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
            "events": f"{settings.API_PREFIX}/events" if settings.API_ENABLED else None,
            "metrics": "/metrics" if settings.PROMETHEUS_ENABLED else None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "transaction_retry.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,  # Only for development
    )
