"""
FastAPI application factory with the watchdog lifespan and request tracing.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from auditguard.config import Settings, get_settings
from auditguard.container import build_services
from auditguard.notifications import NotificationSink
from auditguard.routers import backups, metrics, system
from auditguard.utils.logging import ErrorLogBuffer, configure_logging, get_logger

# Configure logging at module level; the buffer feeds error-pattern recovery
error_log = ErrorLogBuffer()
configure_logging(error_buffer=error_log)
logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    notifier: Optional[NotificationSink] = None,
) -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.

    Args:
        settings: Configuration (defaults to get_settings())
        notifier: Outcome sink handed to the orchestrator
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.
        Builds the services, starts the watchdog, and tears both down.
        """
        services = build_services(settings, error_log=error_log, notifier=notifier)
        app.state.services = services

        logger.info(
            "application_startup",
            version=app.version,
            dev_mode=settings.dev_mode,
            watchdog=settings.enable_watchdog,
        )
        if settings.enable_watchdog:
            services.watchdog.start()

        yield

        await services.watchdog.stop()
        services.close()
        app.state.services = None
        logger.info("application_shutdown")

    app = FastAPI(
        title="AuditGuard API",
        description="Self-healing audit store watchdog",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Request tracing middleware
    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID and timing to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )

            return response
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "request_id": request_id,
                },
                headers={"X-Request-ID": request_id},
            )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Liveness of the API and of the live store."""
        services = getattr(request.app.state, "services", None)
        store_open = services is not None and services.storage.is_open
        return {
            "status": "healthy" if store_open else "degraded",
            "version": app.version,
            "store_open": store_open,
            "is_recovering": services.orchestrator.is_recovering if services else False,
        }

    # Include routers
    app.include_router(metrics.router, prefix="/api/v1/metrics", tags=["Metrics"])
    app.include_router(backups.router, prefix="/api/v1/backups", tags=["Backups"])
    app.include_router(system.router, prefix="/api/v1/system", tags=["System"])

    logger.info("application_configured", routers_count=3)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "auditguard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level,
    )
