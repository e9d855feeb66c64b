"""
Module: main.py
Description: FastAPI application entry point for the event delivery service.

Builds the application with its routes and error handlers. The delivery
manager is created in the application lifespan, stored on app.state and
stopped (retry sweep cancelled, in-flight deliveries drained) on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from event_delivery.broker.sqs import BrokerPublisher
from event_delivery.config.settings import Settings, settings as default_settings
from event_delivery.delivery.manager import build_delivery_manager
from event_delivery.handlers.delivery import router as delivery_router
from event_delivery.handlers.events import router as events_router
from event_delivery.tenants.directory import InMemoryTenantDirectory, TenantDirectory
from event_delivery.utils.logger import configure_logging, get_logger
from event_delivery.utils.metrics import MetricsClient

logger = get_logger(__name__)


def _error_body(code: int, message, error_type: str) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "type": error_type
        }
    }


def create_app(
    settings: Optional[Settings] = None,
    tenants: Optional[TenantDirectory] = None,
    broker: Optional[BrokerPublisher] = None,
    metrics: Optional[MetricsClient] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to environment settings)
        tenants: Tenant directory (defaults to the static one from settings)
        broker: Broker publisher (defaults to SQS from settings)
        metrics: Metrics client (defaults to CloudWatch when enabled)

    Returns:
        Configured FastAPI application
    """
    settings = settings or default_settings
    configure_logging(settings.log_level)

    if tenants is None:
        tenants = InMemoryTenantDirectory(
            webhooks=settings.tenant_webhooks,
            names=settings.tenant_names
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_metrics = metrics
        if app_metrics is None and settings.metrics_enabled:
            app_metrics = MetricsClient(
                namespace=settings.metrics_namespace,
                region_name=settings.aws_region,
                endpoint_url=settings.aws_endpoint_url
            )

        manager = build_delivery_manager(settings, tenants, broker=broker, metrics=app_metrics)
        await manager.start()
        app.state.delivery_manager = manager

        logger.info(
            "Starting event delivery service",
            version=settings.app_version,
            stage=settings.stage
        )
        try:
            yield
        finally:
            logger.info("Shutting down event delivery service")
            await manager.stop()
            app.state.delivery_manager = None

    app = FastAPI(
        title=settings.app_name,
        description="Multi-channel event delivery for the messaging gateway",
        version=settings.app_version,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.tenants = tenants
    app.state.delivery_manager = None

    app.include_router(events_router)
    app.include_router(delivery_router)

    @app.get("/health")
    async def health_check():
        """Report service health and delivery manager state."""
        manager = app.state.delivery_manager
        return {
            "status": "ok" if manager is not None and manager.running else "degraded",
            "version": settings.app_version,
            "environment": settings.stage
        }

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Log HTTP exceptions and return structured error responses."""
        logger.warning(
            "HTTP exception occurred",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, exc.detail, "http_exception")
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Return request validation failures as 400 errors."""
        logger.warning(
            "Request validation failed",
            path=request.url.path,
            errors=len(exc.errors())
        )
        return JSONResponse(
            status_code=400,
            content=_error_body(400, "Invalid request", "validation_error")
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Log unexpected exceptions and return a generic error response."""
        logger.error(
            "Unhandled exception occurred",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(500, "Internal server error", "internal_error")
        )

    return app


app = create_app()
