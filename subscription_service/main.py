"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from subscription_service.config import get_config
from subscription_service.logging_config import configure_logging, get_logger
from subscription_service.middleware import ContextMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Starts the notification dispatcher and closes collaborator clients on shutdown.
    """
    from subscription_service.services.billing_notifier import get_billing_notifier
    from subscription_service.services.customer_client import get_customer_client
    from subscription_service.services.notification_dispatcher import get_notification_dispatcher
    from subscription_service.services.payment_gateway import get_payment_gateway

    logger.info("service_starting", version=VERSION)

    config = get_config()
    dispatcher = get_notification_dispatcher()
    if config.notifications.enabled:
        dispatcher.start()
    else:
        logger.info("invoice_notifications_disabled")

    try:
        logger.info(
            "service_started",
            status="ready",
            payment_gateway=config.payment_gateway.provider,
        )
        yield
    finally:
        logger.info("service_shutting_down")
        await dispatcher.stop()
        await get_billing_notifier().close()
        await get_customer_client().close()
        await get_payment_gateway().close()
        logger.info("service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    config = get_config()

    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_FORMAT", "json").lower() == "json",
        service_name=config.settings.service.name,
        payment_gateway=config.payment_gateway.provider,
    )

    app = FastAPI(
        title="Subscription Service",
        description="Subscription checkout and confirmation with hosted payment sessions",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from subscription_service.api.control import router as control_router
    from subscription_service.api.subscriptions import router as subscriptions_router

    app.include_router(subscriptions_router)
    app.include_router(control_router)

    if config.payment_gateway.provider == "local":
        from subscription_service.api.sandbox import router as sandbox_router

        app.include_router(sandbox_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Service banner."""
        logger.debug("root_endpoint_called")
        return {
            "service": config.settings.service.name,
            "status": "running",
            "version": VERSION,
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Detailed health check."""
        from subscription_service.services.notification_dispatcher import get_notification_dispatcher

        dispatcher = get_notification_dispatcher()
        return {
            "status": "healthy",
            "payment_gateway": config.payment_gateway.provider,
            "notifications": "running" if dispatcher.is_running() else "stopped",
            "config": str(config.config_path),
        }

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Return {error, message} bodies as-is instead of wrapping them in "detail"."""
        if isinstance(exc.detail, dict):
            content = exc.detail
        else:
            content = {"error": "http_error", "message": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Map request body validation failures to 400."""
        messages = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        ]
        logger.warning("request_validation_failed", path=request.url.path, errors=messages)
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "message": "; ".join(messages)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
