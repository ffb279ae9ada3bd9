"""FastAPI middleware for request/response logging and correlation."""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from subscription_service.logging_config import (
    bind_context,
    bind_subscription_context,
    clear_context,
    get_logger,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses with correlation IDs.

    Features:
    - Reuses the caller's X-Request-ID or generates one
    - Logs request method, path, client IP
    - Logs response status code and duration
    - Binds request_id to all logs within request context
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        """Initialize middleware.

        Args:
            app: ASGI application
            include_request_details: If True, log full request details
        """
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)

        client_host = request.client.host if request.client else "unknown"

        if self.include_request_details:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                query_params=str(request.query_params) if request.query_params else None,
                client_host=client_host,
                user_agent=request.headers.get("user-agent"),
            )
        else:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
            )

        start_time = time.time()

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        finally:
            clear_context()


def _segment_after(parts: list[str], marker: str) -> Optional[str]:
    """Return the path segment following marker, if any."""
    try:
        index = parts.index(marker)
    except ValueError:
        return None
    if len(parts) > index + 1 and parts[index + 1]:
        return parts[index + 1]
    return None


class ContextMiddleware(BaseHTTPMiddleware):
    """Middleware for binding business context from the request path.

    - subscription_id from /subscriptions/{id}/...
    - customer_id from the customerId query filter
    - session_token (truncated) from /sandbox/checkout/{token}
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        parts = request.url.path.split("/")

        subscription_id = _segment_after(parts, "subscriptions")
        if subscription_id == "confirm-by-session":
            subscription_id = None
        bind_subscription_context(
            subscription_id=subscription_id,
            customer_id=request.query_params.get("customerId"),
            session_token=_segment_after(parts, "checkout"),
        )

        return await call_next(request)
