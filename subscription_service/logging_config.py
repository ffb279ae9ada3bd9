"""Structured logging for the subscription service.

Every event is rendered by structlog as one JSON line (or colored console
output for local runs) and carries the service name, the active payment
gateway and whatever subscription context the current request bound.

A payment session token opens the customer's hosted checkout page, so any
token that reaches an event under a known key is shortened before rendering.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, Processor

DEFAULT_SERVICE_NAME = "subscription-service"

# event keys that may carry a full payment session token
SESSION_TOKEN_KEYS = ("session_token", "payment_session_token", "sessionToken")


def truncate_token(token: Optional[str], keep: int = 12) -> Optional[str]:
    """Shorten a session token for log output."""
    if not token:
        return token
    return token[:keep] + "..." if len(token) > keep else token


class ServiceContext:
    """Processor stamping events with the service name and gateway provider."""

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME, payment_gateway: Optional[str] = None):
        self.service_name = service_name
        self.payment_gateway = payment_gateway

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.service_name)
        if self.payment_gateway:
            event_dict.setdefault("payment_gateway", self.payment_gateway)
        return event_dict


def shorten_session_tokens(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Truncate session tokens bound or passed under any known key."""
    for key in SESSION_TOKEN_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = truncate_token(value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
    payment_gateway: Optional[str] = None,
) -> None:
    """Configure structlog for the service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON; if False, use colored console output
        include_timestamp: Include ISO8601 timestamps in logs
        service_name: Value of the "service" field on every event
        payment_gateway: Active gateway provider, added as "payment_gateway"
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        ServiceContext(service_name, payment_gateway),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        shorten_session_tokens,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables that will be included in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def bind_subscription_context(
    subscription_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    session_token: Optional[str] = None,
) -> None:
    """Bind the subscription a request is acting on; empty values are skipped.

    Example:
        bind_subscription_context(subscription_id="3f2c...", session_token="cs_test_...")
    """
    context = {
        "subscription_id": subscription_id,
        "customer_id": customer_id,
        "session_token": truncate_token(session_token),
    }
    bind_context(**{key: value for key, value in context.items() if value})


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
