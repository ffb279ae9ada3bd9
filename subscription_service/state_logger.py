"""State change logging for subscriptions and invoice notifications.

Tracks transitions with before/after values for debugging and auditing.
"""

from typing import Any, Optional

from subscription_service.logging_config import get_logger, truncate_token

logger = get_logger(__name__)


def log_subscription_state_change(
    subscription_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status transition.

    Args:
        subscription_id: Subscription identifier
        old_status: Previous status value
        new_status: New status value
        reason: Reason for the transition
        **extra_context: Additional context (customer_id, subscription_number, etc.)
    """
    logger.info(
        "subscription_state_changed",
        subscription_id=subscription_id,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_payment_session_assigned(
    subscription_id: str,
    session_token: str,
    **extra_context: Any,
) -> None:
    """Log the checkout session token being attached to a subscription."""
    logger.info(
        "payment_session_assigned",
        subscription_id=subscription_id,
        session_token=truncate_token(session_token),
        **extra_context,
    )


def log_external_refs_assigned(
    subscription_id: str,
    external_customer_ref: Optional[str],
    external_subscription_ref: Optional[str],
    **extra_context: Any,
) -> None:
    """Log gateway-assigned identifiers being written to a subscription.

    Args:
        subscription_id: Subscription identifier
        external_customer_ref: Gateway customer id
        external_subscription_ref: Gateway subscription id
        **extra_context: Additional context
    """
    logger.info(
        "external_refs_assigned",
        subscription_id=subscription_id,
        external_customer_ref=external_customer_ref,
        external_subscription_ref=external_subscription_ref,
        **extra_context,
    )


def log_notification_state_change(
    idempotency_key: str,
    old_status: Any,
    new_status: Any,
    attempts: int,
    **extra_context: Any,
) -> None:
    """Log invoice notification outbox status change."""
    logger.info(
        "notification_state_changed",
        idempotency_key=idempotency_key,
        old_status=str(old_status),
        new_status=str(new_status),
        attempts=attempts,
        **extra_context,
    )
