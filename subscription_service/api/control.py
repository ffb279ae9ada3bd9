"""Operator API for inspecting and driving background work.

Implements:
- GET /admin/notifications - List invoice notification outbox entries
- POST /admin/notifications/dispatch - Run one redelivery pass now
- GET /admin/stats - Subscription and outbox statistics
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from subscription_service.logging_config import get_logger
from subscription_service.models import DispatchResponse, NotificationResponse, NotificationStatus
from subscription_service.repositories.notification_outbox import (
    NotificationOutbox,
    get_notification_outbox,
)
from subscription_service.repositories.subscription_store import (
    SubscriptionStore,
    get_subscription_store,
)
from subscription_service.services.notification_dispatcher import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Control API"], prefix="/admin")


@router.get(
    "/notifications",
    response_model=List[NotificationResponse],
    summary="List invoice notifications",
)
async def list_notifications(
    status: Optional[str] = Query(None, description="pending, delivered or abandoned"),
    outbox: NotificationOutbox = Depends(get_notification_outbox),
) -> List[NotificationResponse]:
    """List outbox entries, optionally filtered by delivery status.

    Raises:
        400: Unknown status
    """
    try:
        status_filter = NotificationStatus(status.lower()) if status else None
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid status",
                "message": f"Unknown notification status '{status}'",
            },
        )

    records = await outbox.get_by_status(status_filter)
    return [
        NotificationResponse(
            idempotencyKey=r.idempotency_key,
            subscriptionId=r.subscription_id,
            status=r.status.value,
            attempts=r.attempts,
            lastError=r.last_error,
            nextAttemptAt=r.next_attempt_at,
            createdAt=r.created_at,
            deliveredAt=r.delivered_at,
        )
        for r in sorted(records, key=lambda r: r.created_at)
    ]


@router.post(
    "/notifications/dispatch",
    response_model=DispatchResponse,
    summary="Redeliver due notifications",
)
async def dispatch_notifications(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> DispatchResponse:
    """Run one redelivery pass without waiting for the background interval."""
    logger.info("dispatch_notifications_request")
    attempted, delivered = await dispatcher.dispatch_due()
    return DispatchResponse(
        attempted=attempted,
        delivered=delivered,
        message=f"Delivered {delivered} of {attempted} due notifications",
    )


@router.get("/stats", summary="Service statistics")
async def get_stats(
    store: SubscriptionStore = Depends(get_subscription_store),
    outbox: NotificationOutbox = Depends(get_notification_outbox),
) -> Dict[str, Any]:
    """Get subscription and notification counts."""
    return {
        "subscriptions": store.get_statistics(),
        "notifications": outbox.get_statistics(),
    }
