"""Subscription Manager - queries and operator-driven status changes.

Every status change goes through the guarded transitions on Subscription
and is committed with compare-and-set against the status that was read.
"""

import threading
from typing import List, Optional

from subscription_service.logging_config import get_logger
from subscription_service.models.subscription import (
    CancelReason,
    InvalidStateTransitionError,
    InvalidStatusError,
    Subscription,
    SubscriptionStatus,
)
from subscription_service.repositories.subscription_store import (
    SubscriptionStore,
    get_subscription_store,
)
from subscription_service.services.confirmation_service import ConcurrencyConflictError
from subscription_service.state_logger import log_subscription_state_change

logger = get_logger(__name__)


class SubscriptionManager:
    """Read access and manual lifecycle operations for subscriptions."""

    def __init__(self, subscription_store: Optional[SubscriptionStore] = None):
        self._store = subscription_store if subscription_store is not None else get_subscription_store()

    async def get_subscription(self, subscription_id: str) -> Subscription:
        """Get a subscription by id.

        Raises:
            SubscriptionNotFoundError: If id not found
        """
        return await self._store.get_by_id(subscription_id)

    async def list_subscriptions(
        self,
        customer_id: Optional[str] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        """List subscriptions, optionally filtered by customer and status, oldest first."""
        if customer_id:
            subscriptions = await self._store.get_by_customer(customer_id)
        elif status is not None:
            subscriptions = await self._store.get_by_status(status)
        else:
            subscriptions = await self._store.get_all()

        if status is not None:
            subscriptions = [s for s in subscriptions if s.status == status]
        return sorted(subscriptions, key=lambda s: s.created_at)

    async def update_status(self, subscription_id: str, status_value: str) -> Subscription:
        """Move a subscription to the named status.

        Args:
            subscription_id: Subscription to update
            status_value: Target status name, case-insensitive

        Raises:
            InvalidStatusError: If the status is unknown or is Pending
            SubscriptionNotFoundError: If id not found
            InvalidStateTransitionError: If the move is not allowed, including Active from
                anything other than Suspended
            ConcurrencyConflictError: If the status changed concurrently
        """
        target = SubscriptionStatus.parse(status_value)
        if target == SubscriptionStatus.PENDING:
            raise InvalidStatusError("Pending is not a valid target status")

        subscription = await self._store.get_by_id(subscription_id)
        if target == SubscriptionStatus.ACTIVE:
            # activation from Pending belongs to payment confirmation only
            return await self._resume(subscription, reason="status_update")
        return await self._apply(subscription, subscription.transition_to(target), reason="status_update")

    async def suspend(self, subscription_id: str) -> Subscription:
        """Active -> Suspended."""
        subscription = await self._store.get_by_id(subscription_id)
        return await self._apply(subscription, subscription.suspend(), reason="suspended")

    async def resume(self, subscription_id: str) -> Subscription:
        """Suspended -> Active."""
        subscription = await self._store.get_by_id(subscription_id)
        return await self._resume(subscription, reason="resumed")

    async def cancel(
        self,
        subscription_id: str,
        reason: CancelReason = CancelReason.CUSTOMER_REQUEST,
    ) -> Subscription:
        """Any non-terminal status -> Cancelled."""
        subscription = await self._store.get_by_id(subscription_id)
        return await self._apply(subscription, subscription.cancel(reason=reason), reason=reason.value)

    async def expire(self, subscription_id: str) -> Subscription:
        """Active/Suspended -> Expired."""
        subscription = await self._store.get_by_id(subscription_id)
        return await self._apply(subscription, subscription.expire(), reason="expired")

    async def _resume(self, subscription: Subscription, reason: str) -> Subscription:
        if subscription.status != SubscriptionStatus.SUSPENDED:
            raise InvalidStateTransitionError(subscription.id, subscription.status, SubscriptionStatus.ACTIVE)
        return await self._apply(subscription, subscription.activate(), reason=reason)

    async def _apply(self, current: Subscription, updated: Subscription, reason: str) -> Subscription:
        if not await self._store.compare_and_set(updated, expected_status=current.status):
            latest = await self._store.get_by_id(current.id)
            raise ConcurrencyConflictError(
                f"Subscription {current.id} changed from {current.status.value} "
                f"to {latest.status.value} concurrently"
            )
        log_subscription_state_change(
            current.id,
            current.status.value,
            updated.status.value,
            reason=reason,
            customer_id=updated.customer_id,
        )
        return updated


_subscription_manager: Optional[SubscriptionManager] = None
_subscription_manager_lock = threading.Lock()


def get_subscription_manager() -> SubscriptionManager:
    """Get or create the singleton SubscriptionManager instance."""
    global _subscription_manager
    if _subscription_manager is None:
        with _subscription_manager_lock:
            if _subscription_manager is None:
                _subscription_manager = SubscriptionManager()
    return _subscription_manager


def reset_subscription_manager() -> None:
    """Drop the singleton manager (for testing)."""
    global _subscription_manager
    with _subscription_manager_lock:
        _subscription_manager = None
