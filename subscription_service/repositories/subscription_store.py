"""Subscription store - in-memory storage for subscription records.

The store is the only shared mutable resource of the confirmation saga.
Status changes are committed with compare_and_set(), which only replaces
the stored row if its status still matches what the caller read.

Methods are coroutines so a database-backed store can implement the same
contract. No lock is held across an await.
"""

import threading
from typing import Dict, List, Optional

from subscription_service.models.subscription import Subscription, SubscriptionStatus


class SubscriptionNotFoundError(Exception):
    """Raised when a subscription is not found in the store."""

    pass


class SubscriptionStore:
    """In-memory storage for subscription records.

    Thread-safe storage with lookup by id, payment session token, customer
    and status. Records are copied on the way in and out so callers never
    share an instance with the store.
    """

    def __init__(self):
        """Initialize subscription store with empty storage."""
        self._subscriptions: Dict[str, Subscription] = {}
        self._by_session_token: Dict[str, str] = {}
        self._lock = threading.RLock()

    def _put(self, subscription: Subscription) -> None:
        self._subscriptions[subscription.id] = subscription.model_copy(deep=True)
        if subscription.payment_session_token:
            self._by_session_token[subscription.payment_session_token] = subscription.id

    async def add(self, subscription: Subscription) -> None:
        """Add a subscription to the store.

        Raises:
            ValueError: If subscription id or session token already exists
        """
        with self._lock:
            if subscription.id in self._subscriptions:
                raise ValueError(f"Subscription with id '{subscription.id}' already exists")
            token = subscription.payment_session_token
            if token and token in self._by_session_token:
                raise ValueError("Payment session token is already bound to another subscription")
            self._put(subscription)

    async def get_by_id(self, subscription_id: str) -> Subscription:
        """Get subscription by id.

        Raises:
            SubscriptionNotFoundError: If id not found
        """
        subscription = await self.find_by_id(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")
        return subscription

    async def find_by_id(self, subscription_id: str) -> Optional[Subscription]:
        """Find subscription by id (returns None if not found)."""
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return subscription.model_copy(deep=True) if subscription else None

    async def get_by_session_token(self, session_token: str) -> Subscription:
        """Get subscription whose payment_session_token equals the given token.

        Raises:
            SubscriptionNotFoundError: If no subscription is bound to the token
        """
        subscription = await self.find_by_session_token(session_token)
        if subscription is None:
            raise SubscriptionNotFoundError("No subscription found for payment session token")
        return subscription

    async def find_by_session_token(self, session_token: str) -> Optional[Subscription]:
        """Find subscription by payment session token (returns None if not found)."""
        with self._lock:
            subscription_id = self._by_session_token.get(session_token)
            if subscription_id is None:
                return None
            return self._subscriptions[subscription_id].model_copy(deep=True)

    async def get_by_customer(self, customer_id: str) -> List[Subscription]:
        """Get all subscriptions for a customer."""
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._subscriptions.values()
                if s.customer_id == customer_id
            ]

    async def get_by_status(self, status: SubscriptionStatus) -> List[Subscription]:
        """Get all subscriptions in a specific status."""
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values() if s.status == status]

    async def get_all(self) -> List[Subscription]:
        """Get all subscriptions in the store."""
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values()]

    async def update(self, subscription: Subscription) -> None:
        """Unconditionally replace an existing subscription.

        Only for writes with no concurrent writers (checkout initiation).
        Status changes from the saga go through compare_and_set().

        Raises:
            SubscriptionNotFoundError: If subscription id not found
            ValueError: If the session token is bound to another subscription
        """
        with self._lock:
            if subscription.id not in self._subscriptions:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription.id}")
            token = subscription.payment_session_token
            if token and self._by_session_token.get(token, subscription.id) != subscription.id:
                raise ValueError("Payment session token is already bound to another subscription")
            self._put(subscription)

    async def compare_and_set(
        self,
        subscription: Subscription,
        expected_status: SubscriptionStatus,
    ) -> bool:
        """Replace the stored subscription only if its status is still expected_status.

        Args:
            subscription: New subscription value
            expected_status: Status the caller read before computing the new value

        Returns:
            True if the write was applied, False if another writer changed the status first

        Raises:
            SubscriptionNotFoundError: If subscription id not found
        """
        with self._lock:
            current = self._subscriptions.get(subscription.id)
            if current is None:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription.id}")
            if current.status != expected_status:
                return False
            self._put(subscription)
            return True

    async def exists(self, subscription_id: str) -> bool:
        with self._lock:
            return subscription_id in self._subscriptions

    def count(self) -> int:
        """Get total number of subscriptions."""
        with self._lock:
            return len(self._subscriptions)

    def count_by_status(self, status: SubscriptionStatus) -> int:
        """Get count of subscriptions in a specific status."""
        with self._lock:
            return sum(1 for s in self._subscriptions.values() if s.status == status)

    def clear(self) -> None:
        """Clear all subscriptions from the store.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._subscriptions.clear()
            self._by_session_token.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Get subscription store statistics.

        Returns:
            Dictionary with total_subscriptions, unique_customers and a count per status
        """
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            stats = {
                "total_subscriptions": len(subscriptions),
                "unique_customers": len(set(s.customer_id for s in subscriptions)),
            }
            for status in SubscriptionStatus:
                stats[status.value.lower()] = sum(1 for s in subscriptions if s.status == status)
            return stats

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"SubscriptionStore(subscriptions={self.count()})"


# Global store instance
_store_instance: Optional[SubscriptionStore] = None
_store_lock = threading.Lock()


def get_subscription_store() -> SubscriptionStore:
    """Get global subscription store instance (singleton)."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = SubscriptionStore()
    return _store_instance


def reset_subscription_store() -> None:
    """Reset global subscription store (clears all data).

    Warning: This removes all subscription data. Use with caution.
    """
    get_subscription_store().clear()
