"""Notification outbox - in-memory record of invoice notifications.

Every invoice notification is recorded here before delivery is attempted,
keyed by its idempotency key (the subscription id). Undelivered entries
stay visible and are retried by the NotificationDispatcher.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from subscription_service.models.notification import NotificationRecord, NotificationStatus
from subscription_service.state_logger import log_notification_state_change


class NotificationNotFoundError(Exception):
    """Raised when an outbox entry is not found."""

    pass


class NotificationOutbox:
    """Thread-safe in-memory outbox of invoice notifications."""

    def __init__(self):
        self._records: Dict[str, NotificationRecord] = {}
        self._lock = threading.RLock()

    async def record(
        self,
        idempotency_key: str,
        subscription_id: str,
        payload: Dict[str, Any],
        now: datetime,
        next_attempt_at: Optional[datetime] = None,
    ) -> tuple[NotificationRecord, bool]:
        """Record a notification unless one already exists for the key.

        next_attempt_at defaults to now. Callers that attempt delivery
        immediately pass a later time so the dispatcher does not pick the
        entry up while that attempt is in flight.

        Returns:
            Tuple of (entry, created). created is False when an entry with the
            same idempotency key was already recorded.
        """
        with self._lock:
            existing = self._records.get(idempotency_key)
            if existing is not None:
                return existing.model_copy(deep=True), False
            record = NotificationRecord(
                idempotency_key=idempotency_key,
                subscription_id=subscription_id,
                payload=payload,
                next_attempt_at=next_attempt_at or now,
                created_at=now,
            )
            self._records[idempotency_key] = record
            return record.model_copy(deep=True), True

    async def get(self, idempotency_key: str) -> NotificationRecord:
        """Get outbox entry by key.

        Raises:
            NotificationNotFoundError: If key not found
        """
        with self._lock:
            record = self._records.get(idempotency_key)
            if record is None:
                raise NotificationNotFoundError(f"Notification not found: {idempotency_key}")
            return record.model_copy(deep=True)

    async def find(self, idempotency_key: str) -> Optional[NotificationRecord]:
        with self._lock:
            record = self._records.get(idempotency_key)
            return record.model_copy(deep=True) if record else None

    async def get_due(
        self,
        now: datetime,
        limit: int = 100,
        claim_seconds: Optional[float] = None,
    ) -> List[NotificationRecord]:
        """Get pending entries whose next attempt time has passed, oldest first.

        With claim_seconds, the returned entries are pushed back by that many
        seconds in the same locked step, so an overlapping caller does not get
        them too. Recording the attempt outcome replaces the claim; an entry
        whose sender died becomes due again once the claim runs out.
        """
        with self._lock:
            due = [
                r
                for r in self._records.values()
                if r.status == NotificationStatus.PENDING
                and (r.next_attempt_at is None or r.next_attempt_at <= now)
            ]
            due.sort(key=lambda r: r.created_at)
            due = due[:limit]
            if claim_seconds is not None:
                claimed_until = now + timedelta(seconds=claim_seconds)
                due = [r.model_copy(update={"next_attempt_at": claimed_until}) for r in due]
                for r in due:
                    self._records[r.idempotency_key] = r
            return [r.model_copy(deep=True) for r in due]

    async def get_by_status(self, status: Optional[NotificationStatus] = None) -> List[NotificationRecord]:
        """Get entries, optionally filtered by status."""
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._records.values()
                if status is None or r.status == status
            ]

    async def mark_delivered(self, idempotency_key: str, now: datetime) -> NotificationRecord:
        """Record a successful delivery attempt."""
        return self._apply_attempt(
            idempotency_key,
            status=NotificationStatus.DELIVERED,
            delivered_at=now,
            last_error=None,
            next_attempt_at=None,
        )

    async def mark_failed(
        self,
        idempotency_key: str,
        error: str,
        next_attempt_at: Optional[datetime],
    ) -> NotificationRecord:
        """Record a failed delivery attempt.

        Args:
            idempotency_key: Entry key
            error: Error description
            next_attempt_at: When to retry, or None to abandon the entry
        """
        status = NotificationStatus.PENDING if next_attempt_at else NotificationStatus.ABANDONED
        return self._apply_attempt(
            idempotency_key,
            status=status,
            last_error=error,
            next_attempt_at=next_attempt_at,
        )

    def _apply_attempt(self, idempotency_key: str, status: NotificationStatus, **updates) -> NotificationRecord:
        with self._lock:
            record = self._records.get(idempotency_key)
            if record is None:
                raise NotificationNotFoundError(f"Notification not found: {idempotency_key}")
            updated = record.model_copy(
                update={"status": status, "attempts": record.attempts + 1, **updates}
            )
            self._records[idempotency_key] = updated
            if record.status != status:
                log_notification_state_change(
                    idempotency_key=idempotency_key,
                    old_status=record.status.value,
                    new_status=status.value,
                    attempts=updated.attempts,
                    subscription_id=record.subscription_id,
                )
            return updated.model_copy(deep=True)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Get outbox statistics: total plus a count per status."""
        with self._lock:
            records = list(self._records.values())
            stats = {"total_notifications": len(records)}
            for status in NotificationStatus:
                stats[status.value] = sum(1 for r in records if r.status == status)
            return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


_outbox_instance: Optional[NotificationOutbox] = None
_outbox_lock = threading.Lock()


def get_notification_outbox() -> NotificationOutbox:
    """Get global notification outbox instance (singleton)."""
    global _outbox_instance
    if _outbox_instance is None:
        with _outbox_lock:
            if _outbox_instance is None:
                _outbox_instance = NotificationOutbox()
    return _outbox_instance


def reset_notification_outbox() -> None:
    """Clear the global notification outbox."""
    get_notification_outbox().clear()
