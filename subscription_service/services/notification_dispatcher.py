"""Background redelivery of invoice notifications.

Polls the notification outbox and re-sends entries whose retry time has
come, until they are delivered or abandoned.
"""

import asyncio
import threading
from typing import Optional

from subscription_service.logging_config import get_logger
from subscription_service.repositories.notification_outbox import NotificationOutbox
from subscription_service.services.billing_notifier import BillingNotifier, get_billing_notifier

logger = get_logger(__name__)


class NotificationDispatcher:
    """Retry worker for the notification outbox."""

    def __init__(
        self,
        notifier: BillingNotifier,
        outbox: Optional[NotificationOutbox] = None,
        interval_seconds: float = 10.0,
        batch_size: int = 100,
        claim_seconds: float = 60.0,
    ):
        self.notifier = notifier
        self.outbox = outbox if outbox is not None else notifier.outbox
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        # must outlast one delivery attempt, HTTP timeout included
        self.claim_seconds = claim_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def dispatch_due(self) -> tuple[int, int]:
        """Send every entry that is due now.

        Returns:
            Tuple of (attempted, delivered)
        """
        due = await self.outbox.get_due(
            self.notifier.now(), limit=self.batch_size, claim_seconds=self.claim_seconds
        )
        delivered = 0
        for record in due:
            if await self.notifier.deliver(record):
                delivered += 1
        if due:
            logger.info("notification_dispatch_completed", attempted=len(due), delivered=delivered)
        return len(due), delivered

    async def run(self) -> None:
        """Poll until stopped."""
        self._running = True
        logger.info("notification_dispatcher_started", interval_seconds=self.interval_seconds)
        while self._running:
            try:
                await self.dispatch_due()
            except Exception as e:
                logger.error(
                    "notification_dispatch_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Start the polling loop as a background task on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="notification-dispatcher")

    async def stop(self) -> None:
        """Stop the polling loop and wait for it to exit."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("notification_dispatcher_stopped")

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()


_dispatcher_instance: Optional[NotificationDispatcher] = None
_dispatcher_lock = threading.Lock()


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get or create the singleton NotificationDispatcher instance."""
    global _dispatcher_instance
    if _dispatcher_instance is None:
        with _dispatcher_lock:
            if _dispatcher_instance is None:
                from subscription_service.config import get_config

                _dispatcher_instance = NotificationDispatcher(
                    notifier=get_billing_notifier(),
                    interval_seconds=get_config().notifications.dispatch_interval_seconds,
                )
    return _dispatcher_instance


def reset_notification_dispatcher() -> None:
    """Drop the singleton dispatcher (for testing)."""
    global _dispatcher_instance
    with _dispatcher_lock:
        _dispatcher_instance = None
