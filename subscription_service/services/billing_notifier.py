"""Best-effort invoice notification to the Billing collaborator.

Responsibilities:
- Build the invoice-creation request for a newly confirmed subscription
- Record it in the notification outbox under the subscription id
- Attempt delivery immediately; failures are recorded for retry
- Never raise to the caller: a billing outage must not fail confirmation
"""

import asyncio
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from subscription_service.logging_config import get_logger
from subscription_service.models.gateway import GatewaySession
from subscription_service.models.notification import (
    InvoiceCreationRequest,
    NotificationRecord,
    NotificationStatus,
)
from subscription_service.models.settings import NotificationConfig
from subscription_service.models.subscription import Subscription, utcnow
from subscription_service.repositories.notification_outbox import (
    NotificationOutbox,
    get_notification_outbox,
)
from subscription_service.utils.billing_period import billing_period_window

logger = get_logger(__name__)

INVOICE_FROM_SUBSCRIPTION_PATH = "/api/invoices/from-subscription"


class DownstreamNotifyError(Exception):
    """Raised internally when billing does not accept an invoice request."""

    pass


class BillingNotifier:
    """Sends invoice-creation requests to the Billing collaborator.

    Delivery is at-least-once up to NotificationConfig.max_attempts. The
    billing service receives the subscription id as Idempotency-Key so a
    redelivered request does not create a second invoice.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        settings: Optional[NotificationConfig] = None,
        outbox: Optional[NotificationOutbox] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize billing notifier.

        Args:
            base_url: Billing service base URL
            timeout_seconds: Per-request timeout
            settings: Retry policy and billing period (defaults to NotificationConfig())
            outbox: Notification outbox (defaults to global instance)
            http_client: Pre-configured client (tests inject one with a MockTransport)
            clock: Current time source
        """
        self.settings = settings or NotificationConfig()
        self.outbox = outbox if outbox is not None else get_notification_outbox()
        self._clock = clock
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    def now(self) -> datetime:
        """Current time on this notifier's clock."""
        return self._clock()

    def build_invoice_request(
        self,
        subscription: Subscription,
        gateway_session: Optional[GatewaySession],
        now: datetime,
    ) -> InvoiceCreationRequest:
        """Build the billing payload for a confirmed subscription."""
        period_start, period_end = billing_period_window(now, self.settings.billing_period)
        return InvoiceCreationRequest(
            customerId=subscription.customer_id,
            subscriptionId=subscription.id,
            productName=subscription.product_name,
            price=subscription.price,
            externalInvoiceRef=gateway_session.external_invoice_ref if gateway_session else None,
            externalCustomerRef=(
                gateway_session.external_customer_ref if gateway_session else None
            ) or subscription.external_customer_ref,
            invoicePdfUrl=gateway_session.invoice_pdf_url if gateway_session else None,
            periodStart=period_start,
            periodEnd=period_end,
        )

    async def notify_invoice_creation(
        self,
        subscription: Subscription,
        gateway_session: Optional[GatewaySession] = None,
    ) -> bool:
        """Record and send an invoice-creation request.

        Args:
            subscription: The subscription that was just activated
            gateway_session: Gateway session data (invoice and customer refs)

        Returns:
            True if billing accepted the request now, False otherwise.
            The return value is informational; failures are never raised.
        """
        if not self.settings.enabled:
            logger.info("invoice_notification_disabled", subscription_id=subscription.id)
            return False

        try:
            now = self.now()
            request = self.build_invoice_request(subscription, gateway_session, now)
            record, created = await self.outbox.record(
                idempotency_key=subscription.id,
                subscription_id=subscription.id,
                payload=request.model_dump(mode="json"),
                now=now,
                next_attempt_at=now + timedelta(seconds=self.settings.retry_backoff_seconds),
            )
            if not created:
                logger.info(
                    "invoice_notification_already_recorded",
                    subscription_id=subscription.id,
                    status=record.status.value,
                    attempts=record.attempts,
                )
                return record.status == NotificationStatus.DELIVERED

            return await self.deliver(record)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "invoice_notification_failed",
                subscription_id=subscription.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

    async def deliver(self, record: NotificationRecord) -> bool:
        """Attempt delivery of one outbox entry and record the outcome.

        Returns:
            True if delivered, False if the attempt failed
        """
        try:
            await self._send(record)
        except DownstreamNotifyError as e:
            attempts = record.attempts + 1
            next_attempt_at = self._next_attempt_at(attempts)
            await self.outbox.mark_failed(record.idempotency_key, str(e), next_attempt_at)
            logger.warning(
                "invoice_notification_delivery_failed",
                subscription_id=record.subscription_id,
                attempts=attempts,
                max_attempts=self.settings.max_attempts,
                will_retry=next_attempt_at is not None,
                error=str(e),
            )
            return False

        await self.outbox.mark_delivered(record.idempotency_key, self.now())
        logger.info(
            "invoice_notification_delivered",
            subscription_id=record.subscription_id,
            attempts=record.attempts + 1,
        )
        return True

    async def _send(self, record: NotificationRecord) -> None:
        try:
            response = await self._client.post(
                INVOICE_FROM_SUBSCRIPTION_PATH,
                json=record.payload,
                headers={"Idempotency-Key": record.idempotency_key},
            )
        except httpx.HTTPError as e:
            raise DownstreamNotifyError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise DownstreamNotifyError(f"Billing returned HTTP {response.status_code}")

    def _next_attempt_at(self, attempts: int) -> Optional[datetime]:
        """Exponential backoff, or None once max_attempts is reached."""
        if attempts >= self.settings.max_attempts:
            return None
        delay = self.settings.retry_backoff_seconds * (2 ** (attempts - 1))
        return self.now() + timedelta(seconds=delay)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


_notifier_instance: Optional[BillingNotifier] = None
_notifier_lock = threading.Lock()


def get_billing_notifier() -> BillingNotifier:
    """Get or create the singleton BillingNotifier instance."""
    global _notifier_instance
    if _notifier_instance is None:
        with _notifier_lock:
            if _notifier_instance is None:
                from subscription_service.config import get_config

                config = get_config()
                _notifier_instance = BillingNotifier(
                    base_url=config.billing_service.base_url,
                    timeout_seconds=config.billing_service.timeout_seconds,
                    settings=config.notifications,
                )
    return _notifier_instance


def reset_billing_notifier() -> None:
    """Drop the singleton notifier (for testing)."""
    global _notifier_instance
    with _notifier_lock:
        _notifier_instance = None
