"""Tests for BillingNotifier - outbox-backed invoice notification."""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from subscription_service.models.gateway import GatewaySession
from subscription_service.models.notification import NotificationStatus
from subscription_service.models.settings import NotificationConfig
from subscription_service.models.subscription import Subscription

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Settable clock for backoff assertions."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def subscription():
    return (
        Subscription(
            customer_id="C1",
            product_id="P1",
            product_name="Fiber 500",
            price=Decimal("29.99"),
            subscription_number="SUB-20261019-4F3A9C1D",
        )
        .with_payment_session("cs_local_1")
        .with_external_refs("cus_1", "sub_1")
        .activate()
    )


@pytest.fixture
def gateway_session():
    return GatewaySession(
        session_token="cs_local_1",
        completed=True,
        external_customer_ref="cus_1",
        external_subscription_ref="sub_1",
        external_invoice_ref="in_1",
        invoice_pdf_url="https://pay.example.com/in_1.pdf",
    )


class TestInvoiceRequest:
    """Test payload construction."""

    def test_build_request(self, notifier, subscription, gateway_session):
        request = notifier.build_invoice_request(subscription, gateway_session, NOW)
        assert request.customerId == "C1"
        assert request.subscriptionId == subscription.id
        assert request.productName == "Fiber 500"
        assert request.price == Decimal("29.99")
        assert request.externalInvoiceRef == "in_1"
        assert request.externalCustomerRef == "cus_1"
        assert request.invoicePdfUrl == "https://pay.example.com/in_1.pdf"
        assert request.periodStart == NOW
        assert request.periodEnd == datetime(2026, 11, 19, 12, 0, tzinfo=timezone.utc)

    def test_period_ends_on_last_day_of_short_month(self, notifier, subscription, gateway_session):
        """An invoice raised on Jan 31 covers through Feb 28."""
        start = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)
        request = notifier.build_invoice_request(subscription, gateway_session, start)
        assert request.periodEnd == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)

    def test_customer_ref_falls_back_to_subscription(self, notifier, subscription):
        request = notifier.build_invoice_request(subscription, None, NOW)
        assert request.externalCustomerRef == "cus_1"
        assert request.externalInvoiceRef is None

    def test_price_serialized_as_number(self, notifier, subscription, gateway_session):
        payload = notifier.build_invoice_request(subscription, gateway_session, NOW).model_dump(mode="json")
        assert payload["price"] == 29.99


class TestNotifyInvoiceCreation:
    """Test immediate delivery and failure isolation."""

    @pytest.mark.asyncio
    async def test_delivered(self, notifier, billing_service, outbox, subscription, gateway_session):
        assert await notifier.notify_invoice_creation(subscription, gateway_session)

        request = billing_service.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/invoices/from-subscription"
        assert request.headers["Idempotency-Key"] == subscription.id
        body = json.loads(request.content)
        assert body["subscriptionId"] == subscription.id
        assert body["customerId"] == "C1"

        entry = await outbox.get(subscription.id)
        assert entry.status == NotificationStatus.DELIVERED
        assert entry.attempts == 1

    @pytest.mark.asyncio
    async def test_timeout_is_absorbed(self, notifier, billing_service, outbox, subscription, gateway_session):
        billing_service.timeout = True
        assert await notifier.notify_invoice_creation(subscription, gateway_session) is False

        entry = await outbox.get(subscription.id)
        assert entry.status == NotificationStatus.PENDING
        assert "ReadTimeout" in entry.last_error

    @pytest.mark.asyncio
    async def test_non_2xx_is_absorbed(self, notifier, billing_service, outbox, subscription, gateway_session):
        billing_service.status_code = 500
        assert await notifier.notify_invoice_creation(subscription, gateway_session) is False
        assert (await outbox.get(subscription.id)).last_error == "Billing returned HTTP 500"

    @pytest.mark.asyncio
    async def test_second_notification_not_resent(self, notifier, billing_service, subscription, gateway_session):
        await notifier.notify_invoice_creation(subscription, gateway_session)
        assert await notifier.notify_invoice_creation(subscription, gateway_session)
        assert billing_service.call_count == 1

    @pytest.mark.asyncio
    async def test_second_notification_after_failure_not_resent(
        self, notifier, billing_service, subscription, gateway_session
    ):
        """Redelivery is the dispatcher's job, not the caller's."""
        billing_service.status_code = 503
        await notifier.notify_invoice_creation(subscription, gateway_session)
        billing_service.status_code = 201
        assert await notifier.notify_invoice_creation(subscription, gateway_session) is False
        assert billing_service.call_count == 1

    @pytest.mark.asyncio
    async def test_disabled(self, notifier_factory, billing_service, outbox, subscription):
        notifier = notifier_factory(settings=NotificationConfig(enabled=False))
        assert await notifier.notify_invoice_creation(subscription) is False
        assert billing_service.call_count == 0
        assert len(outbox) == 0


class TestRetryPolicy:
    """Test backoff and abandonment."""

    @pytest.mark.asyncio
    async def test_exponential_backoff(self, notifier_factory, billing_service, outbox, clock, subscription):
        notifier = notifier_factory(
            settings=NotificationConfig(max_attempts=4, retry_backoff_seconds=30),
            clock=clock,
        )
        billing_service.status_code = 503

        await notifier.notify_invoice_creation(subscription)
        entry = await outbox.get(subscription.id)
        assert entry.next_attempt_at == NOW + timedelta(seconds=30)

        await notifier.deliver(entry)
        entry = await outbox.get(subscription.id)
        assert entry.attempts == 2
        assert entry.next_attempt_at == NOW + timedelta(seconds=60)

        await notifier.deliver(entry)
        entry = await outbox.get(subscription.id)
        assert entry.next_attempt_at == NOW + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_abandoned_after_max_attempts(self, notifier_factory, billing_service, outbox, subscription):
        notifier = notifier_factory(settings=NotificationConfig(max_attempts=2, retry_backoff_seconds=0))
        billing_service.status_code = 503

        await notifier.notify_invoice_creation(subscription)
        await notifier.deliver(await outbox.get(subscription.id))

        entry = await outbox.get(subscription.id)
        assert entry.status == NotificationStatus.ABANDONED
        assert entry.attempts == 2

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, notifier_factory, billing_service, outbox, subscription):
        """max_attempts=1 sends once and never retries."""
        notifier = notifier_factory(settings=NotificationConfig(max_attempts=1))
        billing_service.timeout = True

        await notifier.notify_invoice_creation(subscription)
        assert (await outbox.get(subscription.id)).status == NotificationStatus.ABANDONED
