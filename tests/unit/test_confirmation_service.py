"""Tests for ConfirmationService - idempotent Pending -> Active confirmation."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from subscription_service.models.gateway import GatewaySession
from subscription_service.models.notification import NotificationStatus
from subscription_service.models.subscription import (
    ExternalReferenceConflictError,
    InvalidStateTransitionError,
    SubscriptionStatus,
)
from subscription_service.repositories.subscription_store import SubscriptionNotFoundError
from subscription_service.services.confirmation_service import (
    ConcurrencyConflictError,
    ConfirmationService,
    SessionMismatchError,
)
from subscription_service.services.payment_gateway import ExternalGatewayError, PaymentNotCompletedError


@pytest.fixture
def paid_checkout(start_checkout, store, gateway):
    """Start checkout and simulate the customer paying. Returns (subscription_id, token)."""

    async def run(**kwargs):
        result = await start_checkout(**kwargs)
        subscription = await store.get_by_id(result.subscription_id)
        gateway.complete_session(subscription.payment_session_token)
        return subscription.id, subscription.payment_session_token

    return run


@pytest.fixture
def spy_notifier(notifier):
    """Real notifier wrapped so calls can be counted."""
    with patch.object(notifier, "notify_invoice_creation", wraps=notifier.notify_invoice_creation) as spy:
        yield spy


class TestConfirmHappyPath:
    """Test the activation flow end to end."""

    @pytest.mark.asyncio
    async def test_checkout_then_confirm_activates(self, paid_checkout, confirmation_service, store, billing_service):
        """C1 buys P1 for 29.99, pays, confirms: Active with refs, one invoice request."""
        subscription_id, token = await paid_checkout()

        result = await confirmation_service.confirm_by_subscription_id(subscription_id, token)

        assert result.activated
        assert not result.already_active
        subscription = await store.get_by_id(subscription_id)
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.external_customer_ref.startswith("cus_")
        assert subscription.external_subscription_ref.startswith("sub_")
        assert billing_service.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_token_uses_stored_token(self, paid_checkout, confirmation_service):
        subscription_id, _ = await paid_checkout()
        result = await confirmation_service.confirm_by_subscription_id(subscription_id, "")
        assert result.activated

    @pytest.mark.asyncio
    async def test_invoice_carries_gateway_invoice(self, paid_checkout, confirmation_service, outbox, gateway):
        subscription_id, token = await paid_checkout()
        await confirmation_service.confirm_by_session_token(token)

        entry = await outbox.get(subscription_id)
        session = await gateway.get_session(token)
        assert entry.status == NotificationStatus.DELIVERED
        assert entry.payload["externalInvoiceRef"] == session.external_invoice_ref
        assert entry.payload["price"] == 29.99


class TestIdempotence:
    """Repeated and concurrent confirmations activate and notify once."""

    @pytest.mark.asyncio
    async def test_sequential_confirmations(self, paid_checkout, confirmation_service, spy_notifier, billing_service):
        subscription_id, token = await paid_checkout()

        first = await confirmation_service.confirm_by_subscription_id(subscription_id, token)
        second = await confirmation_service.confirm_by_subscription_id(subscription_id, token)

        assert first.activated
        assert second.already_active and not second.activated
        assert second.subscription.status == SubscriptionStatus.ACTIVE
        assert spy_notifier.call_count == 1
        assert billing_service.call_count == 1

    @pytest.mark.asyncio
    async def test_already_active_skips_gateway(self, paid_checkout, store, notifier):
        gateway = AsyncMock()
        subscription_id, _ = await paid_checkout()
        subscription = await store.get_by_id(subscription_id)
        await store.compare_and_set(subscription.activate(), SubscriptionStatus.PENDING)

        service = ConfirmationService(subscription_store=store, payment_gateway=gateway, billing_notifier=notifier)
        result = await service.confirm_by_subscription_id(subscription_id)

        assert result.already_active
        gateway.get_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_entry_points_are_equivalent(self, paid_checkout, confirmation_service, spy_notifier):
        """Confirming by id then by session token is one activation."""
        subscription_id, token = await paid_checkout()

        by_id = await confirmation_service.confirm_by_subscription_id(subscription_id, token)
        by_token = await confirmation_service.confirm_by_session_token(token)

        assert by_id.activated
        assert by_token.already_active
        assert by_id.subscription.id == by_token.subscription.id
        assert spy_notifier.call_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirmations(self, paid_checkout, confirmation_service, spy_notifier, billing_service):
        subscription_id, token = await paid_checkout()

        results = await asyncio.gather(
            confirmation_service.confirm_by_subscription_id(subscription_id, token),
            confirmation_service.confirm_by_session_token(token),
            confirmation_service.confirm_by_subscription_id(subscription_id),
            confirmation_service.confirm_by_session_token(token),
        )

        assert sum(r.activated for r in results) == 1
        assert all(r.subscription.status == SubscriptionStatus.ACTIVE for r in results)
        assert spy_notifier.call_count == 1
        assert billing_service.call_count == 1


class TestConfirmRejections:
    """Test rejected confirmations leave the subscription untouched."""

    @pytest.mark.asyncio
    async def test_unknown_session_token(self, paid_checkout, confirmation_service, store, billing_service):
        """Unknown token: NotFound, nothing changes."""
        subscription_id, _ = await paid_checkout()

        with pytest.raises(SubscriptionNotFoundError):
            await confirmation_service.confirm_by_session_token("cs_unknown")

        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.PENDING
        assert billing_service.call_count == 0

    @pytest.mark.asyncio
    async def test_unknown_subscription_id(self, confirmation_service):
        with pytest.raises(SubscriptionNotFoundError):
            await confirmation_service.confirm_by_subscription_id("missing", "cs_local_x")

    @pytest.mark.asyncio
    async def test_empty_session_token(self, confirmation_service):
        with pytest.raises(ValueError):
            await confirmation_service.confirm_by_session_token("")

    @pytest.mark.asyncio
    async def test_token_of_other_subscription(self, paid_checkout, confirmation_service, store):
        first_id, _ = await paid_checkout()
        _, second_token = await paid_checkout()

        with pytest.raises(SessionMismatchError):
            await confirmation_service.confirm_by_subscription_id(first_id, second_token)
        assert (await store.get_by_id(first_id)).status == SubscriptionStatus.PENDING

    @pytest.mark.asyncio
    async def test_unpaid_session(self, start_checkout, confirmation_service, store, billing_service):
        result = await start_checkout()

        with pytest.raises(PaymentNotCompletedError):
            await confirmation_service.confirm_by_subscription_id(result.subscription_id)

        assert (await store.get_by_id(result.subscription_id)).status == SubscriptionStatus.PENDING
        assert billing_service.call_count == 0

    def test_unpaid_session_is_gateway_error(self):
        assert issubclass(PaymentNotCompletedError, ExternalGatewayError)

    @pytest.mark.asyncio
    async def test_gateway_unreachable(self, paid_checkout, store, notifier):
        subscription_id, _ = await paid_checkout()
        gateway = AsyncMock()
        gateway.get_session.side_effect = ExternalGatewayError("timeout")
        service = ConfirmationService(subscription_store=store, payment_gateway=gateway, billing_notifier=notifier)

        with pytest.raises(ExternalGatewayError):
            await service.confirm_by_subscription_id(subscription_id)
        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.PENDING

    @pytest.mark.asyncio
    async def test_session_metadata_names_other_subscription(self, paid_checkout, store, notifier):
        subscription_id, token = await paid_checkout()
        gateway = AsyncMock()
        gateway.get_session.return_value = GatewaySession(
            session_token=token, completed=True, metadata={"subscriptionId": "someone-else"}
        )
        service = ConfirmationService(subscription_store=store, payment_gateway=gateway, billing_notifier=notifier)

        with pytest.raises(SessionMismatchError):
            await service.confirm_by_subscription_id(subscription_id)

    @pytest.mark.asyncio
    async def test_cancelled_subscription(self, paid_checkout, confirmation_service, store):
        subscription_id, token = await paid_checkout()
        subscription = await store.get_by_id(subscription_id)
        await store.compare_and_set(subscription.cancel(), SubscriptionStatus.PENDING)

        with pytest.raises(InvalidStateTransitionError):
            await confirmation_service.confirm_by_session_token(token)
        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_external_reference_conflict(self, paid_checkout, store, notifier):
        subscription_id, token = await paid_checkout()
        subscription = await store.get_by_id(subscription_id)
        await store.update(subscription.with_external_refs("cus_original", None))

        gateway = AsyncMock()
        gateway.get_session.return_value = GatewaySession(
            session_token=token, completed=True, external_customer_ref="cus_different"
        )
        service = ConfirmationService(subscription_store=store, payment_gateway=gateway, billing_notifier=notifier)

        with pytest.raises(ExternalReferenceConflictError):
            await service.confirm_by_subscription_id(subscription_id)
        stored = await store.get_by_id(subscription_id)
        assert stored.status == SubscriptionStatus.PENDING
        assert stored.external_customer_ref == "cus_original"


class TestFailureIsolation:
    """Billing failures never undo or fail a confirmation."""

    @pytest.mark.asyncio
    async def test_billing_timeout_still_active(self, paid_checkout, confirmation_service, store, billing_service, outbox):
        billing_service.timeout = True
        subscription_id, token = await paid_checkout()

        result = await confirmation_service.confirm_by_subscription_id(subscription_id, token)

        assert result.activated
        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.ACTIVE
        entry = await outbox.get(subscription_id)
        assert entry.status == NotificationStatus.PENDING
        assert entry.attempts == 1

    @pytest.mark.asyncio
    async def test_notifier_crash_still_active(self, paid_checkout, confirmation_service, store, notifier):
        subscription_id, token = await paid_checkout()

        with patch.object(notifier.outbox, "record", side_effect=RuntimeError("outbox full")):
            result = await confirmation_service.confirm_by_session_token(token)

        assert result.activated
        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.ACTIVE


class TestConcurrencyConflicts:
    """Test losing the compare-and-set race."""

    @pytest.mark.asyncio
    async def test_lost_race_to_cancellation(self, paid_checkout, store, notifier, gateway):
        subscription_id, token = await paid_checkout()
        session = await gateway.get_session(token)

        async def cancel_then_return(_token):
            # another writer cancels while the gateway call is in flight
            current = await store.get_by_id(subscription_id)
            await store.compare_and_set(current.cancel(), SubscriptionStatus.PENDING)
            return session

        slow_gateway = AsyncMock()
        slow_gateway.get_session.side_effect = cancel_then_return
        service = ConfirmationService(
            subscription_store=store, payment_gateway=slow_gateway, billing_notifier=notifier
        )

        with pytest.raises(ConcurrencyConflictError):
            await service.confirm_by_subscription_id(subscription_id)
        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_lost_race_to_activation(self, paid_checkout, store, notifier, gateway):
        subscription_id, token = await paid_checkout()
        session = await gateway.get_session(token)

        async def activate_then_return(_token):
            current = await store.get_by_id(subscription_id)
            await store.compare_and_set(current.activate(), SubscriptionStatus.PENDING)
            return session

        slow_gateway = AsyncMock()
        slow_gateway.get_session.side_effect = activate_then_return
        service = ConfirmationService(
            subscription_store=store, payment_gateway=slow_gateway, billing_notifier=notifier
        )

        with patch.object(notifier, "notify_invoice_creation", new=AsyncMock()) as notify:
            result = await service.confirm_by_subscription_id(subscription_id)

        assert result.already_active
        assert not result.activated
        notify.assert_not_called()


class TestCancellation:
    """Caller cancellation is honored before the commit, not during it."""

    @pytest.mark.asyncio
    async def test_cancel_before_commit_leaves_pending(self, paid_checkout, store, notifier, gateway):
        subscription_id, token = await paid_checkout()
        started = asyncio.Event()

        async def hanging_get_session(_token):
            started.set()
            await asyncio.sleep(10)

        slow_gateway = AsyncMock()
        slow_gateway.get_session.side_effect = hanging_get_session
        service = ConfirmationService(
            subscription_store=store, payment_gateway=slow_gateway, billing_notifier=notifier
        )

        task = asyncio.create_task(service.confirm_by_subscription_id(subscription_id))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_during_notify_completes_commit(
        self, paid_checkout, confirmation_service, store, notifier, outbox
    ):
        subscription_id, token = await paid_checkout()
        notify_started = asyncio.Event()
        release = asyncio.Event()
        original_notify = notifier.notify_invoice_creation

        async def slow_notify(subscription, gateway_session=None):
            notify_started.set()
            await release.wait()
            return await original_notify(subscription, gateway_session)

        with patch.object(notifier, "notify_invoice_creation", new=slow_notify):
            task = asyncio.create_task(confirmation_service.confirm_by_session_token(token))
            await notify_started.wait()
            task.cancel()
            release.set()
            with pytest.raises(asyncio.CancelledError):
                await task
            # let the shielded commit finish
            for _ in range(50):
                entry = await outbox.find(subscription_id)
                if entry and entry.status == NotificationStatus.DELIVERED:
                    break
                await asyncio.sleep(0.01)

        assert (await store.get_by_id(subscription_id)).status == SubscriptionStatus.ACTIVE
        assert (await outbox.get(subscription_id)).status == NotificationStatus.DELIVERED
