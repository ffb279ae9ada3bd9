"""Confirmation Service - completes the subscription purchase flow.

After the customer returns from hosted checkout, the gateway is re-queried
for the authoritative session state. A paid session moves the subscription
Pending -> Active (attaching gateway references) and triggers a best-effort
invoice notification. Confirmation is idempotent: repeated or concurrent
calls produce exactly one activation and one notification.
"""

import asyncio
import threading
from typing import Optional

from pydantic import BaseModel, Field

from subscription_service.logging_config import get_logger, truncate_token
from subscription_service.models.gateway import GatewaySession
from subscription_service.models.subscription import (
    InvalidStateTransitionError,
    Subscription,
    SubscriptionError,
    SubscriptionStatus,
)
from subscription_service.repositories.subscription_store import (
    SubscriptionStore,
    get_subscription_store,
)
from subscription_service.services.billing_notifier import BillingNotifier, get_billing_notifier
from subscription_service.services.payment_gateway import (
    PaymentGateway,
    PaymentNotCompletedError,
    get_payment_gateway,
)
from subscription_service.state_logger import (
    log_external_refs_assigned,
    log_subscription_state_change,
)

logger = get_logger(__name__)


class SessionMismatchError(SubscriptionError, ValueError):
    """Raised when a checkout session does not belong to the subscription."""

    pass


class ConcurrencyConflictError(SubscriptionError):
    """Raised when a concurrent writer changed the subscription status first."""

    pass


class ConfirmationResult(BaseModel):
    """Outcome of a confirmation call."""

    subscription: Subscription = Field(..., description="Subscription after confirmation")
    activated: bool = Field(..., description="True if this call performed the activation")
    already_active: bool = Field(..., description="True if the subscription was active already")


class ConfirmationService:
    """Confirms paid checkout sessions and activates subscriptions."""

    def __init__(
        self,
        subscription_store: Optional[SubscriptionStore] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        billing_notifier: Optional[BillingNotifier] = None,
    ):
        """Initialize confirmation service.

        Args:
            subscription_store: Subscription store (uses global if not provided)
            payment_gateway: Payment gateway (uses global if not provided)
            billing_notifier: Billing notifier (uses global if not provided)
        """
        self._store = subscription_store if subscription_store is not None else get_subscription_store()
        self._gateway = payment_gateway if payment_gateway is not None else get_payment_gateway()
        self._notifier = billing_notifier if billing_notifier is not None else get_billing_notifier()

    async def confirm_by_subscription_id(
        self,
        subscription_id: str,
        session_token: Optional[str] = None,
    ) -> ConfirmationResult:
        """Confirm a subscription by its id.

        Args:
            subscription_id: Subscription to confirm
            session_token: Session token from the success redirect. When
                given it must equal the stored token; when empty the stored
                token is used.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
            SessionMismatchError: If the supplied token is not the stored one
            See _confirm() for the remaining errors
        """
        subscription = await self._store.get_by_id(subscription_id)
        if session_token and session_token != subscription.payment_session_token:
            logger.warning(
                "confirmation_session_mismatch",
                subscription_id=subscription_id,
                session_token=truncate_token(session_token),
            )
            raise SessionMismatchError(
                f"Session token does not belong to subscription {subscription_id}"
            )
        return await self._confirm(subscription)

    async def confirm_by_session_token(self, session_token: str) -> ConfirmationResult:
        """Confirm the subscription bound to a checkout session token.

        Raises:
            ValueError: If session_token is empty
            SubscriptionNotFoundError: If no subscription has this token
            See _confirm() for the remaining errors
        """
        if not session_token:
            raise ValueError("Session token must be non-empty")
        subscription = await self._store.get_by_session_token(session_token)
        return await self._confirm(subscription)

    async def _confirm(self, subscription: Subscription) -> ConfirmationResult:
        """Shared confirmation routine.

        Raises:
            InvalidStateTransitionError: If the subscription is Cancelled or Expired
            ExternalGatewayError: If the gateway is unreachable or the session is unknown
            PaymentNotCompletedError: If the session is not paid
            SessionMismatchError: If the session metadata names another subscription
            ExternalReferenceConflictError: If stored gateway references differ
            ConcurrencyConflictError: If a concurrent writer moved the status elsewhere
        """
        if subscription.is_active:
            logger.info("subscription_already_active", subscription_id=subscription.id)
            return ConfirmationResult(subscription=subscription, activated=False, already_active=True)

        if subscription.status.is_terminal:
            raise InvalidStateTransitionError(subscription.id, subscription.status, SubscriptionStatus.ACTIVE)

        token = subscription.payment_session_token
        if not token:
            raise SessionMismatchError(f"Subscription {subscription.id} has no payment session")

        gateway_session = await self._gateway.get_session(token)
        if not gateway_session.completed:
            logger.warning(
                "confirmation_payment_not_completed",
                subscription_id=subscription.id,
                session_status=gateway_session.status,
                payment_status=gateway_session.payment_status,
            )
            raise PaymentNotCompletedError(
                f"Checkout session for subscription {subscription.id} is not paid "
                f"(status={gateway_session.status}, payment_status={gateway_session.payment_status})"
            )

        metadata_id = gateway_session.metadata.get("subscriptionId")
        if metadata_id and metadata_id != subscription.id:
            raise SessionMismatchError(
                f"Checkout session belongs to subscription {metadata_id}, not {subscription.id}"
            )

        activated = subscription.with_external_refs(
            external_customer_ref=gateway_session.external_customer_ref,
            external_subscription_ref=gateway_session.external_subscription_ref,
        ).activate()

        # Once the write starts, caller cancellation no longer interrupts it
        return await asyncio.shield(self._commit(subscription, activated, gateway_session))

    async def _commit(
        self,
        current: Subscription,
        activated: Subscription,
        gateway_session: GatewaySession,
    ) -> ConfirmationResult:
        won = await self._store.compare_and_set(activated, expected_status=current.status)
        if not won:
            latest = await self._store.get_by_id(current.id)
            if latest.is_active:
                logger.info(
                    "confirmation_lost_race",
                    subscription_id=current.id,
                    resolution="already_active",
                )
                return ConfirmationResult(subscription=latest, activated=False, already_active=True)
            raise ConcurrencyConflictError(
                f"Subscription {current.id} moved to {latest.status.value} during confirmation"
            )

        log_subscription_state_change(
            current.id,
            current.status.value,
            activated.status.value,
            reason="checkout_confirmed",
            customer_id=activated.customer_id,
            subscription_number=activated.subscription_number,
        )
        if (
            activated.external_customer_ref != current.external_customer_ref
            or activated.external_subscription_ref != current.external_subscription_ref
        ):
            log_external_refs_assigned(
                current.id,
                activated.external_customer_ref,
                activated.external_subscription_ref,
            )

        await self._notifier.notify_invoice_creation(activated, gateway_session)

        logger.info(
            "subscription_confirmed",
            subscription_id=activated.id,
            customer_id=activated.customer_id,
        )
        return ConfirmationResult(subscription=activated, activated=True, already_active=False)


_confirmation_service: Optional[ConfirmationService] = None
_confirmation_service_lock = threading.Lock()


def get_confirmation_service() -> ConfirmationService:
    """Get or create the singleton ConfirmationService instance."""
    global _confirmation_service
    if _confirmation_service is None:
        with _confirmation_service_lock:
            if _confirmation_service is None:
                _confirmation_service = ConfirmationService()
    return _confirmation_service


def reset_confirmation_service() -> None:
    """Drop the singleton service (for testing)."""
    global _confirmation_service
    with _confirmation_service_lock:
        _confirmation_service = None
