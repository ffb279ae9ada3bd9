"""Checkout Service - starts the subscription purchase flow.

Creates a Pending subscription and a hosted checkout session for it. The
subscription is persisted before the gateway is called so the session
metadata can reference its id.
"""

import asyncio
import threading
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from subscription_service.logging_config import get_logger, truncate_token
from subscription_service.models.subscription import CancelReason, Subscription, SubscriptionStatus
from subscription_service.repositories.subscription_store import (
    SubscriptionStore,
    get_subscription_store,
)
from subscription_service.services.customer_client import CustomerClient, get_customer_client
from subscription_service.services.payment_gateway import (
    ExternalGatewayError,
    PaymentGateway,
    get_payment_gateway,
    to_minor_units,
)
from subscription_service.state_logger import (
    log_payment_session_assigned,
    log_subscription_state_change,
)
from subscription_service.utils.token_generator import generate_subscription_number

logger = get_logger(__name__)


class CheckoutResult(BaseModel):
    """Outcome of a successful checkout initiation."""

    subscription_id: str = Field(..., description="Id of the new Pending subscription")
    checkout_url: str = Field(..., description="Hosted checkout page for the customer")


class CheckoutService:
    """Initiates hosted checkout for new subscriptions."""

    def __init__(
        self,
        subscription_store: Optional[SubscriptionStore] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        customer_client: Optional[CustomerClient] = None,
        subscription_number_prefix: Optional[str] = None,
        currency: Optional[str] = None,
        interval: Optional[str] = None,
    ):
        """Initialize checkout service.

        Args:
            subscription_store: Subscription store (uses global if not provided)
            payment_gateway: Payment gateway (uses global if not provided)
            customer_client: Customer collaborator client (uses global if not provided)
            subscription_number_prefix: Prefix for subscription numbers (defaults to config)
            currency: Currency code (defaults to config)
            interval: Recurring interval (defaults to config)
        """
        self._store = subscription_store if subscription_store is not None else get_subscription_store()
        self._gateway = payment_gateway if payment_gateway is not None else get_payment_gateway()
        self._customers = customer_client if customer_client is not None else get_customer_client()

        if subscription_number_prefix is None or currency is None or interval is None:
            from subscription_service.config import get_config

            config = get_config()
            subscription_number_prefix = subscription_number_prefix or config.subscription_number_prefix
            currency = currency or config.payment_gateway.currency
            interval = interval or config.payment_gateway.interval

        self._number_prefix = subscription_number_prefix
        self._currency = currency
        self._interval = interval

    async def initiate_checkout(
        self,
        customer_id: str,
        product_id: str,
        product_name: str,
        price: Decimal,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutResult:
        """Create a Pending subscription and a hosted checkout session for it.

        Args:
            customer_id: Customer purchasing the subscription
            product_id: Product being subscribed to
            product_name: Product name shown on the checkout page
            price: Price per billing period
            success_url: Redirect target after successful payment
            cancel_url: Redirect target if the customer abandons checkout

        Returns:
            CheckoutResult with subscription id and checkout URL

        Raises:
            ValueError: If price is negative or a URL/id is empty
            CustomerNotFoundError: If the customer does not exist
            CustomerServiceError: If the Customer collaborator is unavailable
            ExternalGatewayError: If the checkout session could not be created or bound

        Any failure after the subscription is stored, cancellation included,
        leaves it Cancelled with reason checkout_failed before propagating.
        """
        price = Decimal(str(price))
        if price < 0:
            raise ValueError(f"Price must be non-negative, got {price}")
        for name, value in (
            ("customer_id", customer_id),
            ("product_id", product_id),
            ("success_url", success_url),
            ("cancel_url", cancel_url),
        ):
            if not value or not value.strip():
                raise ValueError(f"{name} must be non-empty")

        customer = await self._customers.get_customer_by_id(customer_id)

        subscription = Subscription(
            customer_id=customer_id,
            product_id=product_id,
            product_name=product_name,
            price=price,
            currency=self._currency,
            subscription_number=generate_subscription_number(prefix=self._number_prefix),
        )
        await self._store.add(subscription)

        logger.info(
            "checkout_initiated",
            subscription_id=subscription.id,
            subscription_number=subscription.subscription_number,
            customer_id=customer_id,
            product_id=product_id,
            price=str(price),
        )

        pending = subscription
        try:
            session = await self._gateway.create_checkout_session(
                customer_email=customer.email,
                product_name=product_name,
                unit_amount_minor=to_minor_units(price),
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={
                    "subscriptionId": subscription.id,
                    "customerId": customer_id,
                    "productId": product_id,
                },
                interval=self._interval,
            )
            if not session.session_token or not session.checkout_url:
                raise ExternalGatewayError("Gateway returned an empty session token or checkout URL")

            subscription = subscription.with_payment_session(session.session_token)
            try:
                await self._store.update(subscription)
            except ValueError as e:
                raise ExternalGatewayError(f"Gateway returned an unusable session token: {e}") from e
        except (Exception, asyncio.CancelledError) as e:
            # no Pending row may outlive a failed or abandoned checkout
            await asyncio.shield(self._mark_checkout_failed(pending, str(e) or type(e).__name__))
            raise

        log_payment_session_assigned(subscription.id, session.session_token, customer_id=customer_id)

        logger.info(
            "checkout_session_created",
            subscription_id=subscription.id,
            session_token=truncate_token(session.session_token),
        )
        return CheckoutResult(subscription_id=subscription.id, checkout_url=session.checkout_url)

    async def _mark_checkout_failed(self, subscription: Subscription, error: str) -> None:
        cancelled = subscription.cancel(reason=CancelReason.CHECKOUT_FAILED)
        await self._store.update(cancelled)
        log_subscription_state_change(
            subscription.id,
            SubscriptionStatus.PENDING.value,
            SubscriptionStatus.CANCELLED.value,
            reason=CancelReason.CHECKOUT_FAILED.value,
        )
        logger.error(
            "checkout_session_failed",
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            error=error,
        )


_checkout_service: Optional[CheckoutService] = None
_checkout_service_lock = threading.Lock()


def get_checkout_service() -> CheckoutService:
    """Get or create the singleton CheckoutService instance."""
    global _checkout_service
    if _checkout_service is None:
        with _checkout_service_lock:
            if _checkout_service is None:
                _checkout_service = CheckoutService()
    return _checkout_service


def reset_checkout_service() -> None:
    """Drop the singleton service (for testing)."""
    global _checkout_service
    with _checkout_service_lock:
        _checkout_service = None
