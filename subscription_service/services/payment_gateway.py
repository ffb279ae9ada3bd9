"""Payment gateway adapters for hosted checkout sessions.

Responsibilities:
- Create hosted checkout sessions for a recurring monthly price
- Re-query the authoritative session state during confirmation
- Translate provider errors into ExternalGatewayError

Two implementations share the PaymentGateway interface:
- StripePaymentGateway: Stripe Checkout in subscription mode
- LocalPaymentGateway: in-process sandbox for development and tests
"""

import threading
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe

from subscription_service.logging_config import get_logger, truncate_token
from subscription_service.models.gateway import CheckoutSession, GatewaySession
from subscription_service.utils.token_generator import generate_external_ref, generate_session_token

logger = get_logger(__name__)

COMPLETED_SESSION_STATUS = "complete"
SETTLED_PAYMENT_STATUSES = ("paid", "no_payment_required")


class ExternalGatewayError(Exception):
    """Raised when the payment gateway is unreachable or rejects the request."""

    pass


class PaymentNotCompletedError(ExternalGatewayError):
    """Raised when the gateway reports the checkout session as not paid."""

    pass


def to_minor_units(price: Decimal) -> int:
    """Convert a decimal price to minor currency units (cents), rounding half up."""
    return int((Decimal(price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """Hosted checkout provider."""

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_email: str,
        product_name: str,
        unit_amount_minor: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        interval: str = "month",
    ) -> CheckoutSession:
        """Create a hosted checkout session.

        Raises:
            ExternalGatewayError: If the gateway call fails
        """

    @abstractmethod
    async def get_session(self, session_token: str) -> GatewaySession:
        """Fetch authoritative session state.

        Raises:
            ExternalGatewayError: If the gateway call fails or the session is unknown
        """

    async def close(self) -> None:
        """Release provider resources."""
        return None


def _ref(value: Any) -> Optional[str]:
    """Return an id from a Stripe field that may be a string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _metadata(session: Any) -> Dict[str, str]:
    metadata = getattr(session, "metadata", None)
    if not metadata:
        return {}
    if hasattr(metadata, "to_dict"):
        metadata = metadata.to_dict()
    return {str(k): str(v) for k, v in dict(metadata).items()}


class StripePaymentGateway(PaymentGateway):
    """Stripe Checkout adapter using the SDK's async methods."""

    def __init__(self, api_key: str, currency: str = "eur"):
        if not api_key:
            raise ValueError("Stripe API key is required")
        self._api_key = api_key
        self._currency = currency

    async def create_checkout_session(
        self,
        customer_email: str,
        product_name: str,
        unit_amount_minor: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        interval: str = "month",
    ) -> CheckoutSession:
        try:
            session = await stripe.checkout.Session.create_async(
                api_key=self._api_key,
                mode="subscription",
                payment_method_types=["card"],
                customer_email=customer_email,
                line_items=[
                    {
                        "price_data": {
                            "currency": self._currency,
                            "unit_amount": unit_amount_minor,
                            "recurring": {"interval": interval},
                            "product_data": {"name": product_name},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                idempotency_key=f"checkout:{metadata.get('subscriptionId', '')}",
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe_checkout_create_failed",
                error=str(e),
                error_type=type(e).__name__,
                subscription_id=metadata.get("subscriptionId"),
            )
            raise ExternalGatewayError(f"Stripe rejected checkout session creation: {e}") from e

        logger.info(
            "stripe_checkout_session_created",
            session_token=truncate_token(session.id),
            subscription_id=metadata.get("subscriptionId"),
            unit_amount=unit_amount_minor,
        )
        return CheckoutSession(session_token=session.id or "", checkout_url=session.url or "")

    async def get_session(self, session_token: str) -> GatewaySession:
        try:
            session = await stripe.checkout.Session.retrieve_async(
                session_token,
                api_key=self._api_key,
                expand=["invoice"],
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe_session_retrieve_failed",
                session_token=truncate_token(session_token),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalGatewayError(f"Could not retrieve checkout session: {e}") from e

        status = getattr(session, "status", None)
        payment_status = getattr(session, "payment_status", None)
        invoice = getattr(session, "invoice", None)

        return GatewaySession(
            session_token=session.id,
            completed=status == COMPLETED_SESSION_STATUS and payment_status in SETTLED_PAYMENT_STATUSES,
            status=status,
            payment_status=payment_status,
            external_customer_ref=_ref(getattr(session, "customer", None)),
            external_subscription_ref=_ref(getattr(session, "subscription", None)),
            external_invoice_ref=_ref(invoice),
            invoice_pdf_url=None if invoice is None or isinstance(invoice, str) else getattr(invoice, "invoice_pdf", None),
            metadata=_metadata(session),
        )


class LocalPaymentGateway(PaymentGateway):
    """In-process sandbox gateway.

    Sessions start open and unpaid. complete_session() simulates the customer
    paying on the hosted page and assigns gateway references.
    """

    def __init__(self, checkout_base_url: str = "http://localhost:8080/sandbox/checkout"):
        self._checkout_base_url = checkout_base_url.rstrip("/")
        self._sessions: Dict[str, GatewaySession] = {}
        self._lock = threading.RLock()

    async def create_checkout_session(
        self,
        customer_email: str,
        product_name: str,
        unit_amount_minor: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        interval: str = "month",
    ) -> CheckoutSession:
        token = generate_session_token()
        with self._lock:
            self._sessions[token] = GatewaySession(
                session_token=token,
                status="open",
                payment_status="unpaid",
                metadata=dict(metadata),
            )
        logger.info(
            "sandbox_checkout_session_created",
            session_token=truncate_token(token),
            customer_email=customer_email,
            product_name=product_name,
            unit_amount=unit_amount_minor,
        )
        return CheckoutSession(session_token=token, checkout_url=f"{self._checkout_base_url}/{token}")

    async def get_session(self, session_token: str) -> GatewaySession:
        with self._lock:
            session = self._sessions.get(session_token)
            if session is None:
                raise ExternalGatewayError("No such checkout session")
            return session.model_copy(deep=True)

    def complete_session(self, session_token: str, paid: bool = True) -> GatewaySession:
        """Simulate the customer finishing checkout.

        Raises:
            ExternalGatewayError: If the session is unknown
        """
        with self._lock:
            session = self._sessions.get(session_token)
            if session is None:
                raise ExternalGatewayError("No such checkout session")
            if paid and not session.completed:
                session = session.model_copy(
                    update={
                        "completed": True,
                        "status": COMPLETED_SESSION_STATUS,
                        "payment_status": "paid",
                        "external_customer_ref": generate_external_ref("cus"),
                        "external_subscription_ref": generate_external_ref("sub"),
                        "external_invoice_ref": generate_external_ref("in"),
                    }
                )
                self._sessions[session_token] = session
            logger.info(
                "sandbox_checkout_completed",
                session_token=truncate_token(session_token),
                paid=session.completed,
            )
            return session.model_copy(deep=True)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


_gateway_instance: Optional[PaymentGateway] = None
_gateway_lock = threading.Lock()


def create_payment_gateway() -> PaymentGateway:
    """Build the gateway selected by payment_gateway.provider in config."""
    from subscription_service.config import get_config

    config = get_config()
    gateway_config = config.payment_gateway
    if gateway_config.provider == "stripe":
        logger.info("payment_gateway_selected", provider="stripe", currency=gateway_config.currency)
        return StripePaymentGateway(api_key=config.stripe_api_key, currency=gateway_config.currency)
    logger.info("payment_gateway_selected", provider="local")
    return LocalPaymentGateway(checkout_base_url=gateway_config.local_checkout_base_url)


def get_payment_gateway() -> PaymentGateway:
    """Get or create the singleton PaymentGateway instance."""
    global _gateway_instance
    if _gateway_instance is None:
        with _gateway_lock:
            if _gateway_instance is None:
                _gateway_instance = create_payment_gateway()
    return _gateway_instance


def reset_payment_gateway() -> None:
    """Drop the singleton gateway (for testing)."""
    global _gateway_instance
    with _gateway_lock:
        _gateway_instance = None
