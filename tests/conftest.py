"""Shared fixtures: in-memory stores, the sandbox gateway and mocked collaborators."""

from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from subscription_service.main import create_app
from subscription_service.models.settings import NotificationConfig
from subscription_service.repositories.notification_outbox import NotificationOutbox, get_notification_outbox
from subscription_service.repositories.subscription_store import SubscriptionStore, get_subscription_store
from subscription_service.services.billing_notifier import BillingNotifier
from subscription_service.services.checkout_service import CheckoutService, get_checkout_service
from subscription_service.services.confirmation_service import ConfirmationService, get_confirmation_service
from subscription_service.services.customer_client import CustomerClient
from subscription_service.services.notification_dispatcher import NotificationDispatcher, get_notification_dispatcher
from subscription_service.services.payment_gateway import LocalPaymentGateway, get_payment_gateway
from subscription_service.services.subscription_manager import SubscriptionManager, get_subscription_manager

CUSTOMER_BASE_URL = "http://customers.test"
BILLING_BASE_URL = "http://billing.test"

CUSTOMERS = {
    "C1": {"id": "C1", "email": "ada@example.com", "firstName": "Ada", "lastName": "Lovelace"},
    "C2": {"id": "C2", "email": "grace@example.com"},
}


class CustomerServiceStub:
    """httpx MockTransport handler for GET /api/customers/{id}."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.down = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        customer_id = request.url.path.rsplit("/", 1)[-1]
        customer = CUSTOMERS.get(customer_id)
        if customer is None:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=customer)


class BillingServiceStub:
    """httpx MockTransport handler for POST /api/invoices/from-subscription.

    Set status_code to make billing reject requests, or timeout=True to
    make every request time out.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 201
        self.timeout = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(self.status_code, json={"id": f"INV-{len(self.requests)}"})

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def store():
    """Fresh SubscriptionStore for each test."""
    store = SubscriptionStore()
    yield store
    store.clear()


@pytest.fixture
def outbox():
    """Fresh NotificationOutbox for each test."""
    outbox = NotificationOutbox()
    yield outbox
    outbox.clear()


@pytest.fixture
def gateway():
    """In-process sandbox payment gateway."""
    gateway = LocalPaymentGateway(checkout_base_url="http://localhost:8080/sandbox/checkout")
    yield gateway
    gateway.clear()


@pytest.fixture
def customer_service():
    return CustomerServiceStub()


@pytest.fixture
def customer_client(customer_service):
    http_client = httpx.AsyncClient(base_url=CUSTOMER_BASE_URL, transport=httpx.MockTransport(customer_service))
    return CustomerClient(base_url=CUSTOMER_BASE_URL, http_client=http_client)


@pytest.fixture
def billing_service():
    return BillingServiceStub()


@pytest.fixture
def notification_settings():
    return NotificationConfig(max_attempts=3, retry_backoff_seconds=30, billing_period="P1M")


@pytest.fixture
def notifier_factory(billing_service, outbox, notification_settings):
    """Build a BillingNotifier against the billing stub, with optional overrides."""

    def make(settings: Optional[NotificationConfig] = None, clock=None) -> BillingNotifier:
        http_client = httpx.AsyncClient(base_url=BILLING_BASE_URL, transport=httpx.MockTransport(billing_service))
        kwargs = {"clock": clock} if clock is not None else {}
        return BillingNotifier(
            base_url=BILLING_BASE_URL,
            settings=settings or notification_settings,
            outbox=outbox,
            http_client=http_client,
            **kwargs,
        )

    return make


@pytest.fixture
def notifier(notifier_factory):
    return notifier_factory()


@pytest.fixture
def checkout_service(store, gateway, customer_client):
    return CheckoutService(
        subscription_store=store,
        payment_gateway=gateway,
        customer_client=customer_client,
        subscription_number_prefix="SUB",
        currency="eur",
        interval="month",
    )


@pytest.fixture
def confirmation_service(store, gateway, notifier):
    return ConfirmationService(
        subscription_store=store,
        payment_gateway=gateway,
        billing_notifier=notifier,
    )


@pytest.fixture
def manager(store):
    return SubscriptionManager(subscription_store=store)


@pytest.fixture
def start_checkout(checkout_service):
    """Run checkout with the usual test values (customer C1, product P1, 29.99)."""

    async def start(customer_id: str = "C1", product_id: str = "P1", price: str = "29.99"):
        return await checkout_service.initiate_checkout(
            customer_id=customer_id,
            product_id=product_id,
            product_name="Fiber 500",
            price=price,
            success_url="https://shop.example.com/success",
            cancel_url="https://shop.example.com/cancel",
        )

    return start


@pytest.fixture
def dispatcher(notifier, outbox):
    return NotificationDispatcher(notifier=notifier, outbox=outbox, interval_seconds=0.01)


@pytest.fixture
def app(store, outbox, gateway, checkout_service, confirmation_service, manager, dispatcher):
    """Application wired to the per-test services instead of the singletons."""
    app = create_app()
    app.dependency_overrides.update(
        {
            get_subscription_store: lambda: store,
            get_notification_outbox: lambda: outbox,
            get_payment_gateway: lambda: gateway,
            get_checkout_service: lambda: checkout_service,
            get_confirmation_service: lambda: confirmation_service,
            get_subscription_manager: lambda: manager,
            get_notification_dispatcher: lambda: dispatcher,
        }
    )
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)
