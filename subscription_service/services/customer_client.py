"""HTTP client for the Customer collaborator.

Only the lookup needed at checkout time is implemented:
GET {base_url}/api/customers/{customerId}
"""

import threading
from typing import Optional

import httpx
from pydantic import ValidationError

from subscription_service.logging_config import get_logger
from subscription_service.models.gateway import CustomerProfile

logger = get_logger(__name__)


class CustomerNotFoundError(Exception):
    """Raised when the Customer collaborator does not know the customer."""

    pass


class CustomerServiceError(Exception):
    """Raised when the Customer collaborator is unreachable or misbehaves."""

    pass


class CustomerClient:
    """Async client for customer lookups."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize customer client.

        Args:
            base_url: Customer service base URL
            timeout_seconds: Per-request timeout
            http_client: Pre-configured client (tests inject one with a MockTransport)
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
        )

    async def get_customer_by_id(self, customer_id: str) -> CustomerProfile:
        """Look up a customer.

        Raises:
            CustomerNotFoundError: If the customer does not exist
            CustomerServiceError: On transport errors or unexpected responses
        """
        try:
            response = await self._client.get(f"/api/customers/{customer_id}")
        except httpx.HTTPError as e:
            logger.error(
                "customer_lookup_failed",
                customer_id=customer_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CustomerServiceError(f"Customer service unavailable: {e}") from e

        if response.status_code == 404:
            logger.warning("customer_not_found", customer_id=customer_id)
            raise CustomerNotFoundError(f"Customer not found: {customer_id}")

        if response.status_code != 200:
            logger.error(
                "customer_lookup_unexpected_status",
                customer_id=customer_id,
                status_code=response.status_code,
            )
            raise CustomerServiceError(
                f"Customer service returned HTTP {response.status_code} for {customer_id}"
            )

        try:
            profile = CustomerProfile.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise CustomerServiceError(f"Malformed customer payload for {customer_id}: {e}") from e

        logger.debug("customer_lookup_succeeded", customer_id=customer_id)
        return profile

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


_customer_client: Optional[CustomerClient] = None
_customer_client_lock = threading.Lock()


def get_customer_client() -> CustomerClient:
    """Get or create the singleton CustomerClient instance."""
    global _customer_client
    if _customer_client is None:
        with _customer_client_lock:
            if _customer_client is None:
                from subscription_service.config import get_config

                settings = get_config().customer_service
                _customer_client = CustomerClient(
                    base_url=settings.base_url,
                    timeout_seconds=settings.timeout_seconds,
                )
    return _customer_client


def reset_customer_client() -> None:
    """Drop the singleton client (for testing)."""
    global _customer_client
    with _customer_client_lock:
        _customer_client = None
