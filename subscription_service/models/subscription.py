"""Subscription aggregate and status state machine.

Status, the payment session token and the gateway references are frozen
fields. They only change through the transition and assignment methods
below, each of which validates the move and returns a new Subscription.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from subscription_service.utils.token_generator import generate_subscription_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""

    PENDING = "Pending"  # Created, checkout not yet confirmed
    ACTIVE = "Active"  # Payment confirmed
    SUSPENDED = "Suspended"  # Temporarily disabled, can be reactivated
    CANCELLED = "Cancelled"  # Terminal
    EXPIRED = "Expired"  # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)

    @classmethod
    def parse(cls, value: str) -> "SubscriptionStatus":
        """Parse a status name case-insensitively.

        Raises:
            InvalidStatusError: If the value is not a known status
        """
        if isinstance(value, str):
            for status in cls:
                if status.value.lower() == value.strip().lower():
                    return status
        raise InvalidStatusError(f"Invalid subscription status: '{value}'")


class CancelReason(str, Enum):
    """Why a subscription was cancelled."""

    CHECKOUT_FAILED = "checkout_failed"  # Gateway session could not be created
    CUSTOMER_REQUEST = "customer_request"
    ADMIN = "admin"


# Legal status transitions. Cancelled and Expired are terminal.
ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.SUSPENDED, SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}
    ),
    SubscriptionStatus.SUSPENDED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}
    ),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}


class SubscriptionError(Exception):
    """Base exception for subscription errors."""

    pass


class InvalidStatusError(SubscriptionError, ValueError):
    """Raised when a status value cannot be parsed."""

    pass


class InvalidStateTransitionError(SubscriptionError):
    """Raised when a status transition is not allowed from the current status."""

    def __init__(
        self,
        subscription_id: str,
        current: SubscriptionStatus,
        target: SubscriptionStatus,
    ):
        self.subscription_id = subscription_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move subscription {subscription_id} from {current.value} to {target.value}"
        )


class ExternalReferenceConflictError(SubscriptionError):
    """Raised when a write-once reference would be overwritten with a different value."""

    def __init__(self, subscription_id: str, field_name: str, existing: str, attempted: str):
        self.subscription_id = subscription_id
        self.field_name = field_name
        self.existing = existing
        self.attempted = attempted
        super().__init__(
            f"Subscription {subscription_id} already has {field_name}='{existing}', "
            f"refusing to overwrite with '{attempted}'"
        )


class Subscription(BaseModel):
    """Subscription aggregate root."""

    id: str = Field(default_factory=generate_subscription_id, frozen=True, description="Opaque identifier")
    customer_id: str = Field(..., description="Owning customer")
    product_id: str = Field(..., description="Subscribed product")
    product_name: str = Field(..., description="Product name at time of purchase")
    price: Decimal = Field(..., ge=0, description="Price per billing period")
    currency: str = Field(default="eur", description="ISO 4217 currency code")
    subscription_number: str = Field(..., frozen=True, description="Human-readable number")

    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING, frozen=True)
    start_date: datetime = Field(default_factory=utcnow)
    end_date: Optional[datetime] = Field(None)
    auto_renew: bool = Field(default=True)
    cancel_reason: Optional[CancelReason] = Field(None)

    # Gateway correlation (write-once)
    payment_session_token: Optional[str] = Field(None, frozen=True, description="Checkout session id")
    external_customer_ref: Optional[str] = Field(None, frozen=True, description="Gateway customer id")
    external_subscription_ref: Optional[str] = Field(None, frozen=True, description="Gateway subscription id")

    created_at: datetime = Field(default_factory=utcnow, frozen=True)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "6f1c2d9e-8a4b-4f7e-9d3c-1b2a3c4d5e6f",
                "customer_id": "C1",
                "product_id": "P1",
                "product_name": "Fiber 500",
                "price": "29.99",
                "currency": "eur",
                "subscription_number": "SUB-20261019-4F3A9C1D",
                "status": "Pending",
                "auto_renew": True,
                "payment_session_token": "cs_test_a1b2c3...",
            }
        }

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def can_transition(self, target: SubscriptionStatus) -> bool:
        """Check whether moving to target is legal from the current status."""
        return target in ALLOWED_TRANSITIONS[self.status]

    def _transition(self, target: SubscriptionStatus, **updates) -> "Subscription":
        if not self.can_transition(target):
            raise InvalidStateTransitionError(self.id, self.status, target)
        return self.model_copy(update={"status": target, "updated_at": utcnow(), **updates})

    def activate(self) -> "Subscription":
        """Pending/Suspended -> Active."""
        return self._transition(SubscriptionStatus.ACTIVE)

    def suspend(self) -> "Subscription":
        """Active -> Suspended."""
        return self._transition(SubscriptionStatus.SUSPENDED)

    def cancel(
        self,
        reason: CancelReason = CancelReason.CUSTOMER_REQUEST,
        end_date: Optional[datetime] = None,
    ) -> "Subscription":
        """Any non-terminal status -> Cancelled. Disables auto-renew."""
        return self._transition(
            SubscriptionStatus.CANCELLED,
            end_date=end_date or utcnow(),
            auto_renew=False,
            cancel_reason=reason,
        )

    def expire(self, end_date: Optional[datetime] = None) -> "Subscription":
        """Active/Suspended -> Expired."""
        return self._transition(
            SubscriptionStatus.EXPIRED,
            end_date=end_date or utcnow(),
            auto_renew=False,
        )

    def transition_to(self, target: SubscriptionStatus) -> "Subscription":
        """Apply the guarded transition matching a target status."""
        if target == SubscriptionStatus.ACTIVE:
            return self.activate()
        if target == SubscriptionStatus.SUSPENDED:
            return self.suspend()
        if target == SubscriptionStatus.CANCELLED:
            return self.cancel(reason=CancelReason.ADMIN)
        if target == SubscriptionStatus.EXPIRED:
            return self.expire()
        raise InvalidStateTransitionError(self.id, self.status, target)

    def _check_write_once(self, field_name: str, value: Optional[str]) -> bool:
        """Return True if value should be written, raise on conflicting overwrite."""
        if not value:
            return False
        existing = getattr(self, field_name)
        if existing is None:
            return True
        if existing != value:
            raise ExternalReferenceConflictError(self.id, field_name, existing, value)
        return False

    def with_payment_session(self, session_token: str) -> "Subscription":
        """Attach the checkout session token (write-once)."""
        if not session_token:
            raise ValueError("Session token must be non-empty")
        if not self._check_write_once("payment_session_token", session_token):
            return self
        return self.model_copy(update={"payment_session_token": session_token, "updated_at": utcnow()})

    def with_external_refs(
        self,
        external_customer_ref: Optional[str] = None,
        external_subscription_ref: Optional[str] = None,
    ) -> "Subscription":
        """Attach gateway customer/subscription references (write-once each).

        Re-sending a value that is already stored is a no-op. A different
        value raises ExternalReferenceConflictError.
        """
        updates = {}
        if self._check_write_once("external_customer_ref", external_customer_ref):
            updates["external_customer_ref"] = external_customer_ref
        if self._check_write_once("external_subscription_ref", external_subscription_ref):
            updates["external_subscription_ref"] = external_subscription_ref
        if not updates:
            return self
        return self.model_copy(update={**updates, "updated_at": utcnow()})
