"""API response models for subscription endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from subscription_service.models.subscription import Subscription


class CreateSubscriptionResponse(BaseModel):
    """Response after starting a checkout."""

    subscriptionId: str = Field(..., description="Created (Pending) subscription id")
    checkoutUrl: str = Field(..., description="Hosted checkout page")

    class Config:
        json_schema_extra = {
            "example": {
                "subscriptionId": "6f1c2d9e-8a4b-4f7e-9d3c-1b2a3c4d5e6f",
                "checkoutUrl": "https://checkout.stripe.com/c/pay/cs_test_a1b2c3...",
            }
        }


class ConfirmSubscriptionResponse(BaseModel):
    """Response after confirming a checkout."""

    subscriptionId: str = Field(..., description="Subscription id")
    status: str = Field(..., description="Status after confirmation")
    activated: bool = Field(..., description="True if this call performed the activation")
    alreadyActive: bool = Field(..., description="True if the subscription was already active")


class SubscriptionResponse(BaseModel):
    """Subscription as exposed over the API."""

    id: str
    customerId: str
    productId: str
    productName: str
    price: Decimal
    currency: str
    subscriptionNumber: str
    status: str
    startDate: datetime
    endDate: Optional[datetime] = None
    autoRenew: bool
    cancelReason: Optional[str] = None
    paymentSessionToken: Optional[str] = None
    externalCustomerRef: Optional[str] = None
    externalSubscriptionRef: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime

    @field_serializer("price")
    def _serialize_price(self, price: Decimal) -> float:
        return float(price)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            customerId=subscription.customer_id,
            productId=subscription.product_id,
            productName=subscription.product_name,
            price=subscription.price,
            currency=subscription.currency,
            subscriptionNumber=subscription.subscription_number,
            status=subscription.status.value,
            startDate=subscription.start_date,
            endDate=subscription.end_date,
            autoRenew=subscription.auto_renew,
            cancelReason=subscription.cancel_reason.value if subscription.cancel_reason else None,
            paymentSessionToken=subscription.payment_session_token,
            externalCustomerRef=subscription.external_customer_ref,
            externalSubscriptionRef=subscription.external_subscription_ref,
            createdAt=subscription.created_at,
            updatedAt=subscription.updated_at,
        )


class NotificationResponse(BaseModel):
    """Invoice notification outbox entry."""

    idempotencyKey: str
    subscriptionId: str
    status: str
    attempts: int
    lastError: Optional[str] = None
    nextAttemptAt: Optional[datetime] = None
    createdAt: datetime
    deliveredAt: Optional[datetime] = None


class DispatchResponse(BaseModel):
    """Result of a manual dispatcher run."""

    attempted: int = Field(..., description="Entries attempted in this run")
    delivered: int = Field(..., description="Entries delivered in this run")
    message: str


class ErrorResponse(BaseModel):
    """Error response body."""

    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable description")
