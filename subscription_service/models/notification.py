"""Invoice notification models.

InvoiceCreationRequest matches the billing service's
POST /api/invoices/from-subscription payload. NotificationRecord is the
outbox entry tracking delivery of that request.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer


class InvoiceCreationRequest(BaseModel):
    """Payload for POST /api/invoices/from-subscription."""

    customerId: str = Field(..., description="Customer id")
    subscriptionId: str = Field(..., description="Subscription id, also the idempotency key")
    productName: str = Field(..., description="Invoiced product")
    price: Decimal = Field(..., ge=0, description="Price for the period")
    externalInvoiceRef: Optional[str] = Field(None, description="Gateway invoice id")
    externalCustomerRef: Optional[str] = Field(None, description="Gateway customer id")
    invoicePdfUrl: Optional[str] = Field(None, description="Gateway-hosted invoice PDF")
    periodStart: datetime = Field(..., description="Billing period start (inclusive)")
    periodEnd: datetime = Field(..., description="Billing period end (exclusive)")

    @field_serializer("price")
    def _serialize_price(self, price: Decimal) -> float:
        return float(price)

    class Config:
        json_schema_extra = {
            "example": {
                "customerId": "C1",
                "subscriptionId": "6f1c2d9e-8a4b-4f7e-9d3c-1b2a3c4d5e6f",
                "productName": "Fiber 500",
                "price": 29.99,
                "externalInvoiceRef": "in_1Xyz9Uvw",
                "externalCustomerRef": "cus_Q1w2e3r4",
                "periodStart": "2026-10-19T12:00:00Z",
                "periodEnd": "2026-11-18T12:00:00Z",
            }
        }


class NotificationStatus(str, Enum):
    """Outbox entry delivery status."""

    PENDING = "pending"  # Waiting for (re)delivery
    DELIVERED = "delivered"  # Billing accepted the request
    ABANDONED = "abandoned"  # Gave up after max attempts


class NotificationRecord(BaseModel):
    """Outbox entry for one invoice notification."""

    idempotency_key: str = Field(..., description="Deduplication key (subscription id)")
    subscription_id: str = Field(..., description="Subscription this notification belongs to")
    payload: dict[str, Any] = Field(..., description="Serialized InvoiceCreationRequest")
    status: NotificationStatus = Field(default=NotificationStatus.PENDING)
    attempts: int = Field(default=0, ge=0, description="Delivery attempts so far")
    last_error: Optional[str] = Field(None, description="Error from the last failed attempt")
    next_attempt_at: Optional[datetime] = Field(None, description="Earliest time of the next attempt")
    created_at: datetime = Field(..., description="When the entry was recorded")
    delivered_at: Optional[datetime] = Field(None, description="When billing accepted the request")
