"""API request models for subscription endpoints."""

from decimal import Decimal

from pydantic import BaseModel, Field


class CreateSubscriptionRequest(BaseModel):
    """Request to start a subscription checkout."""

    customerId: str = Field(..., min_length=1, description="Customer purchasing the subscription")
    productId: str = Field(..., min_length=1, description="Product to subscribe to")
    productName: str = Field(..., min_length=1, description="Product name shown at checkout")
    price: Decimal = Field(..., ge=0, description="Monthly price")
    successUrl: str = Field(..., min_length=1, description="Redirect target after payment")
    cancelUrl: str = Field(..., min_length=1, description="Redirect target if checkout is abandoned")

    class Config:
        json_schema_extra = {
            "example": {
                "customerId": "C1",
                "productId": "P1",
                "productName": "Fiber 500",
                "price": 29.99,
                "successUrl": "https://shop.example.com/subscription/success",
                "cancelUrl": "https://shop.example.com/subscription/cancel",
            }
        }


class ConfirmSubscriptionRequest(BaseModel):
    """Request body for POST /subscriptions/{id}/confirm."""

    sessionToken: str = Field(default="", description="Checkout session id from the redirect")

    class Config:
        json_schema_extra = {"example": {"sessionToken": "cs_test_a1b2c3..."}}


class ConfirmBySessionRequest(BaseModel):
    """Request body for POST /subscriptions/confirm-by-session."""

    sessionToken: str = Field(..., min_length=1, description="Checkout session id from the redirect")

    class Config:
        json_schema_extra = {"example": {"sessionToken": "cs_test_a1b2c3..."}}


class UpdateStatusRequest(BaseModel):
    """Administrative status change."""

    status: str = Field(..., description="Target status: Active, Suspended, Cancelled or Expired")

    class Config:
        json_schema_extra = {"example": {"status": "Suspended"}}


class CompleteSandboxCheckoutRequest(BaseModel):
    """Simulate the customer finishing a sandbox checkout."""

    paid: bool = Field(default=True, description="False leaves the session unpaid")
