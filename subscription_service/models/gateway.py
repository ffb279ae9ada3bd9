"""Collaborator data models: payment gateway sessions and customer profiles."""

from typing import Optional

from pydantic import BaseModel, Field


class CheckoutSession(BaseModel):
    """Result of creating a hosted checkout session."""

    session_token: str = Field(..., description="Gateway checkout session id")
    checkout_url: str = Field(..., description="Hosted checkout page to redirect the customer to")


class GatewaySession(BaseModel):
    """Authoritative checkout session state as reported by the gateway."""

    session_token: str = Field(..., description="Gateway checkout session id")
    completed: bool = Field(default=False, description="Whether checkout finished and payment is settled")
    status: Optional[str] = Field(None, description="Raw gateway session status")
    payment_status: Optional[str] = Field(None, description="Raw gateway payment status")
    external_customer_ref: Optional[str] = Field(None, description="Gateway customer id")
    external_subscription_ref: Optional[str] = Field(None, description="Gateway subscription id")
    external_invoice_ref: Optional[str] = Field(None, description="Gateway invoice id")
    invoice_pdf_url: Optional[str] = Field(None, description="Hosted invoice PDF, when known")
    metadata: dict[str, str] = Field(default_factory=dict, description="Correlation metadata")

    class Config:
        json_schema_extra = {
            "example": {
                "session_token": "cs_test_a1b2c3...",
                "completed": True,
                "status": "complete",
                "payment_status": "paid",
                "external_customer_ref": "cus_Q1w2e3r4",
                "external_subscription_ref": "sub_1Abc2Def",
                "external_invoice_ref": "in_1Xyz9Uvw",
                "metadata": {"subscriptionId": "6f1c2d9e-...", "customerId": "C1", "productId": "P1"},
            }
        }


class CustomerProfile(BaseModel):
    """Customer as returned by the Customer collaborator."""

    id: str = Field(..., description="Customer id")
    email: str = Field(..., description="Customer email used for checkout")
    firstName: Optional[str] = Field(None, description="Given name")
    lastName: Optional[str] = Field(None, description="Family name")

    class Config:
        extra = "ignore"
