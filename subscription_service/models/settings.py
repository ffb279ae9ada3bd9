"""Service configuration models.

Models from config/service.yaml.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from subscription_service.utils.billing_period import validate_billing_period


class ServiceSettings(BaseModel):
    """General service settings."""

    name: str = Field(default="subscription-service", description="Service name used in logs")
    subscription_number_prefix: str = Field(default="SUB", description="Prefix for human-readable subscription numbers")


class PaymentGatewayConfig(BaseModel):
    """Hosted checkout provider settings."""

    provider: str = Field(default="local", description="Gateway provider: 'stripe' or 'local'")
    api_key_env: str = Field(default="STRIPE_API_KEY", description="Environment variable holding the API key")
    currency: str = Field(default="eur", description="ISO 4217 currency code for checkout line items")
    interval: str = Field(default="month", description="Recurring interval for checkout line items")
    local_checkout_base_url: str = Field(
        default="http://localhost:8080/sandbox/checkout",
        description="Base URL for sandbox checkout pages (local provider only)",
    )

    @field_validator("provider")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        value = value.lower()
        if value not in ("stripe", "local"):
            raise ValueError(f"Unsupported payment gateway provider: '{value}'")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "provider": "stripe",
                "api_key_env": "STRIPE_API_KEY",
                "currency": "eur",
                "interval": "month",
            }
        }


class CollaboratorConfig(BaseModel):
    """HTTP collaborator endpoint settings."""

    base_url: str = Field(..., description="Base URL of the collaborator service")
    timeout_seconds: float = Field(default=5.0, gt=0, description="Request timeout in seconds")


class NotificationConfig(BaseModel):
    """Invoice notification outbox and retry settings."""

    enabled: bool = Field(default=True, description="Send invoice notifications to billing")
    max_attempts: int = Field(default=3, ge=1, description="Delivery attempts before an entry is abandoned")
    retry_backoff_seconds: float = Field(default=30.0, ge=0, description="Base delay between retries")
    dispatch_interval_seconds: float = Field(default=10.0, gt=0, description="Dispatcher polling interval")
    billing_period: str = Field(default="P1M", description="ISO 8601 duration of the invoiced period")

    @field_validator("billing_period")
    @classmethod
    def _check_billing_period(cls, value: str) -> str:
        if not validate_billing_period(value):
            raise ValueError(f"Invalid billing period: '{value}'")
        return value


class ServiceConfig(BaseModel):
    """Complete service.yaml configuration."""

    service: ServiceSettings = Field(default_factory=ServiceSettings)
    payment_gateway: PaymentGatewayConfig = Field(default_factory=PaymentGatewayConfig)
    customer_service: CollaboratorConfig
    billing_service: CollaboratorConfig
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    stripe_api_key: Optional[str] = Field(None, exclude=True, description="Resolved from api_key_env at load time")
