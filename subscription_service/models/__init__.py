"""Pydantic models for API requests, responses, and domain objects."""

# Configuration models
from .settings import (
    ServiceSettings,
    PaymentGatewayConfig,
    CollaboratorConfig,
    NotificationConfig,
    ServiceConfig,
)

# Subscription aggregate
from .subscription import (
    SubscriptionStatus,
    CancelReason,
    Subscription,
    SubscriptionError,
    InvalidStatusError,
    InvalidStateTransitionError,
    ExternalReferenceConflictError,
)

# Collaborator models
from .gateway import (
    CheckoutSession,
    GatewaySession,
    CustomerProfile,
)

# Invoice notification models
from .notification import (
    InvoiceCreationRequest,
    NotificationStatus,
    NotificationRecord,
)

# API request models
from .api_request import (
    CreateSubscriptionRequest,
    ConfirmSubscriptionRequest,
    ConfirmBySessionRequest,
    UpdateStatusRequest,
    CompleteSandboxCheckoutRequest,
)

# API response models
from .api_response import (
    CreateSubscriptionResponse,
    ConfirmSubscriptionResponse,
    SubscriptionResponse,
    NotificationResponse,
    DispatchResponse,
    ErrorResponse,
)

__all__ = [
    # Configuration
    "ServiceSettings",
    "PaymentGatewayConfig",
    "CollaboratorConfig",
    "NotificationConfig",
    "ServiceConfig",
    # Subscription
    "SubscriptionStatus",
    "CancelReason",
    "Subscription",
    "SubscriptionError",
    "InvalidStatusError",
    "InvalidStateTransitionError",
    "ExternalReferenceConflictError",
    # Collaborators
    "CheckoutSession",
    "GatewaySession",
    "CustomerProfile",
    # Notifications
    "InvoiceCreationRequest",
    "NotificationStatus",
    "NotificationRecord",
    # API requests
    "CreateSubscriptionRequest",
    "ConfirmSubscriptionRequest",
    "ConfirmBySessionRequest",
    "UpdateStatusRequest",
    "CompleteSandboxCheckoutRequest",
    # API responses
    "CreateSubscriptionResponse",
    "ConfirmSubscriptionResponse",
    "SubscriptionResponse",
    "NotificationResponse",
    "DispatchResponse",
    "ErrorResponse",
]
