"""Utility functions and helpers for the subscription service."""

from subscription_service.utils.billing_period import (
    add_months,
    billing_period_window,
    parse_billing_period,
    period_end,
    validate_billing_period,
)
from subscription_service.utils.token_generator import (
    generate_external_ref,
    generate_session_token,
    generate_subscription_id,
    generate_subscription_number,
    validate_subscription_number,
)

__all__ = [
    # Identifier generation
    "generate_subscription_id",
    "generate_subscription_number",
    "generate_session_token",
    "generate_external_ref",
    # Identifier validation
    "validate_subscription_number",
    # Billing period parsing
    "parse_billing_period",
    "add_months",
    "period_end",
    "billing_period_window",
    "validate_billing_period",
]
