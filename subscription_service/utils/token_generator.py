"""Identifier generation utilities.

Generates subscription ids, human-readable subscription numbers and the
sandbox gateway's session tokens and external references.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

SUBSCRIPTION_NUMBER_PATTERN = r"^[A-Z0-9]+-\d{8}-[A-F0-9]{8}$"


def generate_subscription_id() -> str:
    """Generate an opaque subscription identifier (uuid4 string)."""
    return str(uuid.uuid4())


def generate_subscription_number(prefix: str = "SUB", now: Optional[datetime] = None) -> str:
    """Generate a human-readable subscription number.

    Format: {prefix}-{YYYYMMDD}-{8 hex chars}
    Example: SUB-20261019-4F3A9C1D

    Args:
        prefix: Number prefix (default: "SUB")
        now: Creation time (defaults to current UTC time)

    Returns:
        Subscription number string
    """
    now = now or datetime.now(timezone.utc)
    suffix = uuid.uuid4().hex[:8].upper()
    return f"{prefix.upper()}-{now:%Y%m%d}-{suffix}"


def validate_subscription_number(number: str) -> bool:
    """Validate subscription number format."""
    if not number or not isinstance(number, str):
        return False
    return re.match(SUBSCRIPTION_NUMBER_PATTERN, number) is not None


def generate_session_token(prefix: str = "cs_local") -> str:
    """Generate a sandbox checkout session token.

    Format: {prefix}_{32 hex chars}
    Example: cs_local_a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6
    """
    return f"{prefix}_{uuid.uuid4().hex}"


def generate_external_ref(kind: str) -> str:
    """Generate a sandbox gateway reference such as ``cus_...`` or ``sub_...``.

    Args:
        kind: Reference kind prefix ("cus", "sub", "in")

    Returns:
        Reference string
    """
    return f"{kind}_local_{uuid.uuid4().hex[:14]}"
