"""Sandbox checkout pages for the local payment gateway.

Implements:
- GET /sandbox/checkout/{token} - Inspect a sandbox checkout session
- POST /sandbox/checkout/{token}/complete - Simulate the customer paying

Only mounted when payment_gateway.provider is "local".
"""

from fastapi import APIRouter, Depends, HTTPException

from subscription_service.logging_config import get_logger, truncate_token
from subscription_service.models import CompleteSandboxCheckoutRequest, GatewaySession
from subscription_service.services.payment_gateway import (
    ExternalGatewayError,
    LocalPaymentGateway,
    PaymentGateway,
    get_payment_gateway,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Sandbox"], prefix="/sandbox")


def get_local_gateway(gateway: PaymentGateway = Depends(get_payment_gateway)) -> LocalPaymentGateway:
    if not isinstance(gateway, LocalPaymentGateway):
        raise HTTPException(
            status_code=404,
            detail={
                "error": "Sandbox disabled",
                "message": "Sandbox checkout is only available with the local payment gateway",
            },
        )
    return gateway


def _session_not_found(token: str) -> HTTPException:
    logger.warning("sandbox_session_not_found", session_token=truncate_token(token))
    return HTTPException(
        status_code=404,
        detail={"error": "Session not found", "message": "No such checkout session"},
    )


@router.get(
    "/checkout/{token}",
    response_model=GatewaySession,
    summary="Inspect sandbox checkout session",
)
async def get_checkout_session(
    token: str,
    gateway: LocalPaymentGateway = Depends(get_local_gateway),
) -> GatewaySession:
    try:
        return await gateway.get_session(token)
    except ExternalGatewayError:
        raise _session_not_found(token)


@router.post(
    "/checkout/{token}/complete",
    response_model=GatewaySession,
    summary="Complete sandbox checkout",
)
async def complete_checkout_session(
    token: str,
    request: CompleteSandboxCheckoutRequest,
    gateway: LocalPaymentGateway = Depends(get_local_gateway),
) -> GatewaySession:
    """Simulate the customer finishing checkout on the hosted page.

    With paid=false the session stays open and unpaid, so a following
    confirmation is rejected.
    """
    try:
        return gateway.complete_session(token, paid=request.paid)
    except ExternalGatewayError:
        raise _session_not_found(token)
