"""Subscription API - checkout, confirmation and subscription queries.

Implements:
- POST /subscriptions - Start checkout, returns the hosted checkout URL
- POST /subscriptions/{id}/confirm - Confirm checkout for a subscription
- POST /subscriptions/confirm-by-session - Confirm checkout by session token
- GET /subscriptions - List subscriptions (filter by customerId, status)
- GET /subscriptions/{id} - Get a subscription
- PATCH /subscriptions/{id}/status - Administrative status change
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from subscription_service.logging_config import get_logger, truncate_token
from subscription_service.models import (
    ConfirmBySessionRequest,
    ConfirmSubscriptionRequest,
    ConfirmSubscriptionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    ErrorResponse,
    SubscriptionResponse,
    UpdateStatusRequest,
)
from subscription_service.models.subscription import (
    ExternalReferenceConflictError,
    InvalidStateTransitionError,
    InvalidStatusError,
    SubscriptionStatus,
)
from subscription_service.repositories.subscription_store import SubscriptionNotFoundError
from subscription_service.services.checkout_service import CheckoutService, get_checkout_service
from subscription_service.services.confirmation_service import (
    ConcurrencyConflictError,
    ConfirmationResult,
    ConfirmationService,
    get_confirmation_service,
)
from subscription_service.services.customer_client import CustomerNotFoundError, CustomerServiceError
from subscription_service.services.payment_gateway import ExternalGatewayError
from subscription_service.services.subscription_manager import (
    SubscriptionManager,
    get_subscription_manager,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Subscriptions"], prefix="/subscriptions")

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def _confirmation_response(result: ConfirmationResult) -> ConfirmSubscriptionResponse:
    return ConfirmSubscriptionResponse(
        subscriptionId=result.subscription.id,
        status=result.subscription.status.value,
        activated=result.activated,
        alreadyActive=result.already_active,
    )


@router.post(
    "",
    response_model=CreateSubscriptionResponse,
    status_code=201,
    summary="Start subscription checkout",
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def create_subscription(
    request: CreateSubscriptionRequest,
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CreateSubscriptionResponse:
    """Create a Pending subscription and a hosted checkout session.

    Raises:
        404: Customer not found
        400: Invalid request parameters
        502: Payment gateway failure
        503: Customer service unavailable
    """
    logger.info(
        "create_subscription_request",
        customer_id=request.customerId,
        product_id=request.productId,
    )

    try:
        result = await checkout_service.initiate_checkout(
            customer_id=request.customerId,
            product_id=request.productId,
            product_name=request.productName,
            price=request.price,
            success_url=request.successUrl,
            cancel_url=request.cancelUrl,
        )
    except CustomerNotFoundError as e:
        logger.warning("customer_not_found", customer_id=request.customerId)
        raise _error(404, "Customer not found", str(e))
    except CustomerServiceError as e:
        logger.error("customer_service_unavailable", error=str(e))
        raise _error(503, "Customer service unavailable", str(e))
    except ExternalGatewayError as e:
        logger.error("checkout_gateway_failed", customer_id=request.customerId, error=str(e))
        raise _error(502, "Payment gateway error", str(e))
    except ValueError as e:
        logger.warning("invalid_subscription_request", error=str(e))
        raise _error(400, "Invalid request", str(e))

    return CreateSubscriptionResponse(subscriptionId=result.subscription_id, checkoutUrl=result.checkout_url)


async def _confirm(confirm, **log_context) -> ConfirmSubscriptionResponse:
    """Run a confirmation call and map its errors to HTTP responses."""
    try:
        result = await confirm()
    except SubscriptionNotFoundError as e:
        logger.warning("confirm_subscription_not_found", error=str(e), **log_context)
        raise _error(400, "Subscription not found", str(e))
    except (ExternalReferenceConflictError, ConcurrencyConflictError) as e:
        logger.error("confirm_conflict", error=str(e), error_type=type(e).__name__, **log_context)
        raise _error(409, "Conflict", str(e))
    except InvalidStateTransitionError as e:
        logger.warning("confirm_invalid_state", error=str(e), **log_context)
        raise _error(400, "Invalid subscription state", str(e))
    except ExternalGatewayError as e:
        logger.warning("confirm_gateway_failed", error=str(e), error_type=type(e).__name__, **log_context)
        raise _error(400, "Payment not confirmed", str(e))
    except ValueError as e:
        logger.warning("confirm_invalid_request", error=str(e), **log_context)
        raise _error(400, "Invalid request", str(e))

    return _confirmation_response(result)


@router.post(
    "/confirm-by-session",
    response_model=ConfirmSubscriptionResponse,
    summary="Confirm checkout by session token",
    responses=ERROR_RESPONSES,
)
async def confirm_by_session(
    request: ConfirmBySessionRequest,
    confirmation_service: ConfirmationService = Depends(get_confirmation_service),
) -> ConfirmSubscriptionResponse:
    """Confirm the subscription bound to a checkout session token.

    Raises:
        400: Unknown session, unpaid session or invalid state
        409: Conflicting concurrent change or gateway reference
    """
    return await _confirm(
        lambda: confirmation_service.confirm_by_session_token(request.sessionToken),
        session_token=truncate_token(request.sessionToken),
    )


@router.post(
    "/{subscription_id}/confirm",
    response_model=ConfirmSubscriptionResponse,
    summary="Confirm checkout for a subscription",
    responses=ERROR_RESPONSES,
)
async def confirm_subscription(
    subscription_id: str,
    request: ConfirmSubscriptionRequest,
    confirmation_service: ConfirmationService = Depends(get_confirmation_service),
) -> ConfirmSubscriptionResponse:
    """Confirm checkout for a subscription.

    An empty sessionToken confirms against the token stored at checkout.

    Raises:
        400: Unknown subscription, session mismatch, unpaid session or invalid state
        409: Conflicting concurrent change or gateway reference
    """
    return await _confirm(
        lambda: confirmation_service.confirm_by_subscription_id(subscription_id, request.sessionToken),
        subscription_id=subscription_id,
    )


@router.get(
    "",
    response_model=List[SubscriptionResponse],
    summary="List subscriptions",
)
async def list_subscriptions(
    customer_id: Optional[str] = Query(None, alias="customerId"),
    status: Optional[str] = Query(None),
    manager: SubscriptionManager = Depends(get_subscription_manager),
) -> List[SubscriptionResponse]:
    """List subscriptions, optionally filtered by customer and status."""
    try:
        status_filter = SubscriptionStatus.parse(status) if status else None
    except InvalidStatusError as e:
        raise _error(400, "Invalid status", str(e))

    subscriptions = await manager.list_subscriptions(customer_id=customer_id, status=status_filter)
    return [SubscriptionResponse.from_subscription(s) for s in subscriptions]


@router.get(
    "/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Get subscription",
    responses=ERROR_RESPONSES,
)
async def get_subscription(
    subscription_id: str,
    manager: SubscriptionManager = Depends(get_subscription_manager),
) -> SubscriptionResponse:
    """Get a subscription by id.

    Raises:
        404: Subscription not found
    """
    try:
        subscription = await manager.get_subscription(subscription_id)
    except SubscriptionNotFoundError as e:
        logger.warning("subscription_not_found", subscription_id=subscription_id)
        raise _error(404, "Subscription not found", str(e))
    return SubscriptionResponse.from_subscription(subscription)


@router.patch(
    "/{subscription_id}/status",
    response_model=SubscriptionResponse,
    summary="Change subscription status",
    responses=ERROR_RESPONSES,
)
async def update_subscription_status(
    subscription_id: str,
    request: UpdateStatusRequest,
    manager: SubscriptionManager = Depends(get_subscription_manager),
) -> SubscriptionResponse:
    """Apply a guarded status transition.

    Raises:
        400: Unknown status or illegal transition
        404: Subscription not found
        409: Status changed concurrently
    """
    logger.info("update_status_request", subscription_id=subscription_id, status=request.status)

    try:
        subscription = await manager.update_status(subscription_id, request.status)
    except SubscriptionNotFoundError as e:
        logger.warning("subscription_not_found", subscription_id=subscription_id)
        raise _error(404, "Subscription not found", str(e))
    except InvalidStatusError as e:
        logger.warning("invalid_status", subscription_id=subscription_id, status=request.status)
        raise _error(400, "Invalid status", str(e))
    except InvalidStateTransitionError as e:
        logger.warning("invalid_transition", subscription_id=subscription_id, error=str(e))
        raise _error(400, "Invalid state transition", str(e))
    except ConcurrencyConflictError as e:
        logger.warning("status_update_conflict", subscription_id=subscription_id, error=str(e))
        raise _error(409, "Conflict", str(e))

    return SubscriptionResponse.from_subscription(subscription)
