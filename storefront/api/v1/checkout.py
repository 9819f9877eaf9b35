"""
Checkout API endpoints.

This module implements the endpoint that turns the caller's cart snapshot
into a pending order with a payment token, and the advisory endpoint the
client calls when the payment widget reports a result.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Request, status

from storefront.api.deps import CheckoutServiceDep, OptionalUser
from storefront.api.errors import HANDLED_ERRORS, to_http_exception
from storefront.core.logging import get_logger
from storefront.core.rate_limit import checkout_rate_limit, limiter
from storefront.schemas.orders import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentResultRequest,
    PaymentResultResponse,
)
from storefront.services.payments.midtrans_client import CustomerInfo

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Create a pending order from the cart and obtain a payment token",
)
@limiter.limit(checkout_rate_limit)
async def create_checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: OptionalUser,
    service: CheckoutServiceDep,
) -> CheckoutResponse:
    """
    Start checkout for the signed-in user.

    Raises:
        HTTPException: 401 when anonymous, 400 for invalid carts, 502 when
            the gateway fails, 500 when the gateway is not configured
    """
    customer_details = payload.customer
    if customer_details is not None:
        customer = CustomerInfo(
            name=customer_details.name,
            email=customer_details.email,
            phone=customer_details.phone,
        )
    elif current_user is not None and current_user.email:
        customer = CustomerInfo(
            name=current_user.email.split("@")[0],
            email=current_user.email,
        )
    else:
        customer = CustomerInfo(name="", email="")

    try:
        result = await service.create_checkout(
            user=current_user,
            customer=customer,
            lines=payload.items,
        )
    except HANDLED_ERRORS as e:
        logger.warning(
            "Checkout failed",
            user_id=str(current_user.id) if current_user else None,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise to_http_exception(e) from e

    return CheckoutResponse(
        order_id=result.order_id,
        token=result.token,
        redirect_url=result.redirect_url,
        total_amount=result.total_amount,
        currency=result.currency,
    )


@router.post(
    "/{order_id}/result",
    response_model=PaymentResultResponse,
    summary="Report payment widget result",
    description="Translate a payment widget callback into a navigation hint",
)
async def report_payment_result(
    order_id: UUID,
    payload: PaymentResultRequest,
    service: CheckoutServiceDep,
) -> PaymentResultResponse:
    hint = service.handle_payment_result(order_id, payload.result)
    return PaymentResultResponse(
        order_id=hint.order_id,
        result=hint.result,
        message=hint.message,
        redirect_to=hint.redirect_to,
        clear_cart=hint.clear_cart,
    )
