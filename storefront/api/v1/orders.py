"""
Order history API endpoints.

This module implements the owner-facing order endpoints: order history,
order detail, cancellation of pending orders and the list of products the
user has been granted through paid orders.
"""

from uuid import UUID

from fastapi import APIRouter, Query

from storefront.api.deps import CheckoutServiceDep, CurrentUser
from storefront.api.errors import HANDLED_ERRORS, to_http_exception
from storefront.core.logging import get_logger
from storefront.schemas.orders import (
    OrderListResponse,
    OrderResponse,
    OwnedProductResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="List the current user's orders, newest first",
)
async def list_orders(
    current_user: CurrentUser,
    service: CheckoutServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    try:
        orders, total = await service.list_orders(current_user, skip=skip, limit=limit)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/products/owned",
    response_model=list[OwnedProductResponse],
    summary="List owned products",
    description="List products the current user has access to",
)
async def list_owned_products(
    current_user: CurrentUser,
    service: CheckoutServiceDep,
) -> list[OwnedProductResponse]:
    try:
        products = await service.list_owned_products(current_user)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return [OwnedProductResponse(**product) for product in products]


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: CheckoutServiceDep,
) -> OrderResponse:
    try:
        order = await service.get_order(current_user, order_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
    description="Cancel one of the current user's orders while it awaits payment",
)
async def cancel_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: CheckoutServiceDep,
) -> OrderResponse:
    """
    Cancel a pending order.

    Raises:
        HTTPException: 404 if missing, 403 if owned by someone else, 409 if
            the order is no longer pending
    """
    logger.info(
        "Order cancellation requested",
        order_id=str(order_id),
        user_id=str(current_user.id),
    )
    try:
        order = await service.cancel_order(current_user, order_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderResponse.model_validate(order)
