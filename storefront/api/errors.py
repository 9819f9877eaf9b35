"""
Translation of service and store errors into HTTP errors.
"""

from fastapi import HTTPException, status

from storefront.core.logging import get_logger
from storefront.services.checkout.service import (
    CheckoutGatewayError,
    CheckoutValidationError,
    OrderNotCancellableError,
    OrderOwnershipError,
    UnauthenticatedError,
)
from storefront.services.entitlements.repository import EntitlementRepositoryError
from storefront.services.orders.repository import (
    OrderNotFoundError,
    OrderRepositoryError,
)
from storefront.services.payments.midtrans_client import GatewayConfigurationError
from storefront.services.timeouts import StoreTimeoutError

logger = get_logger(__name__)


def to_http_exception(exc: Exception) -> HTTPException:
    """
    Map a checkout or order error to an HTTPException.

    Gateway configuration problems and anything unrecognised become 500.
    """
    context = getattr(exc, "context", {})

    if isinstance(exc, UnauthenticatedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": str(exc), "code": "UNAUTHENTICATED"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, CheckoutValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "code": "VALIDATION_ERROR", "context": context},
        )
    if isinstance(exc, OrderNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Order not found", "code": "ORDER_NOT_FOUND"},
        )
    if isinstance(exc, OrderOwnershipError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": str(exc), "code": "FORBIDDEN"},
        )
    if isinstance(exc, OrderNotCancellableError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "code": "ORDER_NOT_CANCELLABLE"},
        )
    if isinstance(exc, CheckoutGatewayError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": str(exc),
                "code": "PAYMENT_GATEWAY_ERROR",
                "order_id": str(exc.order_id),
            },
        )
    if isinstance(exc, StoreTimeoutError):
        return HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail={"message": "Order store timed out", "code": "STORE_TIMEOUT"},
        )
    if isinstance(exc, (OrderRepositoryError, EntitlementRepositoryError)):
        logger.error("Store operation failed", error=str(exc), context=context)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Order store unavailable", "code": "STORE_ERROR"},
        )
    logger.error(
        "Unexpected service error",
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "message": "Payment gateway is not configured"
            if isinstance(exc, GatewayConfigurationError)
            else "Internal server error",
            "code": "INTERNAL_ERROR",
        },
    )


HANDLED_ERRORS = (
    UnauthenticatedError,
    CheckoutValidationError,
    CheckoutGatewayError,
    OrderNotFoundError,
    OrderOwnershipError,
    OrderNotCancellableError,
    OrderRepositoryError,
    EntitlementRepositoryError,
    StoreTimeoutError,
    GatewayConfigurationError,
)
