"""
Checkout service orchestrating order creation and payment initiation.

This module implements the CheckoutService class which turns a cart snapshot
into a pending order and a gateway transaction token, interprets widget
callbacks as navigation hints, and serves the owner-facing order views.
Order status is never written from client-reported results; only gateway
notifications and owner cancellation change it.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.schemas.auth import AuthenticatedUser
from storefront.schemas.orders import CartLine, PaymentResultKind
from storefront.services.entitlements.repository import EntitlementRepository
from storefront.services.orders.repository import (
    OrderNotFoundError,
    OrderRepository,
)
from storefront.services.orders.state_machine import (
    PaymentStateMachine,
    StateTransitionError,
)
from storefront.services.payments.midtrans_client import (
    CustomerInfo,
    GatewayConnectionError,
    GatewayRequestError,
    GatewayValidationError,
    LineItem,
    MidtransClient,
)
from storefront.services.timeouts import with_store_timeout

logger = get_logger(__name__)


class CheckoutServiceError(Exception):
    """Base exception for checkout service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class CheckoutValidationError(CheckoutServiceError):
    """Raised when the cart snapshot cannot be checked out."""

    pass


class CheckoutGatewayError(CheckoutServiceError):
    """Raised when the gateway did not issue a transaction token."""

    def __init__(self, message: str, order_id: uuid.UUID, **context: Any):
        super().__init__(message, order_id=str(order_id), **context)
        self.order_id = order_id


class UnauthenticatedError(CheckoutServiceError):
    """Raised when an operation requires a signed-in user."""

    pass


class OrderOwnershipError(CheckoutServiceError):
    """Raised when a user acts on an order they do not own."""

    pass


class OrderNotCancellableError(CheckoutServiceError):
    """Raised when an order is no longer awaiting payment."""

    pass


@dataclass(frozen=True)
class CheckoutResult:
    order_id: uuid.UUID
    token: str
    redirect_url: Optional[str]
    total_amount: int
    currency: str


@dataclass(frozen=True)
class PaymentResultHint:
    """Where the client should go after the payment widget reports back."""

    order_id: uuid.UUID
    result: PaymentResultKind
    message: str
    redirect_to: Optional[str] = None
    clear_cart: bool = False


PROFILE_PATH = "/profile"

PAYMENT_RESULT_HINTS: dict[PaymentResultKind, dict[str, Any]] = {
    PaymentResultKind.SUCCESS: {
        "message": "Payment successful",
        "redirect_to": PROFILE_PATH,
        "clear_cart": True,
    },
    PaymentResultKind.PENDING: {
        "message": "Waiting for payment",
        "redirect_to": PROFILE_PATH,
        "clear_cart": False,
    },
    PaymentResultKind.ERROR: {
        "message": "Payment failed",
        "redirect_to": None,
        "clear_cart": False,
    },
    PaymentResultKind.CLOSED: {
        "message": "Payment cancelled",
        "redirect_to": None,
        "clear_cart": False,
    },
}


class CheckoutService:
    """
    Checkout orchestrator and owner-facing order operations.

    Attributes:
        order_repository: Order store access
        entitlement_repository: Entitlement store access, for owned products
        gateway_client: Payment gateway client
        currency: ISO currency code applied to every amount
        timeout: Seconds allowed for each store call
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        entitlement_repository: EntitlementRepository,
        gateway_client: MidtransClient,
        currency: str = "IDR",
        timeout: float = 5.0,
    ):
        self.order_repository = order_repository
        self.entitlement_repository = entitlement_repository
        self.gateway_client = gateway_client
        self.currency = currency
        self.timeout = timeout
        self.state_machine = PaymentStateMachine()

    @staticmethod
    def _require_user(user: Optional[AuthenticatedUser]) -> AuthenticatedUser:
        if user is None:
            raise UnauthenticatedError("Authentication required")
        return user

    @staticmethod
    def _validate_lines(lines: Sequence[CartLine]) -> int:
        """Validate cart lines and return the subtotal."""
        if not lines:
            raise CheckoutValidationError("Cart is empty")

        for line in lines:
            if line.quantity <= 0:
                raise CheckoutValidationError(
                    "Quantity must be positive",
                    product_id=str(line.product_id),
                )
            if line.price < 0:
                raise CheckoutValidationError(
                    "Price must not be negative",
                    product_id=str(line.product_id),
                )

        return sum(line.price * line.quantity for line in lines)

    async def create_checkout(
        self,
        user: Optional[AuthenticatedUser],
        customer: CustomerInfo,
        lines: Sequence[CartLine],
    ) -> CheckoutResult:
        """
        Create a pending order from a cart snapshot and start payment.

        A missing gateway server key is reported before anything is stored.
        The order and its items are persisted before the gateway is called.
        If the gateway call fails the order stays pending and the error is
        surfaced; the next attempt creates a new order.

        Args:
            user: Signed-in user, None when anonymous
            customer: Buyer details for the gateway
            lines: Cart snapshot

        Returns:
            CheckoutResult with the order id and transaction token

        Raises:
            UnauthenticatedError: If no user is signed in
            CheckoutValidationError: If the cart cannot be checked out
            OrderCreationError: If the order could not be stored
            StoreTimeoutError: If the store did not answer in time
            CheckoutGatewayError: If the gateway did not issue a token
            GatewayConfigurationError: If the gateway is not configured
        """
        user = self._require_user(user)
        subtotal = self._validate_lines(lines)
        self.gateway_client.ensure_configured()

        logger.info(
            "Starting checkout",
            user_id=str(user.id),
            line_count=len(lines),
            total_amount=subtotal,
            currency=self.currency,
        )

        order = await with_store_timeout(
            self.order_repository.create_order_with_items(
                user_id=user.id,
                total_amount=subtotal,
                currency=self.currency,
                items=[
                    {
                        "product_id": line.product_id,
                        "product_name": line.name,
                        "quantity": line.quantity,
                        "price": line.price,
                    }
                    for line in lines
                ],
            ),
            self.timeout,
            "create_order_with_items",
            user_id=str(user.id),
        )

        line_items = [
            LineItem(
                id=str(line.product_id),
                name=line.name,
                price=line.price,
                quantity=line.quantity,
            )
            for line in lines
        ]

        try:
            transaction = await self.gateway_client.create_transaction(
                order_id=order.id,
                gross_amount=order.total_amount,
                customer=customer,
                line_items=line_items,
            )
        except GatewayValidationError as e:
            raise CheckoutValidationError(
                e.message,
                order_id=str(order.id),
                code=e.code,
            ) from e
        except (GatewayRequestError, GatewayConnectionError) as e:
            logger.error(
                "Checkout payment initiation failed, order left pending",
                order_id=str(order.id),
                error=e.message,
                error_type=type(e).__name__,
            )
            raise CheckoutGatewayError(
                f"Failed to process payment: {e.message}",
                order_id=order.id,
            ) from e

        logger.info(
            "Checkout started",
            order_id=str(order.id),
            user_id=str(user.id),
            total_amount=order.total_amount,
        )

        return CheckoutResult(
            order_id=order.id,
            token=transaction.token,
            redirect_url=transaction.redirect_url,
            total_amount=order.total_amount,
            currency=order.currency,
        )

    def handle_payment_result(
        self,
        order_id: uuid.UUID,
        result: PaymentResultKind,
    ) -> PaymentResultHint:
        """
        Translate a widget callback into a navigation hint.

        The callback is reported by the client and is advisory only; the
        order status is settled by gateway notifications.
        """
        hint = PAYMENT_RESULT_HINTS[PaymentResultKind(result)]
        logger.info(
            "Payment widget result reported",
            order_id=str(order_id),
            result=PaymentResultKind(result).value,
        )
        return PaymentResultHint(
            order_id=order_id,
            result=PaymentResultKind(result),
            **hint,
        )

    async def _get_owned_order(
        self,
        user: AuthenticatedUser,
        order_id: uuid.UUID,
        include_items: bool = False,
    ) -> Order:
        order = await with_store_timeout(
            self.order_repository.get_order_by_id(order_id, include_items=include_items),
            self.timeout,
            "get_order_by_id",
            order_id=str(order_id),
        )
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        if order.user_id != user.id:
            logger.warning(
                "Order access denied",
                order_id=str(order_id),
                user_id=str(user.id),
            )
            raise OrderOwnershipError(
                "Order does not belong to the current user",
                order_id=str(order_id),
            )
        return order

    async def cancel_order(
        self,
        user: Optional[AuthenticatedUser],
        order_id: uuid.UUID,
    ) -> Order:
        """
        Cancel a pending order owned by ``user``.

        Raises:
            UnauthenticatedError: If no user is signed in
            OrderNotFoundError: If the order does not exist
            OrderOwnershipError: If the order belongs to someone else
            OrderNotCancellableError: If the order is no longer pending
        """
        user = self._require_user(user)
        order = await self._get_owned_order(user, order_id)

        try:
            self.state_machine.ensure_cancellable(order.status)
        except StateTransitionError as e:
            raise OrderNotCancellableError(
                f"Order cannot be cancelled in status {order.status.value}",
                order_id=str(order_id),
                status=order.status.value,
            ) from e

        cancelled = await with_store_timeout(
            self.order_repository.cancel_pending_order(order_id, user.id),
            self.timeout,
            "cancel_pending_order",
            order_id=str(order_id),
        )
        if not cancelled:
            raise OrderNotCancellableError(
                "Order status changed before it could be cancelled",
                order_id=str(order_id),
            )

        logger.info("Order cancelled", order_id=str(order_id), user_id=str(user.id))
        return await self._get_owned_order(user, order_id, include_items=True)

    async def list_orders(
        self,
        user: Optional[AuthenticatedUser],
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        user = self._require_user(user)
        return await with_store_timeout(
            self.order_repository.get_user_orders(user.id, skip=skip, limit=limit),
            self.timeout,
            "get_user_orders",
            user_id=str(user.id),
        )

    async def get_order(
        self,
        user: Optional[AuthenticatedUser],
        order_id: uuid.UUID,
    ) -> Order:
        user = self._require_user(user)
        return await self._get_owned_order(user, order_id, include_items=True)

    async def list_owned_products(
        self,
        user: Optional[AuthenticatedUser],
    ) -> list[dict[str, Any]]:
        """List products the user was granted through paid orders."""
        user = self._require_user(user)
        return await with_store_timeout(
            self.entitlement_repository.get_user_entitlements(user.id),
            self.timeout,
            "get_user_entitlements",
            user_id=str(user.id),
        )
