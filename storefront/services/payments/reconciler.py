"""
Webhook reconciler applying gateway payment notifications to orders.

For each notification the reconciler validates the body, checks its
signature, moves the order through the payment state machine with a
conditional update, and grants product access once the order is paid.
Redelivered notifications converge on the same final state.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from storefront.core.logging import get_logger
from storefront.schemas.payments import MidtransNotification
from storefront.services.entitlements.repository import EntitlementRepository
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.repository import (
    OrderNotFoundError,
    OrderRepository,
)
from storefront.services.orders.state_machine import (
    PaymentStateMachine,
    TransitionDecision,
)
from storefront.services.payments.midtrans_client import MidtransClient
from storefront.services.timeouts import with_store_timeout

logger = get_logger(__name__)


class NotificationError(Exception):
    """Base exception for notification handling errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotificationValidationError(NotificationError):
    """Raised when a notification body is malformed or incomplete."""

    pass


class InvalidSignatureError(NotificationError):
    """Raised when a notification signature does not verify."""

    pass


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one processed notification."""

    order_id: uuid.UUID
    previous_status: OrderStatus
    status: OrderStatus
    status_changed: bool
    entitlements_granted: int = 0
    provisioning_skipped: bool = False


class WebhookReconciler:
    """
    Applies payment notifications to orders and provisions entitlements.

    Attributes:
        order_repository: Order store access
        entitlement_repository: Entitlement store access
        gateway_client: Gateway client used for signature checks
        verify_signature: Whether notification signatures are enforced
        timeout: Seconds allowed for each store call
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        entitlement_repository: EntitlementRepository,
        gateway_client: MidtransClient,
        verify_signature: bool = True,
        timeout: float = 5.0,
        state_machine: Optional[PaymentStateMachine] = None,
    ):
        self.order_repository = order_repository
        self.entitlement_repository = entitlement_repository
        self.gateway_client = gateway_client
        self.verify_signature = verify_signature
        self.timeout = timeout
        self.state_machine = state_machine or PaymentStateMachine()

    def parse_notification(self, payload: Any) -> MidtransNotification:
        """
        Validate a raw notification body.

        Raises:
            NotificationValidationError: If the body is not a valid notification
        """
        if not isinstance(payload, dict):
            raise NotificationValidationError(
                "Notification body must be a JSON object"
            )

        try:
            return MidtransNotification.model_validate(payload)
        except ValidationError as e:
            missing = [
                ".".join(str(loc) for loc in err["loc"])
                for err in e.errors()
                if err["type"] == "missing"
            ]
            if missing:
                message = f"Missing required fields: {', '.join(missing)}"
            else:
                message = "Invalid notification payload"
            raise NotificationValidationError(
                message,
                errors=[err["msg"] for err in e.errors()],
            ) from e

    def _check_signature(self, notification: MidtransNotification) -> None:
        if not self.verify_signature:
            return

        valid = self.gateway_client.verify_notification_signature(
            order_id=notification.order_id,
            status_code=notification.status_code,
            gross_amount=notification.gross_amount,
            signature_key=notification.signature_key,
        )
        if not valid:
            logger.warning(
                "Rejected notification with invalid signature",
                order_id=notification.order_id,
            )
            raise InvalidSignatureError(
                "Invalid signature",
                order_id=notification.order_id,
            )

    async def handle_notification(self, payload: Any) -> ReconciliationResult:
        """
        Process one gateway notification.

        Args:
            payload: Decoded JSON body of the notification

        Returns:
            ReconciliationResult describing the applied change

        Raises:
            NotificationValidationError: If the body is malformed
            InvalidSignatureError: If the signature check fails
            OrderNotFoundError: If the referenced order does not exist
            ConcurrentOrderUpdateError: If the order changed while processing
            StoreTimeoutError: If a store call exceeds its timeout
            OrderRepositoryError: If the order store fails
            EntitlementRepositoryError: If the entitlement store fails
        """
        notification = self.parse_notification(payload)

        logger.info(
            "Payment notification received",
            order_id=notification.order_id,
            transaction_status=notification.transaction_status,
            fraud_status=notification.fraud_status,
            payment_type=notification.payment_type,
        )

        self._check_signature(notification)

        try:
            order_id = uuid.UUID(notification.order_id)
        except ValueError as e:
            raise OrderNotFoundError(
                "Order not found",
                order_id=notification.order_id,
            ) from e

        order = await with_store_timeout(
            self.order_repository.get_order_by_id(order_id),
            self.timeout,
            "get_order_by_id",
            order_id=str(order_id),
        )
        if order is None:
            logger.warning("Notification for unknown order", order_id=str(order_id))
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        decision = self.state_machine.decide(
            order.status,
            notification.transaction_status,
            notification.fraud_status,
        )

        await with_store_timeout(
            self.order_repository.apply_payment_update(
                order_id=order_id,
                expected_status=decision.previous,
                new_status=decision.target,
                transaction_id=notification.transaction_id,
                payment_type=notification.payment_type,
            ),
            self.timeout,
            "apply_payment_update",
            order_id=str(order_id),
        )

        granted = 0
        skipped = False
        if decision.should_provision:
            granted, skipped = await self._provision(order_id, order.user_id)

        result = ReconciliationResult(
            order_id=order_id,
            previous_status=decision.previous,
            status=decision.target,
            status_changed=decision.changed,
            entitlements_granted=granted,
            provisioning_skipped=skipped,
        )

        self._log_outcome(decision, result)
        return result

    async def _provision(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> tuple[int, bool]:
        """Grant access to every product of a paid order, once."""
        already_granted = await with_store_timeout(
            self.entitlement_repository.has_grants_for_order(order_id),
            self.timeout,
            "has_grants_for_order",
            order_id=str(order_id),
        )
        if already_granted:
            logger.info(
                "Entitlements already provisioned, skipping",
                order_id=str(order_id),
            )
            return 0, True

        items = await with_store_timeout(
            self.order_repository.get_order_items(order_id),
            self.timeout,
            "get_order_items",
            order_id=str(order_id),
        )

        product_ids = list(dict.fromkeys(item.product_id for item in items))
        grants = [
            {"user_id": user_id, "product_id": product_id, "order_id": order_id}
            for product_id in product_ids
        ]

        if not grants:
            logger.warning("Paid order has no items to provision", order_id=str(order_id))
            return 0, False

        inserted = await with_store_timeout(
            self.entitlement_repository.grant_access(grants),
            self.timeout,
            "grant_access",
            order_id=str(order_id),
        )
        return inserted, False

    def _log_outcome(
        self,
        decision: TransitionDecision,
        result: ReconciliationResult,
    ) -> None:
        if decision.suppressed:
            logger.info(
                "Notification did not change terminal order",
                order_id=str(result.order_id),
                status=result.status.value,
                proposed_status=decision.proposed.value if decision.proposed else None,
            )

        logger.info(
            "Payment notification reconciled",
            order_id=str(result.order_id),
            previous_status=result.previous_status.value,
            status=result.status.value,
            status_changed=result.status_changed,
            entitlements_granted=result.entitlements_granted,
            provisioning_skipped=result.provisioning_skipped,
        )
