"""Order payment state machine.

Maps the payment gateway's transaction vocabulary onto ``OrderStatus`` and
decides the status an order moves to when a notification arrives. Terminal
states are never left because of a notification, so stale or duplicated
deliveries cannot downgrade a paid or failed order.
"""

from dataclasses import dataclass
from typing import Optional

from storefront.core.logging import get_logger
from storefront.services.orders.enums import (
    GatewayFraudStatus,
    GatewayTransactionStatus,
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of applying one gateway notification to an order status.

    Attributes:
        previous: Status stored before the notification
        proposed: Status the notification maps to, None when it maps to
            "no change"
        target: Status to persist after the monotonic guard
    """

    previous: OrderStatus
    proposed: Optional[OrderStatus]
    target: OrderStatus

    @property
    def changed(self) -> bool:
        return self.previous != self.target

    @property
    def suppressed(self) -> bool:
        """True when the guard refused the status the notification asked for."""
        return self.proposed is not None and self.proposed != self.target

    @property
    def should_provision(self) -> bool:
        """Entitlements are (re)checked whenever the order ends up paid."""
        return self.target == OrderStatus.PAID


def map_gateway_status(
    transaction_status: Optional[str],
    fraud_status: Optional[str] = None,
) -> Optional[OrderStatus]:
    """Map gateway transaction/fraud status to an order status.

    Args:
        transaction_status: Gateway ``transaction_status`` value
        fraud_status: Gateway ``fraud_status`` value (only read for captures)

    Returns:
        The mapped status, or None when the notification must leave the
        status unchanged (a capture that was not accepted by fraud screening)
    """
    status = (transaction_status or "").strip().lower()

    if status == GatewayTransactionStatus.CAPTURE.value:
        if (fraud_status or "").strip().lower() == GatewayFraudStatus.ACCEPT.value:
            return OrderStatus.PAID
        logger.info(
            "Capture not accepted by fraud screening, status unchanged",
            fraud_status=fraud_status,
        )
        return None

    if status == GatewayTransactionStatus.SETTLEMENT.value:
        return OrderStatus.PAID

    if status in (
        GatewayTransactionStatus.CANCEL.value,
        GatewayTransactionStatus.DENY.value,
        GatewayTransactionStatus.EXPIRE.value,
    ):
        return OrderStatus.FAILED

    if status == GatewayTransactionStatus.PENDING.value:
        return OrderStatus.PENDING

    logger.warning(
        "Unrecognized gateway transaction status, treating as pending",
        transaction_status=transaction_status,
    )
    return OrderStatus.PENDING


def resolve_transition(
    current: OrderStatus,
    proposed: Optional[OrderStatus],
) -> OrderStatus:
    """Apply the monotonic guard to a proposed status.

    Args:
        current: Stored order status
        proposed: Status requested by a notification, None for "no change"

    Returns:
        The status to persist. A terminal current status is always kept.
    """
    if proposed is None:
        return current

    if validate_order_status_transition(current, proposed):
        return proposed

    if current != proposed:
        logger.warning(
            "Ignoring status change out of terminal state",
            current_status=current.value,
            proposed_status=proposed.value,
            allowed=[s.value for s in get_allowed_order_transitions(current)],
        )
    return current


class PaymentStateMachine:
    """State machine driving order status from gateway notifications."""

    def decide(
        self,
        current: OrderStatus,
        transaction_status: Optional[str],
        fraud_status: Optional[str] = None,
    ) -> TransitionDecision:
        """Decide the status to persist for one notification.

        Args:
            current: Stored order status
            transaction_status: Gateway transaction status
            fraud_status: Gateway fraud status

        Returns:
            TransitionDecision describing previous, proposed and target status
        """
        proposed = map_gateway_status(transaction_status, fraud_status)
        target = resolve_transition(current, proposed)

        logger.debug(
            "Payment transition decided",
            previous_status=current.value,
            proposed_status=proposed.value if proposed else None,
            target_status=target.value,
        )

        return TransitionDecision(previous=current, proposed=proposed, target=target)

    def ensure_cancellable(self, current: OrderStatus) -> None:
        """Validate the owner-initiated cancellation transition.

        Raises:
            StateTransitionError: If the order is no longer pending
        """
        if not current.can_cancel():
            raise StateTransitionError(
                f"Invalid transition from {current.value} to "
                f"{OrderStatus.CANCELLED.value}",
                current_state=current,
                target_state=OrderStatus.CANCELLED,
                allowed_transitions=[
                    s.value for s in get_allowed_order_transitions(current)
                ],
            )
