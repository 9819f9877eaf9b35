"""Order status enums for the payment lifecycle.

This module defines the order status enumeration together with the
transition rules used by the webhook reconciler and the cancellation path.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> PAID, FAILED, CANCELLED, PENDING (notification refresh)
    - PAID -> (terminal state)
    - FAILED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state.

        Returns:
            True if status is terminal (PAID, FAILED, CANCELLED)
        """
        return self in TERMINAL_STATUSES

    def can_cancel(self) -> bool:
        """Only orders still awaiting payment may be cancelled by their owner."""
        return self == OrderStatus.PENDING


class GatewayTransactionStatus(str, Enum):
    """Transaction status vocabulary reported by the payment gateway."""

    CAPTURE = "capture"
    SETTLEMENT = "settlement"
    PENDING = "pending"
    DENY = "deny"
    CANCEL = "cancel"
    EXPIRE = "expire"


class GatewayFraudStatus(str, Enum):
    """Fraud screening result attached to card captures."""

    ACCEPT = "accept"
    CHALLENGE = "challenge"
    DENY = "deny"


TERMINAL_STATUSES: frozenset = frozenset(
    {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}
)

ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.PENDING,
        OrderStatus.PAID,
        OrderStatus.FAILED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PAID: set(),
    OrderStatus.FAILED: set(),
    OrderStatus.CANCELLED: set(),
}


def validate_order_status_transition(
    current_status: OrderStatus,
    new_status: OrderStatus,
) -> bool:
    """Validate if an order status transition is allowed.

    Args:
        current_status: Current order status
        new_status: Target order status

    Returns:
        True if transition is valid
    """
    return new_status in ORDER_STATUS_TRANSITIONS.get(current_status, set())


def get_allowed_order_transitions(current_status: OrderStatus) -> Set[OrderStatus]:
    return set(ORDER_STATUS_TRANSITIONS.get(current_status, set()))
