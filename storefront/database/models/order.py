"""
Order models for checkout and payment reconciliation.

This module defines the Order and OrderItem models. Amounts are whole
currency units stored as integers, and every amount column is accompanied
by an explicit ISO currency code.
"""

import uuid
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import BaseModel
from storefront.services.orders.enums import OrderStatus


class Order(BaseModel):
    """
    Customer order awaiting or reconciled against a gateway payment.

    Attributes:
        id: Order identifier, also sent to the gateway as ``order_id``
        user_id: Owning user, issued by the hosted auth provider
        total_amount: Order total in whole currency units, fixed at creation
        currency: ISO currency code of ``total_amount``
        status: Current order status
        midtrans_transaction_id: Gateway transaction id, set by notifications
        payment_type: Gateway payment method, set by notifications
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
    """

    __tablename__ = "orders"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="User who placed the order",
    )

    total_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Order total in whole currency units",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="IDR",
        server_default="IDR",
        comment="ISO currency code of total_amount",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            create_constraint=True,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    midtrans_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway transaction identifier",
    )

    payment_type: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Gateway payment method",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint(
            "total_amount >= 0",
            name="ck_orders_total_amount_non_negative",
        ),
        {"comment": "Customer orders reconciled against gateway notifications"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, user_id={self.user_id}, "
            f"status={self.status.value}, total_amount={self.total_amount} "
            f"{self.currency})>"
        )


class OrderItem(BaseModel):
    """
    One product line within an order.

    The unit price is pinned from the cart snapshot at checkout so later
    catalog price changes never alter a submitted order. Rows are immutable
    after creation.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Parent order identifier",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Purchased product identifier",
    )

    product_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name at time of purchase",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Quantity purchased",
    )

    price: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Unit price in whole currency units at time of purchase",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="IDR",
        server_default="IDR",
        comment="ISO currency code of price",
    )

    order: Mapped["Order"] = relationship(
        "Order",
        back_populates="items",
        lazy="noload",
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
        {"comment": "Immutable product lines of an order"},
    )

    @property
    def line_total(self) -> int:
        return self.price * self.quantity
