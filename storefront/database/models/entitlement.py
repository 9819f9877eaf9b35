"""
Product access model granting users the products they have paid for.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base, UUIDMixin


class ProductAccess(Base, UUIDMixin):
    """
    Entitlement record linking a user to a purchased product.

    A grant is unique per (user, product, order) so repeated provisioning
    for the same paid order never creates duplicate rows.

    Attributes:
        id: Grant identifier
        user_id: User holding the access
        product_id: Product the user may access
        order_id: Paid order that produced the grant
        created_at: Grant timestamp
    """

    __tablename__ = "user_product_access"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="User holding the access",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Product the user may access",
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Paid order that produced the grant",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when access was granted",
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "product_id",
            "order_id",
            name="uq_user_product_access_user_product_order",
        ),
        Index("ix_user_product_access_user_product", "user_id", "product_id"),
        {"comment": "Product entitlements granted by paid orders"},
    )

    def __repr__(self) -> str:
        return (
            f"<ProductAccess(user_id={self.user_id}, "
            f"product_id={self.product_id}, order_id={self.order_id})>"
        )
