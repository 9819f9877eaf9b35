"""
Entitlement repository for product access grants.

Grants are written in one bulk statement that skips rows already present
for the same (user, product, order), so concurrent or repeated
provisioning of a paid order leaves exactly one grant per product.
"""

import uuid
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.entitlement import ProductAccess
from storefront.database.models.order import OrderItem

logger = get_logger(__name__)


class EntitlementRepositoryError(Exception):
    """Base exception for entitlement repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class EntitlementRepository:
    """
    Repository for product access grants.

    Attributes:
        session: Async database session for executing queries
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def has_grants_for_order(self, order_id: uuid.UUID) -> bool:
        """
        Check whether any access was already granted for an order.

        Raises:
            EntitlementRepositoryError: If query fails
        """
        try:
            stmt = select(ProductAccess.id).where(
                ProductAccess.order_id == order_id
            ).limit(1)
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none() is not None

        except SQLAlchemyError as e:
            logger.error(
                "Failed to check existing grants",
                order_id=str(order_id),
                error=str(e),
            )
            raise EntitlementRepositoryError(
                "Failed to check existing grants",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def grant_access(
        self,
        grants: Sequence[dict[str, uuid.UUID]],
    ) -> int:
        """
        Insert access grants in a single statement.

        Args:
            grants: Rows with user_id, product_id and order_id

        Returns:
            Number of rows actually inserted

        Raises:
            EntitlementRepositoryError: If insert fails
        """
        if not grants:
            return 0

        try:
            stmt = (
                insert(ProductAccess)
                .values(
                    [
                        {
                            "id": uuid.uuid4(),
                            "user_id": grant["user_id"],
                            "product_id": grant["product_id"],
                            "order_id": grant["order_id"],
                        }
                        for grant in grants
                    ]
                )
                .on_conflict_do_nothing(
                    constraint="uq_user_product_access_user_product_order"
                )
                .returning(ProductAccess.id)
            )
            result = await self.session.execute(stmt)
            inserted = len(result.scalars().all())
            await self.session.commit()

            logger.info(
                "Product access granted",
                requested=len(grants),
                inserted=inserted,
                order_id=str(grants[0]["order_id"]),
            )
            return inserted

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to grant product access",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EntitlementRepositoryError(
                "Failed to grant product access",
                error=str(e),
            ) from e

    async def get_user_entitlements(
        self,
        user_id: uuid.UUID,
    ) -> list[dict[str, Any]]:
        """
        List products a user may access, with the purchased product name.

        Returns:
            Dictionaries with product_id, product_name, order_id, granted_at

        Raises:
            EntitlementRepositoryError: If query fails
        """
        try:
            stmt = (
                select(
                    ProductAccess.product_id,
                    ProductAccess.order_id,
                    ProductAccess.created_at,
                    func.min(OrderItem.product_name).label("product_name"),
                )
                .join(
                    OrderItem,
                    (OrderItem.order_id == ProductAccess.order_id)
                    & (OrderItem.product_id == ProductAccess.product_id),
                    isouter=True,
                )
                .where(ProductAccess.user_id == user_id)
                .group_by(
                    ProductAccess.id,
                    ProductAccess.product_id,
                    ProductAccess.order_id,
                    ProductAccess.created_at,
                )
                .order_by(ProductAccess.created_at.desc())
            )
            result = await self.session.execute(stmt)

            return [
                {
                    "product_id": row.product_id,
                    "product_name": row.product_name,
                    "order_id": row.order_id,
                    "granted_at": row.created_at,
                }
                for row in result.all()
            ]

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch user entitlements",
                user_id=str(user_id),
                error=str(e),
            )
            raise EntitlementRepositoryError(
                "Failed to fetch user entitlements",
                user_id=str(user_id),
                error=str(e),
            ) from e
