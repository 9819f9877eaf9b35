"""
Order data access repository with transaction support.

This module implements the OrderRepository class providing async methods for
creating orders with items, reading orders and their items, and applying
payment updates. Status writes are conditional on the status the caller
previously read, so two concurrent writers cannot silently overwrite each
other.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.logging import get_logger
from storefront.database.models.order import Order, OrderItem
from storefront.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""

    pass


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""

    pass


class ConcurrentOrderUpdateError(OrderUpdateError):
    """Raised when the order status changed between read and write."""

    pass


class OrderRepository:
    """
    Repository for order data access operations.

    Provides async methods for creating orders atomically with their items,
    loading orders for their owner, and the conditional updates used by the
    payment reconciler and the cancellation path.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def create_order_with_items(
        self,
        user_id: uuid.UUID,
        total_amount: int,
        currency: str,
        items: Sequence[dict[str, Any]],
    ) -> Order:
        """
        Create a pending order with its items atomically.

        The order and every item are written in one transaction; on failure
        nothing is persisted.

        Args:
            user_id: User placing the order
            total_amount: Order total in whole currency units
            currency: ISO currency code of all amounts
            items: Items with product_id, product_name, quantity and price

        Returns:
            Created order with items

        Raises:
            OrderCreationError: If order creation fails
        """
        try:
            logger.info(
                "Creating order with items",
                user_id=str(user_id),
                total_amount=total_amount,
                currency=currency,
                item_count=len(items),
            )

            order = Order(
                id=uuid.uuid4(),
                user_id=user_id,
                status=OrderStatus.PENDING,
                total_amount=total_amount,
                currency=currency,
            )
            self.session.add(order)

            order_items = [
                OrderItem(
                    id=uuid.uuid4(),
                    order_id=order.id,
                    product_id=item_data["product_id"],
                    product_name=item_data["product_name"],
                    quantity=item_data["quantity"],
                    price=item_data["price"],
                    currency=currency,
                )
                for item_data in items
            ]
            self.session.add_all(order_items)

            await self.session.commit()
            await self.session.refresh(order, ["items"])

            logger.info(
                "Order created successfully",
                order_id=str(order.id),
                item_count=len(order_items),
            )

            return order

        except IntegrityError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - integrity error",
                error=str(e),
                user_id=str(user_id),
            )
            raise OrderCreationError(
                "Order creation failed due to data integrity violation",
                user_id=str(user_id),
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - database error",
                error=str(e),
                user_id=str(user_id),
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                user_id=str(user_id),
                error=str(e),
            ) from e

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        include_items: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID.

        Args:
            order_id: Order identifier
            include_items: Whether to eagerly load order items

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug("Fetching order by ID", order_id=str(order_id))

            stmt = select(Order).where(Order.id == order_id)
            if include_items:
                stmt = stmt.options(selectinload(Order.items))

            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def get_order_items(self, order_id: uuid.UUID) -> Sequence[OrderItem]:
        """
        Get the items of an order.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(OrderItem)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.product_name)
            )
            result = await self.session.execute(stmt)
            return result.scalars().all()

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order items",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch order items",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def get_user_orders(
        self,
        user_id: uuid.UUID,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        Get orders for user with pagination, newest first.

        Args:
            user_id: User identifier
            status: Optional status filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug(
                "Fetching user orders",
                user_id=str(user_id),
                status=status.value if status else None,
                skip=skip,
                limit=limit,
            )

            conditions = [Order.user_id == user_id]
            if status:
                conditions.append(Order.status == status)

            stmt = (
                select(Order)
                .where(and_(*conditions))
                .options(selectinload(Order.items))
                .order_by(Order.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            count_stmt = (
                select(func.count()).select_from(Order).where(and_(*conditions))
            )

            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)

            orders = result.scalars().all()
            total_count = count_result.scalar_one()

            logger.debug(
                "User orders fetched",
                user_id=str(user_id),
                count=len(orders),
                total=total_count,
            )

            return orders, total_count

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch user orders",
                user_id=str(user_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch user orders",
                user_id=str(user_id),
                error=str(e),
            ) from e

    async def apply_payment_update(
        self,
        order_id: uuid.UUID,
        expected_status: OrderStatus,
        new_status: OrderStatus,
        transaction_id: Optional[str],
        payment_type: Optional[str],
    ) -> None:
        """
        Persist status, transaction id and payment type in one statement.

        The update only matches while the order still has ``expected_status``.
        Missing transaction id or payment type values leave the stored ones
        untouched.

        Args:
            order_id: Order identifier
            expected_status: Status the caller read before deciding
            new_status: Status to write
            transaction_id: Gateway transaction identifier
            payment_type: Gateway payment method

        Raises:
            ConcurrentOrderUpdateError: If the status changed since it was read
            OrderUpdateError: If update fails
        """
        values: dict[str, Any] = {"status": new_status}
        if transaction_id is not None:
            values["midtrans_transaction_id"] = transaction_id
        if payment_type is not None:
            values["payment_type"] = payment_type

        try:
            stmt = (
                update(Order)
                .where(Order.id == order_id, Order.status == expected_status)
                .values(**values)
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            updated_id = result.scalar_one_or_none()

            if updated_id is None:
                await self.session.rollback()
                logger.warning(
                    "Order status changed concurrently",
                    order_id=str(order_id),
                    expected_status=expected_status.value,
                    new_status=new_status.value,
                )
                raise ConcurrentOrderUpdateError(
                    "Order was modified concurrently",
                    order_id=str(order_id),
                    expected_status=expected_status.value,
                )

            await self.session.commit()

            logger.info(
                "Order payment update applied",
                order_id=str(order_id),
                previous_status=expected_status.value,
                status=new_status.value,
                transaction_id=transaction_id,
                payment_type=payment_type,
            )

        except ConcurrentOrderUpdateError:
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to apply payment update",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to apply payment update",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def cancel_pending_order(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> bool:
        """
        Cancel an order if it belongs to ``user_id`` and is still pending.

        Returns:
            True if a row was cancelled, False otherwise

        Raises:
            OrderUpdateError: If update fails
        """
        try:
            stmt = (
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.user_id == user_id,
                    Order.status == OrderStatus.PENDING,
                )
                .values(status=OrderStatus.CANCELLED)
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            cancelled = result.scalar_one_or_none() is not None
            await self.session.commit()

            logger.info(
                "Order cancellation attempted",
                order_id=str(order_id),
                user_id=str(user_id),
                cancelled=cancelled,
            )
            return cancelled

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to cancel order",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to cancel order",
                order_id=str(order_id),
                error=str(e),
            ) from e
