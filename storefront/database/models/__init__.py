"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata
for Alembic and relationship resolution.
"""

from storefront.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from storefront.database.models.entitlement import ProductAccess
from storefront.database.models.order import Order, OrderItem

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Order",
    "OrderItem",
    "ProductAccess",
]
