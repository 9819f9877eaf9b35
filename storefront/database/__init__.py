"""
Database package initialization.

- base: declarative base and shared mixins
- connection: async engine and session management
- models: ORM models for orders, order items and product access
"""

__all__ = []
