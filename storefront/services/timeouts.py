"""
Timeouts applied to calls against the order and entitlement store.
"""

import asyncio
from typing import Any, Awaitable, TypeVar

from storefront.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StoreTimeoutError(Exception):
    """Raised when a store call does not complete within its timeout."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


async def with_store_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    operation: str,
    **context: Any,
) -> T:
    """
    Await a store call, failing with StoreTimeoutError after ``timeout``.

    Args:
        awaitable: Repository coroutine to await
        timeout: Seconds allowed for the call
        operation: Operation name for logging

    Raises:
        StoreTimeoutError: If the call exceeds the timeout
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(
            "Store call timed out",
            operation=operation,
            timeout_seconds=timeout,
            **context,
        )
        raise StoreTimeoutError(
            f"Store operation '{operation}' timed out after {timeout}s",
            operation=operation,
            **context,
        ) from e
