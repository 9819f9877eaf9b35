"""
FastAPI dependencies for authentication, sessions and services.

This module provides dependency functions for access token verification,
per-request database sessions and the service objects built on them.
"""

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, set_user_id
from storefront.core.security import TokenError, decode_access_token
from storefront.database.connection import Database
from storefront.schemas.auth import AuthenticatedUser
from storefront.services.checkout.service import CheckoutService
from storefront.services.entitlements.repository import EntitlementRepository
from storefront.services.orders.repository import OrderRepository
from storefront.services.payments.midtrans_client import (
    MidtransClient,
    get_midtrans_client,
)
from storefront.services.payments.reconciler import WebhookReconciler

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    """Return the settings the application was created with."""
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    return settings or get_settings()


AppSettings = Annotated[Settings, Depends(get_app_settings)]


def get_database(request: Request) -> Database:
    """Return the Database built by the application lifespan."""
    database: Optional[Database] = getattr(request.app.state, "database", None)
    if database is None:
        logger.error("Database requested before application startup")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not available",
        )
    return database


async def get_db(
    database: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a database session scoped to the request.

    Yields:
        Async database session
    """
    async with database.session() as session:
        yield session


async def get_optional_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    settings: AppSettings,
) -> Optional[AuthenticatedUser]:
    """
    Resolve the signed-in user if a bearer token was sent.

    Returns:
        The authenticated user, or None when no token was provided

    Raises:
        HTTPException: 401 if a token was sent but does not verify
    """
    if credentials is None:
        return None

    try:
        user = decode_access_token(credentials.credentials, settings=settings)
    except TokenError as e:
        logger.warning(
            "Authentication failed",
            code=e.code,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    set_user_id(str(user.id))
    return user


async def get_current_user(
    user: Annotated[Optional[AuthenticatedUser], Depends(get_optional_user)],
) -> AuthenticatedUser:
    """
    Require a signed-in user.

    Raises:
        HTTPException: 401 if no valid token was provided
    """
    if user is None:
        logger.warning("Authentication failed: No credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_gateway_client(settings: AppSettings) -> MidtransClient:
    return get_midtrans_client(settings)


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
OptionalUser = Annotated[Optional[AuthenticatedUser], Depends(get_optional_user)]
GatewayClient = Annotated[MidtransClient, Depends(get_gateway_client)]


def get_checkout_service(
    db: DatabaseSession,
    gateway_client: GatewayClient,
    settings: AppSettings,
) -> CheckoutService:
    return CheckoutService(
        order_repository=OrderRepository(db),
        entitlement_repository=EntitlementRepository(db),
        gateway_client=gateway_client,
        currency=settings.currency,
        timeout=settings.store_timeout_seconds,
    )


def get_webhook_reconciler(
    db: DatabaseSession,
    gateway_client: GatewayClient,
    settings: AppSettings,
) -> WebhookReconciler:
    return WebhookReconciler(
        order_repository=OrderRepository(db),
        entitlement_repository=EntitlementRepository(db),
        gateway_client=gateway_client,
        verify_signature=settings.midtrans_verify_signature,
        timeout=settings.store_timeout_seconds,
    )


CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
ReconcilerDep = Annotated[WebhookReconciler, Depends(get_webhook_reconciler)]
