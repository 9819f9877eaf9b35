"""
Pytest configuration and shared test fixtures.

This module provides test settings, in-memory order and entitlement
repositories, a gateway client backed by ``httpx.MockTransport`` and an
application wired to those fakes.
"""

import asyncio
import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Optional, Sequence, Union

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from storefront.api.deps import get_checkout_service, get_webhook_reconciler
from storefront.core.config import Settings
from storefront.core.rate_limit import limiter
from storefront.core.security import create_access_token
from storefront.database.models.order import Order, OrderItem
from storefront.main import create_app
from storefront.schemas.auth import AuthenticatedUser
from storefront.services.checkout.service import CheckoutService
from storefront.services.entitlements.repository import EntitlementRepositoryError
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.repository import (
    ConcurrentOrderUpdateError,
    OrderCreationError,
)
from storefront.services.payments.midtrans_client import MidtransClient
from storefront.services.payments.reconciler import WebhookReconciler

SERVER_KEY = "SB-Mid-server-test-key"


# ============================================================================
# In-memory repositories
# ============================================================================


class FakeOrderRepository:
    """In-memory stand-in for OrderRepository with compare-and-set updates."""

    def __init__(self, delay: float = 0.0):
        self.orders: dict[uuid.UUID, Order] = {}
        self.updates: list[dict[str, Any]] = []
        self.delay = delay
        self.fail_create = False
        self.fail_update: Optional[Exception] = None

    def add_order(
        self,
        user_id: uuid.UUID,
        items: Sequence[tuple[uuid.UUID, str, int, int]],
        status: OrderStatus = OrderStatus.PENDING,
        order_id: Optional[uuid.UUID] = None,
        currency: str = "IDR",
    ) -> Order:
        """Seed an order; items are (product_id, name, price, quantity)."""
        now = datetime.now(timezone.utc)
        order = Order(
            id=order_id or uuid.uuid4(),
            user_id=user_id,
            status=status,
            total_amount=sum(price * quantity for _, _, price, quantity in items),
            currency=currency,
            created_at=now,
            updated_at=now,
        )
        for product_id, name, price, quantity in items:
            order.items.append(
                OrderItem(
                    id=uuid.uuid4(),
                    order_id=order.id,
                    product_id=product_id,
                    product_name=name,
                    price=price,
                    quantity=quantity,
                    currency=currency,
                    created_at=now,
                    updated_at=now,
                )
            )
        self.orders[order.id] = order
        return order

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    async def create_order_with_items(
        self,
        user_id: uuid.UUID,
        total_amount: int,
        currency: str,
        items: Sequence[dict[str, Any]],
    ) -> Order:
        await self._pause()
        if self.fail_create:
            raise OrderCreationError("Order creation failed due to database error")
        order = self.add_order(
            user_id,
            [
                (item["product_id"], item["product_name"], item["price"], item["quantity"])
                for item in items
            ],
            currency=currency,
        )
        assert order.total_amount == total_amount
        return order

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        include_items: bool = False,
    ) -> Optional[Order]:
        await self._pause()
        return self.orders.get(order_id)

    async def get_order_items(self, order_id: uuid.UUID) -> list[OrderItem]:
        await self._pause()
        order = self.orders.get(order_id)
        return list(order.items) if order else []

    async def get_user_orders(
        self,
        user_id: uuid.UUID,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        owned = [
            order
            for order in self.orders.values()
            if order.user_id == user_id and (status is None or order.status == status)
        ]
        return owned[skip : skip + limit], len(owned)

    async def apply_payment_update(
        self,
        order_id: uuid.UUID,
        expected_status: OrderStatus,
        new_status: OrderStatus,
        transaction_id: Optional[str],
        payment_type: Optional[str],
    ) -> None:
        await self._pause()
        if self.fail_update is not None:
            raise self.fail_update
        order = self.orders[order_id]
        if order.status != expected_status:
            raise ConcurrentOrderUpdateError(
                "Order was modified concurrently",
                order_id=str(order_id),
            )
        order.status = new_status
        if transaction_id is not None:
            order.midtrans_transaction_id = transaction_id
        if payment_type is not None:
            order.payment_type = payment_type
        self.updates.append(
            {
                "order_id": order_id,
                "expected_status": expected_status,
                "status": new_status,
                "transaction_id": transaction_id,
                "payment_type": payment_type,
            }
        )

    async def cancel_pending_order(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> bool:
        order = self.orders.get(order_id)
        if order is None or order.user_id != user_id:
            return False
        if order.status != OrderStatus.PENDING:
            return False
        order.status = OrderStatus.CANCELLED
        return True


class FakeEntitlementRepository:
    """In-memory stand-in for EntitlementRepository with a unique key."""

    def __init__(self):
        self.rows: list[dict[str, Any]] = []
        self.grant_calls = 0
        self.fail_grant = False

    @property
    def keys(self) -> set[tuple[uuid.UUID, uuid.UUID, uuid.UUID]]:
        return {(r["user_id"], r["product_id"], r["order_id"]) for r in self.rows}

    async def has_grants_for_order(self, order_id: uuid.UUID) -> bool:
        return any(row["order_id"] == order_id for row in self.rows)

    async def grant_access(self, grants: Sequence[dict[str, uuid.UUID]]) -> int:
        self.grant_calls += 1
        if self.fail_grant:
            raise EntitlementRepositoryError("Failed to grant product access")
        inserted = 0
        for grant in grants:
            key = (grant["user_id"], grant["product_id"], grant["order_id"])
            if key in self.keys:
                continue
            self.rows.append({**grant, "created_at": datetime.now(timezone.utc)})
            inserted += 1
        return inserted

    async def get_user_entitlements(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        return [
            {
                "product_id": row["product_id"],
                "product_name": None,
                "order_id": row["order_id"],
                "granted_at": row["created_at"],
            }
            for row in self.rows
            if row["user_id"] == user_id
        ]


# ============================================================================
# Gateway
# ============================================================================


class GatewayRecorder:
    """Records requests sent through a MockTransport and replays a handler."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = self.default_handler

    @staticmethod
    def default_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            201,
            json={
                "token": "snap-token-123",
                "redirect_url": "https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token-123",
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def midtrans_signature(order_id: str, status_code: str, gross_amount: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{SERVER_KEY}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def signed_notification(
    order_id: Union[uuid.UUID, str],
    transaction_status: str,
    gross_amount: str = "100000.00",
    status_code: str = "200",
    **fields: Any,
) -> dict[str, Any]:
    """Build a notification body carrying a valid signature."""
    payload = {
        "order_id": str(order_id),
        "transaction_status": transaction_status,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "signature_key": midtrans_signature(str(order_id), status_code, gross_amount),
    }
    payload.update(fields)
    return payload


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings used by every test; nothing is read from the environment."""
    return Settings(
        environment="test",
        debug=False,
        log_level="DEBUG",
        auth_jwt_secret="test-auth-secret-0123456789",
        midtrans_server_key=SERVER_KEY,
        midtrans_verify_signature=True,
        store_timeout_seconds=1.0,
        currency="IDR",
    )


@pytest.fixture
def order_repository() -> FakeOrderRepository:
    return FakeOrderRepository()


@pytest.fixture
def entitlement_repository() -> FakeEntitlementRepository:
    return FakeEntitlementRepository()


@pytest.fixture
def gateway_recorder() -> GatewayRecorder:
    return GatewayRecorder()


@pytest.fixture
def gateway_client(gateway_recorder: GatewayRecorder) -> MidtransClient:
    return MidtransClient(
        server_key=SERVER_KEY,
        base_url="https://app.sandbox.midtrans.com",
        timeout=5.0,
        transport=httpx.MockTransport(gateway_recorder),
    )


@pytest.fixture
def reconciler(
    order_repository: FakeOrderRepository,
    entitlement_repository: FakeEntitlementRepository,
    gateway_client: MidtransClient,
) -> WebhookReconciler:
    return WebhookReconciler(
        order_repository=order_repository,
        entitlement_repository=entitlement_repository,
        gateway_client=gateway_client,
        verify_signature=True,
        timeout=1.0,
    )


@pytest.fixture
def checkout_service(
    order_repository: FakeOrderRepository,
    entitlement_repository: FakeEntitlementRepository,
    gateway_client: MidtransClient,
) -> CheckoutService:
    return CheckoutService(
        order_repository=order_repository,
        entitlement_repository=entitlement_repository,
        gateway_client=gateway_client,
        currency="IDR",
        timeout=1.0,
    )


@pytest.fixture
def user() -> AuthenticatedUser:
    return AuthenticatedUser(id=uuid.uuid4(), email="budi@example.com")


@pytest.fixture
def auth_headers(user: AuthenticatedUser, test_settings: Settings) -> dict[str, str]:
    token = create_access_token(
        user.id,
        email=user.email,
        expires_delta=timedelta(minutes=5),
        settings=test_settings,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(
    test_settings: Settings,
    checkout_service: CheckoutService,
    reconciler: WebhookReconciler,
):
    """Application wired to the in-memory repositories."""
    application = create_app(test_settings)
    application.dependency_overrides[get_checkout_service] = lambda: checkout_service
    application.dependency_overrides[get_webhook_reconciler] = lambda: reconciler
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous test client for the application.

    Yields:
        AsyncClient: Asynchronous test client bound to the ASGI app
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture(autouse=True)
def disable_rate_limit():
    """Rate limiting is exercised separately; keep it off for other tests."""
    previous = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = previous
