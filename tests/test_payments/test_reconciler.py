"""
Tests for the webhook reconciler.

Exercises status mapping against stored orders, the terminal-state guard,
idempotent entitlement provisioning and the failure paths that make the
gateway redeliver.
"""

import uuid

import pytest

from storefront.services.entitlements.repository import EntitlementRepositoryError
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.repository import (
    ConcurrentOrderUpdateError,
    OrderNotFoundError,
)
from storefront.services.payments.reconciler import (
    InvalidSignatureError,
    NotificationValidationError,
    WebhookReconciler,
)
from storefront.services.timeouts import StoreTimeoutError
from tests.conftest import FakeOrderRepository, signed_notification

P1 = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
P2 = uuid.UUID("00000000-0000-0000-0000-0000000000a2")
P3 = uuid.UUID("00000000-0000-0000-0000-0000000000a3")


@pytest.fixture
def buyer_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def order(order_repository, buyer_id):
    """Pending order O1: P1 60000 and P2 40000, total 100000."""
    return order_repository.add_order(
        buyer_id,
        [(P1, "Logo design", 60000, 1), (P2, "Brand guide", 40000, 1)],
    )


def settlement(order_id) -> dict:
    return signed_notification(
        order_id,
        "settlement",
        transaction_id="T1",
        payment_type="bank_transfer",
    )


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_settlement_marks_paid_and_grants_access(
        self, reconciler, order, order_repository, entitlement_repository, buyer_id
    ):
        result = await reconciler.handle_notification(settlement(order.id))

        assert result.previous_status == OrderStatus.PENDING
        assert result.status == OrderStatus.PAID
        assert result.status_changed
        assert result.entitlements_granted == 2

        stored = order_repository.orders[order.id]
        assert stored.status == OrderStatus.PAID
        assert stored.midtrans_transaction_id == "T1"
        assert stored.payment_type == "bank_transfer"

        assert entitlement_repository.keys == {
            (buyer_id, P1, order.id),
            (buyer_id, P2, order.id),
        }

    @pytest.mark.asyncio
    async def test_capture_accept_marks_paid(self, reconciler, order, order_repository):
        result = await reconciler.handle_notification(
            signed_notification(order.id, "capture", fraud_status="accept")
        )

        assert result.status == OrderStatus.PAID
        assert order_repository.orders[order.id].status == OrderStatus.PAID

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transaction_status", ["cancel", "deny", "expire"])
    async def test_failure_statuses_mark_failed(
        self, reconciler, order, order_repository, entitlement_repository, transaction_status
    ):
        result = await reconciler.handle_notification(
            signed_notification(order.id, transaction_status, status_code="202")
        )

        assert result.status == OrderStatus.FAILED
        assert order_repository.orders[order.id].status == OrderStatus.FAILED
        assert entitlement_repository.rows == []

    @pytest.mark.asyncio
    async def test_unknown_status_keeps_pending(self, reconciler, order, order_repository):
        result = await reconciler.handle_notification(
            signed_notification(order.id, "refund")
        )

        assert result.status == OrderStatus.PENDING
        assert order_repository.orders[order.id].status == OrderStatus.PENDING


class TestFraudFlaggedCapture:
    @pytest.mark.asyncio
    async def test_challenge_keeps_pending_without_entitlements(
        self, reconciler, order, order_repository, entitlement_repository
    ):
        result = await reconciler.handle_notification(
            signed_notification(
                order.id,
                "capture",
                fraud_status="challenge",
                transaction_id="T1",
                payment_type="credit_card",
            )
        )

        assert result.status == OrderStatus.PENDING
        assert not result.status_changed
        stored = order_repository.orders[order.id]
        assert stored.status == OrderStatus.PENDING
        assert stored.midtrans_transaction_id == "T1"
        assert stored.payment_type == "credit_card"
        assert entitlement_repository.rows == []
        assert entitlement_repository.grant_calls == 0


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_redelivered_settlement_grants_once(
        self, reconciler, order, entitlement_repository
    ):
        await reconciler.handle_notification(settlement(order.id))
        second = await reconciler.handle_notification(settlement(order.id))

        assert len(entitlement_repository.rows) == 2
        assert second.status == OrderStatus.PAID
        assert not second.status_changed
        assert second.provisioning_skipped
        assert second.entitlements_granted == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("replays", [1, 3, 5])
    async def test_replays_converge_on_same_rows(
        self, reconciler, order, entitlement_repository, replays
    ):
        for _ in range(replays):
            await reconciler.handle_notification(settlement(order.id))

        assert len(entitlement_repository.rows) == 2

    @pytest.mark.asyncio
    async def test_paid_order_without_grants_is_provisioned(
        self, reconciler, order_repository, entitlement_repository, buyer_id
    ):
        paid = order_repository.add_order(
            buyer_id,
            [(P1, "Logo design", 100000, 1)],
            status=OrderStatus.PAID,
        )

        result = await reconciler.handle_notification(settlement(paid.id))

        assert result.entitlements_granted == 1
        assert entitlement_repository.keys == {(buyer_id, P1, paid.id)}

    @pytest.mark.asyncio
    async def test_grant_failure_is_retried_on_redelivery(
        self, reconciler, order, order_repository, entitlement_repository
    ):
        entitlement_repository.fail_grant = True
        with pytest.raises(EntitlementRepositoryError):
            await reconciler.handle_notification(settlement(order.id))

        assert order_repository.orders[order.id].status == OrderStatus.PAID
        assert entitlement_repository.rows == []

        entitlement_repository.fail_grant = False
        result = await reconciler.handle_notification(settlement(order.id))

        assert result.entitlements_granted == 2
        assert len(entitlement_repository.rows) == 2


class TestTerminalGuard:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [OrderStatus.PAID, OrderStatus.FAILED])
    async def test_pending_notification_does_not_downgrade(
        self, reconciler, order_repository, buyer_id, terminal
    ):
        stored = order_repository.add_order(
            buyer_id, [(P1, "Logo design", 100000, 1)], status=terminal
        )

        result = await reconciler.handle_notification(
            signed_notification(stored.id, "pending", status_code="201")
        )

        assert result.status == terminal
        assert order_repository.orders[stored.id].status == terminal

    @pytest.mark.asyncio
    async def test_expire_after_settlement_keeps_paid(
        self, reconciler, order, order_repository, entitlement_repository
    ):
        await reconciler.handle_notification(settlement(order.id))
        await reconciler.handle_notification(
            signed_notification(order.id, "expire", status_code="202")
        )

        assert order_repository.orders[order.id].status == OrderStatus.PAID
        assert len(entitlement_repository.rows) == 2

    @pytest.mark.asyncio
    async def test_settlement_after_cancel_does_not_provision(
        self, reconciler, order_repository, entitlement_repository, buyer_id
    ):
        cancelled = order_repository.add_order(
            buyer_id,
            [(P1, "Logo design", 100000, 1)],
            status=OrderStatus.CANCELLED,
        )

        result = await reconciler.handle_notification(settlement(cancelled.id))

        assert result.status == OrderStatus.CANCELLED
        assert entitlement_repository.rows == []


class TestFanOut:
    @pytest.mark.asyncio
    async def test_one_entitlement_per_distinct_product(
        self, reconciler, order_repository, entitlement_repository, buyer_id
    ):
        stored = order_repository.add_order(
            buyer_id,
            [
                (P1, "Logo design", 10000, 3),
                (P2, "Brand guide", 20000, 2),
                (P3, "Icon set", 30000, 1),
            ],
        )

        result = await reconciler.handle_notification(
            signed_notification(stored.id, "settlement")
        )

        assert result.entitlements_granted == 3
        assert {row["product_id"] for row in entitlement_repository.rows} == {P1, P2, P3}

    @pytest.mark.asyncio
    async def test_repeated_product_lines_collapse(
        self, reconciler, order_repository, entitlement_repository, buyer_id
    ):
        stored = order_repository.add_order(
            buyer_id,
            [(P1, "Logo design", 10000, 1), (P1, "Logo design", 10000, 2)],
        )

        await reconciler.handle_notification(signed_notification(stored.id, "settlement"))

        assert len(entitlement_repository.rows) == 1


class TestRejectedNotifications:
    @pytest.mark.asyncio
    async def test_missing_fields(self, reconciler, order_repository):
        with pytest.raises(NotificationValidationError) as exc_info:
            await reconciler.handle_notification({"order_id": "abc"})

        assert "transaction_status" in exc_info.value.message
        assert order_repository.updates == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [[], "settlement", None, 42])
    async def test_non_object_body(self, reconciler, payload):
        with pytest.raises(NotificationValidationError):
            await reconciler.handle_notification(payload)

    @pytest.mark.asyncio
    async def test_bad_signature_changes_nothing(
        self, reconciler, order, order_repository, entitlement_repository
    ):
        payload = settlement(order.id)
        payload["gross_amount"] = "1.00"

        with pytest.raises(InvalidSignatureError):
            await reconciler.handle_notification(payload)

        assert order_repository.orders[order.id].status == OrderStatus.PENDING
        assert order_repository.updates == []
        assert entitlement_repository.rows == []

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, reconciler, order):
        with pytest.raises(InvalidSignatureError):
            await reconciler.handle_notification(
                {"order_id": str(order.id), "transaction_status": "settlement"}
            )

    @pytest.mark.asyncio
    async def test_signature_check_can_be_disabled(
        self, order_repository, entitlement_repository, gateway_client, order
    ):
        reconciler = WebhookReconciler(
            order_repository=order_repository,
            entitlement_repository=entitlement_repository,
            gateway_client=gateway_client,
            verify_signature=False,
        )

        result = await reconciler.handle_notification(
            {"order_id": str(order.id), "transaction_status": "settlement"}
        )

        assert result.status == OrderStatus.PAID

    @pytest.mark.asyncio
    async def test_unknown_order(self, reconciler):
        with pytest.raises(OrderNotFoundError):
            await reconciler.handle_notification(
                signed_notification(uuid.uuid4(), "settlement")
            )

    @pytest.mark.asyncio
    async def test_non_uuid_order_id(self, reconciler):
        with pytest.raises(OrderNotFoundError):
            await reconciler.handle_notification(
                signed_notification("ORDER-123", "settlement")
            )


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_concurrent_update_surfaces(
        self, reconciler, order, order_repository, entitlement_repository
    ):
        order_repository.fail_update = ConcurrentOrderUpdateError(
            "Order was modified concurrently",
            order_id=str(order.id),
        )

        with pytest.raises(ConcurrentOrderUpdateError):
            await reconciler.handle_notification(settlement(order.id))

        assert entitlement_repository.grant_calls == 0

    @pytest.mark.asyncio
    async def test_slow_store_times_out(
        self, entitlement_repository, gateway_client, buyer_id
    ):
        slow_repository = FakeOrderRepository(delay=0.2)
        stored = slow_repository.add_order(buyer_id, [(P1, "Logo design", 100000, 1)])
        reconciler = WebhookReconciler(
            order_repository=slow_repository,
            entitlement_repository=entitlement_repository,
            gateway_client=gateway_client,
            timeout=0.01,
        )

        with pytest.raises(StoreTimeoutError):
            await reconciler.handle_notification(settlement(stored.id))

        assert slow_repository.orders[stored.id].status == OrderStatus.PENDING
