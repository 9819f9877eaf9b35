"""
Tests for the order payment state machine.

Covers the gateway status mapping table, the monotonic guard that keeps
terminal orders unchanged, and the owner cancellation rule.
"""

import pytest

from storefront.services.orders.enums import (
    OrderStatus,
    TERMINAL_STATUSES,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from storefront.services.orders.state_machine import (
    PaymentStateMachine,
    StateTransitionError,
    TransitionDecision,
    map_gateway_status,
    resolve_transition,
)


@pytest.fixture
def state_machine() -> PaymentStateMachine:
    return PaymentStateMachine()


class TestGatewayStatusMapping:
    """Mapping of gateway transaction/fraud status to order status."""

    @pytest.mark.parametrize(
        "transaction_status,fraud_status,expected",
        [
            ("capture", "accept", OrderStatus.PAID),
            ("settlement", None, OrderStatus.PAID),
            ("settlement", "challenge", OrderStatus.PAID),
            ("cancel", None, OrderStatus.FAILED),
            ("deny", None, OrderStatus.FAILED),
            ("expire", None, OrderStatus.FAILED),
            ("pending", None, OrderStatus.PENDING),
        ],
    )
    def test_mapping_table(self, transaction_status, fraud_status, expected):
        assert map_gateway_status(transaction_status, fraud_status) == expected

    @pytest.mark.parametrize("fraud_status", ["challenge", "deny", None, ""])
    def test_capture_without_accept_means_no_change(self, fraud_status):
        assert map_gateway_status("capture", fraud_status) is None

    @pytest.mark.parametrize("transaction_status", ["refund", "authorize", "", None])
    def test_unknown_status_maps_to_pending_without_raising(self, transaction_status):
        assert map_gateway_status(transaction_status) == OrderStatus.PENDING

    def test_mapping_is_case_insensitive(self):
        assert map_gateway_status("SETTLEMENT") == OrderStatus.PAID
        assert map_gateway_status("Capture", "ACCEPT") == OrderStatus.PAID


class TestMonotonicGuard:
    """Terminal statuses are never left because of a notification."""

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    @pytest.mark.parametrize(
        "proposed",
        [OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.FAILED],
    )
    def test_terminal_status_is_kept(self, terminal, proposed):
        assert resolve_transition(terminal, proposed) == terminal

    @pytest.mark.parametrize(
        "proposed",
        [OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED],
    )
    def test_pending_accepts_any_status(self, proposed):
        assert resolve_transition(OrderStatus.PENDING, proposed) == proposed

    def test_no_change_keeps_current(self):
        assert resolve_transition(OrderStatus.PENDING, None) == OrderStatus.PENDING
        assert resolve_transition(OrderStatus.PAID, None) == OrderStatus.PAID

    def test_terminal_statuses_have_no_transitions(self):
        for status in TERMINAL_STATUSES:
            assert get_allowed_order_transitions(status) == set()
            assert not validate_order_status_transition(status, OrderStatus.PENDING)


class TestDecide:
    def test_settlement_on_pending_order(self, state_machine):
        decision = state_machine.decide(OrderStatus.PENDING, "settlement")

        assert decision == TransitionDecision(
            previous=OrderStatus.PENDING,
            proposed=OrderStatus.PAID,
            target=OrderStatus.PAID,
        )
        assert decision.changed
        assert decision.should_provision
        assert not decision.suppressed

    def test_stale_pending_on_paid_order_is_suppressed(self, state_machine):
        decision = state_machine.decide(OrderStatus.PAID, "pending")

        assert decision.target == OrderStatus.PAID
        assert decision.suppressed
        assert not decision.changed
        assert decision.should_provision

    def test_expire_on_paid_order_keeps_paid(self, state_machine):
        decision = state_machine.decide(OrderStatus.PAID, "expire")
        assert decision.target == OrderStatus.PAID

    def test_capture_challenge_keeps_pending(self, state_machine):
        decision = state_machine.decide(OrderStatus.PENDING, "capture", "challenge")

        assert decision.proposed is None
        assert decision.target == OrderStatus.PENDING
        assert not decision.should_provision
        assert not decision.suppressed

    def test_failed_order_not_revived_by_settlement(self, state_machine):
        decision = state_machine.decide(OrderStatus.FAILED, "settlement")

        assert decision.target == OrderStatus.FAILED
        assert not decision.should_provision


class TestCancellation:
    def test_pending_is_cancellable(self, state_machine):
        state_machine.ensure_cancellable(OrderStatus.PENDING)

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED],
    )
    def test_non_pending_cannot_be_cancelled(self, state_machine, status):
        with pytest.raises(StateTransitionError) as exc_info:
            state_machine.ensure_cancellable(status)

        assert exc_info.value.current_state == status
        assert exc_info.value.target_state == OrderStatus.CANCELLED


class TestOrderStatus:
    def test_from_string(self):
        assert OrderStatus.from_string(" Paid ") == OrderStatus.PAID

    def test_from_string_invalid(self):
        with pytest.raises(ValueError, match="Invalid order status"):
            OrderStatus.from_string("berhasil")

    def test_terminal_flags(self):
        assert not OrderStatus.PENDING.is_terminal()
        assert OrderStatus.PAID.is_terminal()
        assert OrderStatus.PENDING.can_cancel()
        assert not OrderStatus.PAID.can_cancel()
