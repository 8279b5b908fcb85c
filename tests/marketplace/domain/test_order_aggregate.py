"""Tests for the Order aggregate: placement, invariants and state machines."""

import re

import pytest
from protean.exceptions import ValidationError

from marketplace.errors import LedgerInvariantViolation
from marketplace.order.events import (
    OrderCancelled,
    OrderPaymentConfirmed,
    OrderPaymentFailed,
    OrderPlaced,
    OrderShipped,
)
from marketplace.order.order import Order, OrderStatus, PaymentStatus, generate_order_id
from marketplace.order.pricing import OrderTotals

ADDRESS = {
    "full_name": "Amina Otieno",
    "phone": "0712345678",
    "street": "Moi Avenue 12",
    "city": "Nairobi",
}


def _place(**overrides):
    defaults = {
        "buyer_id": "buyer-001",
        "vendor_id": "vendor-001",
        "items_data": [
            {
                "product_id": "prod-001",
                "title": "Kikoi",
                "category_id": "textiles",
                "unit_price": 1000.0,
                "quantity": 2,
                "line_total": 2000.0,
                "commission_rate": 10.0,
                "commission_amount": 200.0,
            }
        ],
        "delivery_address": ADDRESS,
        "payment_method": "mpesa",
        "totals": OrderTotals(subtotal=2000.0, shipping=500.0, tax=320.0, discount=0.0, total=2820.0),
        "commission_amount": 200.0,
        "currency": "KES",
    }
    defaults.update(overrides)
    return Order.place(**defaults)


def _paid_order():
    order = _place()
    order.confirm_payment(attempt_id="att-1", provider="mpesa", provider_ref="ws_CO_1", amount=2820.0)
    return order


class TestOrderIdentifier:
    def test_format(self):
        assert re.fullmatch(r"ORD-\d{13}-[0-9A-F]{6}", generate_order_id())

    def test_unique(self):
        assert len({generate_order_id() for _ in range(50)}) == 50


class TestPlaceOrder:
    def test_starts_pending_pending(self):
        order = _place()
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.order_status == OrderStatus.PENDING.value
        assert order.stock_released is False

    def test_freezes_amounts(self):
        order = _place()
        assert order.total_amount == 2820.0
        assert order.commission_amount == 200.0
        assert order.vendor_amount == 2620.0

    def test_items_snapshot(self):
        order = _place()
        assert len(order.items) == 1
        assert order.items[0].unit_price == 1000.0
        assert order.items[0].commission_amount == 200.0
        assert order.stock_lines() == [("prod-001", 2)]

    def test_sets_estimated_delivery(self):
        order = _place(delivery_days=7)
        assert (order.estimated_delivery - order.created_at).days == 7

    def test_raises_order_placed(self):
        order = _place()
        event = order._events[-1]
        assert isinstance(event, OrderPlaced)
        assert event.total_amount == 2820.0
        assert event.vendor_amount == 2620.0

    def test_unbalanced_totals_refused(self):
        with pytest.raises(LedgerInvariantViolation):
            _place(totals=OrderTotals(subtotal=2000.0, shipping=500.0, tax=320.0, discount=0.0, total=2900.0))

    def test_subtotal_must_match_lines(self):
        with pytest.raises(LedgerInvariantViolation):
            _place(totals=OrderTotals(subtotal=1500.0, shipping=500.0, tax=820.0, discount=0.0, total=2820.0))

    def test_discount_below_commission_refused(self):
        totals = OrderTotals(subtotal=2000.0, shipping=0.0, tax=320.0, discount=2220.0, total=100.0)
        with pytest.raises(LedgerInvariantViolation) as exc:
            _place(totals=totals)
        assert exc.value.details["vendor_amount"] == -100.0


class TestPaymentTransitions:
    def test_mark_processing(self):
        order = _place()
        order.mark_payment_processing("ws_CO_1")
        assert order.payment_status == PaymentStatus.PROCESSING.value
        assert order.payment_ref == "ws_CO_1"

    def test_confirm_advances_order_to_processing(self):
        order = _paid_order()
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.order_status == OrderStatus.PROCESSING.value
        assert order.paid_at is not None
        assert isinstance(order._events[-1], OrderPaymentConfirmed)

    def test_cannot_confirm_twice(self):
        order = _paid_order()
        with pytest.raises(ValidationError):
            order.confirm_payment(attempt_id="att-2", provider="mpesa", provider_ref="ws_CO_2", amount=2820.0)

    def test_fail_payment(self):
        order = _place()
        order.fail_payment("PaymentTimeout", attempt_id="att-1")
        assert order.payment_status == PaymentStatus.FAILED.value
        event = order._events[-1]
        assert isinstance(event, OrderPaymentFailed)
        assert event.reason == "PaymentTimeout"

    def test_cannot_fail_completed_payment(self):
        order = _paid_order()
        with pytest.raises(ValidationError):
            order.fail_payment("late failure")

    def test_reopen_after_failure(self):
        order = _place()
        order.fail_payment("ProviderRejected")
        order.mark_stock_released()
        order.reopen_payment()
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.stock_released is False

    def test_stock_released_only_once(self):
        order = _place()
        order.mark_stock_released()
        with pytest.raises(LedgerInvariantViolation):
            order.mark_stock_released()

    def test_flag_for_review(self):
        order = _place()
        order.flag_for_review("Paid 100 against order total 2820", provider_ref="ws_CO_1")
        assert order.needs_review is True
        assert "2820" in order.review_reason


class TestCancellation:
    def test_cancel_pending_order(self):
        order = _place()
        order.cancel("Changed my mind")
        order.void_payment()
        assert order.order_status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.cancellation_reason == "Changed my mind"
        assert isinstance(order._events[-1], OrderCancelled)

    def test_cannot_cancel_paid_order(self):
        order = _paid_order()
        with pytest.raises(ValidationError):
            order.cancel()

    def test_cannot_cancel_twice(self):
        order = _place()
        order.cancel()
        with pytest.raises(ValidationError):
            order.cancel()

    def test_cancelled_order_cannot_be_paid(self):
        order = _place()
        order.cancel()
        with pytest.raises(ValidationError):
            order.confirm_payment(attempt_id="att-1", provider="mpesa", provider_ref="ws_CO_1", amount=2820.0)

    def test_cancelled_order_cannot_retry_payment(self):
        order = _place()
        order.cancel()
        order.void_payment()
        with pytest.raises(ValidationError):
            order.reopen_payment()


class TestFulfillmentAndRefund:
    def test_ship_and_deliver(self):
        order = _paid_order()
        order.ship()
        assert order.order_status == OrderStatus.SHIPPED.value
        assert isinstance(order._events[-1], OrderShipped)
        order.deliver()
        assert order.order_status == OrderStatus.DELIVERED.value
        assert order.delivered_at is not None

    def test_unpaid_order_cannot_ship(self):
        with pytest.raises(ValidationError):
            _place().ship()

    def test_cannot_deliver_before_shipping(self):
        with pytest.raises(ValidationError):
            _paid_order().deliver()

    def test_refund(self):
        order = _paid_order()
        order.refund("Damaged in transit")
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert order.order_status == OrderStatus.REFUNDED.value

    def test_cannot_refund_unpaid_order(self):
        with pytest.raises(ValidationError):
            _place().refund()
