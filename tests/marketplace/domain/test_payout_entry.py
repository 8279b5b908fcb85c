"""Tests for the PayoutEntry aggregate."""

import pytest
from protean.exceptions import ValidationError

from marketplace.errors import LedgerInvariantViolation
from marketplace.order.order import Order
from marketplace.order.pricing import OrderTotals
from marketplace.payout.events import PayoutEntryRecorded, PayoutPaid
from marketplace.payout.payout import PayoutEntry, PayoutStatus, payout_entry_id


def _order():
    return Order.place(
        buyer_id="buyer-001",
        vendor_id="vendor-001",
        items_data=[
            {
                "product_id": "prod-001",
                "title": "Kikoi",
                "category_id": None,
                "unit_price": 1000.0,
                "quantity": 2,
                "line_total": 2000.0,
                "commission_rate": 10.0,
                "commission_amount": 200.0,
            }
        ],
        delivery_address={"full_name": "A", "phone": "0712345678", "street": "S", "city": "Nairobi"},
        payment_method="mpesa",
        totals=OrderTotals(subtotal=2000.0, shipping=500.0, tax=320.0, discount=0.0, total=2820.0),
        commission_amount=200.0,
        currency="KES",
    )


class TestRecord:
    def test_copies_frozen_amounts(self):
        order = _order()
        entry = PayoutEntry.record(order)
        assert entry.id == payout_entry_id(str(order.id))
        assert entry.vendor_id == "vendor-001"
        assert entry.gross_amount == 2820.0
        assert entry.commission_amount == 200.0
        assert entry.net_amount == 2620.0
        assert entry.status == PayoutStatus.PENDING.value
        assert isinstance(entry._events[-1], PayoutEntryRecorded)

    def test_refuses_inconsistent_vendor_amount(self):
        order = _order()
        order.vendor_amount = 2000.0
        with pytest.raises(LedgerInvariantViolation):
            PayoutEntry.record(order)


class TestDisbursement:
    def test_approve_then_pay(self):
        entry = PayoutEntry.record(_order())
        entry.approve()
        assert entry.status == PayoutStatus.APPROVED.value
        entry.mark_paid("MPESA-B2C-001")
        assert entry.status == PayoutStatus.PAID.value
        assert entry.transaction_ref == "MPESA-B2C-001"
        assert entry.paid_at is not None
        assert isinstance(entry._events[-1], PayoutPaid)

    def test_pay_directly_from_pending(self):
        entry = PayoutEntry.record(_order())
        entry.mark_paid("BANK-001")
        assert entry.status == PayoutStatus.PAID.value

    def test_reference_required(self):
        entry = PayoutEntry.record(_order())
        with pytest.raises(ValidationError):
            entry.mark_paid("")

    def test_paid_entry_cannot_be_reversed(self):
        entry = PayoutEntry.record(_order())
        entry.mark_paid("BANK-001")
        with pytest.raises(ValidationError):
            entry.reverse("refund")

    def test_reverse_pending_entry(self):
        entry = PayoutEntry.record(_order())
        entry.reverse("Order refunded")
        assert entry.status == PayoutStatus.REVERSED.value
        assert entry.net_amount == 2620.0
