"""PayoutEntry aggregate — a vendor's earnings from one completed order.

Append-only. One entry per order, created in the same unit of work that
marks the order's payment COMPLETED. Amounts are copied from the order's
frozen figures and never recomputed; only ``status`` moves afterwards:

    PENDING → APPROVED → PAID
    PENDING/APPROVED → REVERSED (order refunded before disbursement)
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String

from marketplace.domain import marketplace
from marketplace.errors import LedgerInvariantViolation
from marketplace.payout.events import PayoutApproved, PayoutEntryRecorded, PayoutPaid, PayoutReversed
from marketplace.shared.money import EPSILON, amounts_match, round_money


class PayoutStatus(Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    PAID = "Paid"
    REVERSED = "Reversed"


_VALID_TRANSITIONS = {
    PayoutStatus.PENDING: {PayoutStatus.APPROVED, PayoutStatus.PAID, PayoutStatus.REVERSED},
    PayoutStatus.APPROVED: {PayoutStatus.PAID, PayoutStatus.REVERSED},
    PayoutStatus.PAID: set(),  # Terminal
    PayoutStatus.REVERSED: set(),  # Terminal
}


def payout_entry_id(order_id: str) -> str:
    """One entry per order: the order id determines the entry id."""
    return f"PAYOUT-{order_id}"


@marketplace.aggregate
class PayoutEntry:
    vendor_id = Identifier(required=True)
    order_id = Identifier(required=True)
    gross_amount = Float(required=True)
    commission_amount = Float(required=True)
    net_amount = Float(required=True)
    currency = String(max_length=3, default="KES")
    status = String(choices=PayoutStatus, default=PayoutStatus.PENDING.value)
    transaction_ref = String(max_length=255)
    reversal_reason = String(max_length=500)
    created_at = DateTime()
    approved_at = DateTime()
    paid_at = DateTime()

    @classmethod
    def record(cls, order) -> "PayoutEntry":
        """Create the entry for a just-completed order from its frozen amounts."""
        now = datetime.now(UTC)
        net_amount = round_money(order.total_amount - order.commission_amount)
        if not amounts_match(net_amount, order.vendor_amount, EPSILON):
            raise LedgerInvariantViolation(
                "Vendor amount on the order does not match total minus commission",
                order_id=str(order.id),
                vendor_amount=order.vendor_amount,
                net_amount=net_amount,
            )

        entry = cls(
            id=payout_entry_id(str(order.id)),
            vendor_id=str(order.vendor_id),
            order_id=str(order.id),
            gross_amount=order.total_amount,
            commission_amount=order.commission_amount,
            net_amount=net_amount,
            currency=order.currency,
            created_at=now,
        )
        entry.raise_(
            PayoutEntryRecorded(
                entry_id=str(entry.id),
                vendor_id=entry.vendor_id,
                order_id=entry.order_id,
                gross_amount=entry.gross_amount,
                commission_amount=entry.commission_amount,
                net_amount=entry.net_amount,
                recorded_at=now,
            )
        )
        return entry

    def _assert_can_transition(self, target: PayoutStatus) -> None:
        current = PayoutStatus(self.status)
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

    def approve(self) -> None:
        self._assert_can_transition(PayoutStatus.APPROVED)
        now = datetime.now(UTC)
        self.status = PayoutStatus.APPROVED.value
        self.approved_at = now
        self.raise_(PayoutApproved(entry_id=str(self.id), vendor_id=str(self.vendor_id), approved_at=now))

    def mark_paid(self, transaction_ref: str) -> None:
        if not transaction_ref:
            raise ValidationError({"transaction_ref": ["A disbursement reference is required"]})
        self._assert_can_transition(PayoutStatus.PAID)

        now = datetime.now(UTC)
        self.status = PayoutStatus.PAID.value
        self.transaction_ref = transaction_ref
        self.paid_at = now
        self.raise_(
            PayoutPaid(
                entry_id=str(self.id),
                vendor_id=str(self.vendor_id),
                net_amount=self.net_amount,
                transaction_ref=transaction_ref,
                paid_at=now,
            )
        )

    def reverse(self, reason: str | None = None) -> None:
        self._assert_can_transition(PayoutStatus.REVERSED)
        now = datetime.now(UTC)
        self.status = PayoutStatus.REVERSED.value
        self.reversal_reason = reason
        self.raise_(
            PayoutReversed(
                entry_id=str(self.id),
                vendor_id=str(self.vendor_id),
                order_id=str(self.order_id),
                reason=reason,
                reversed_at=now,
            )
        )
