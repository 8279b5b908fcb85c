"""Repository for PayoutEntry."""

from dataclasses import dataclass

from marketplace.domain import marketplace
from marketplace.errors import LedgerInvariantViolation
from marketplace.payout.payout import PayoutEntry, PayoutStatus
from marketplace.shared.money import round_money
from marketplace.shared.queries import fetch_all


@dataclass(frozen=True)
class VendorBalance:
    vendor_id: str
    pending: float
    approved: float
    paid: float
    reversed: float


@marketplace.repository(part_of=PayoutEntry)
class PayoutEntryRepository:
    def for_order(self, order_id: str) -> PayoutEntry | None:
        results = self._dao.query.filter(order_id=order_id).all().items
        return results[0] if results else None

    def append(self, entry: PayoutEntry) -> None:
        """Add a new entry, refusing a second one for the same order."""
        if self.for_order(str(entry.order_id)) is not None:
            raise LedgerInvariantViolation(
                "A payout entry already exists for this order",
                order_id=str(entry.order_id),
            )
        self.add(entry)

    def for_vendor(self, vendor_id: str) -> list[PayoutEntry]:
        return fetch_all(self._dao.query.filter(vendor_id=vendor_id).order_by("created_at"))

    def list_pending(self, vendor_id: str) -> list[PayoutEntry]:
        """Entries not yet disbursed (PENDING or APPROVED), oldest first."""
        entries = [
            e
            for e in self.for_vendor(vendor_id)
            if e.status in (PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value)
        ]
        return sorted(entries, key=lambda e: e.created_at)

    def balance(self, vendor_id: str) -> VendorBalance:
        sums = {status: 0.0 for status in PayoutStatus}
        for entry in self.for_vendor(vendor_id):
            sums[PayoutStatus(entry.status)] += entry.net_amount
        return VendorBalance(
            vendor_id=vendor_id,
            pending=round_money(sums[PayoutStatus.PENDING]),
            approved=round_money(sums[PayoutStatus.APPROVED]),
            paid=round_money(sums[PayoutStatus.PAID]),
            reversed=round_money(sums[PayoutStatus.REVERSED]),
        )
