"""Commission calculator — a pure function over line items and a rate snapshot.

Rounding is per line: each line's commission is rounded half-up to 2 dp
before it is added to its vendor's sum, and the order total is rounded again.
Reports built on the stored per-line figures therefore reconcile exactly with
the stored total.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from marketplace.commission.port import RateTable
from marketplace.shared.money import quantize, to_decimal


@dataclass(frozen=True)
class CommissionLine:
    """The inputs the calculator needs from one order line."""

    product_id: str
    vendor_id: str
    category_id: str | None
    unit_price: float
    quantity: int


@dataclass(frozen=True)
class LineCommission:
    product_id: str
    vendor_id: str
    rate: float
    gross: float
    commission: float


@dataclass(frozen=True)
class CommissionSplit:
    total_commission: float
    per_vendor: dict[str, float]
    lines: tuple[LineCommission, ...]


def compute(line_items: Iterable[CommissionLine], rates: RateTable) -> CommissionSplit:
    per_vendor: dict[str, Decimal] = {}
    lines = []
    total = Decimal("0")

    for item in line_items:
        rate = rates.rate_for(item.category_id, item.vendor_id)
        gross = to_decimal(item.unit_price) * item.quantity
        commission = quantize(gross * to_decimal(rate) / 100)

        per_vendor[item.vendor_id] = per_vendor.get(item.vendor_id, Decimal("0")) + commission
        total += commission
        lines.append(
            LineCommission(
                product_id=item.product_id,
                vendor_id=item.vendor_id,
                rate=float(rate),
                gross=float(quantize(gross)),
                commission=float(commission),
            )
        )

    return CommissionSplit(
        total_commission=float(quantize(total)),
        per_vendor={vendor: float(quantize(amount)) for vendor, amount in per_vendor.items()},
        lines=tuple(lines),
    )
