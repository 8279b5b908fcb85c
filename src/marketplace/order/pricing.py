"""Order totals: subtotal, shipping, VAT, discount and grand total."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from marketplace.config import Settings
from marketplace.errors import OrderLimitExceeded
from marketplace.order.order import DeliveryMethod
from marketplace.shared.money import quantize, to_decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total: float


def shipping_fee(subtotal: Decimal, delivery_method: str, free_shipping: bool, settings: Settings) -> Decimal:
    if free_shipping or subtotal >= to_decimal(settings.free_shipping_threshold):
        return Decimal("0")
    if delivery_method == DeliveryMethod.EXPRESS.value:
        return to_decimal(settings.shipping_express)
    return to_decimal(settings.shipping_standard)


def compute_totals(
    lines: Iterable[tuple[float, int]],
    settings: Settings,
    delivery_method: str = DeliveryMethod.STANDARD.value,
    free_shipping: bool = False,
    discount: float = 0.0,
) -> OrderTotals:
    """Compute totals from (unit_price, quantity) pairs.

    Raises OrderLimitExceeded when the grand total is above the platform cap.
    """
    subtotal = quantize(sum((to_decimal(price) * qty for price, qty in lines), Decimal("0")))
    shipping = quantize(shipping_fee(subtotal, delivery_method, free_shipping, settings))
    tax = quantize(subtotal * to_decimal(settings.tax_rate))
    # A discount never takes the order below zero
    applied_discount = min(quantize(discount), subtotal + shipping + tax)
    total = quantize(subtotal + shipping + tax - applied_discount)

    if total > to_decimal(settings.max_order_total):
        raise OrderLimitExceeded(
            f"Order total {total} exceeds the maximum of {settings.max_order_total}",
            total=float(total),
            max_order_total=settings.max_order_total,
        )

    return OrderTotals(
        subtotal=float(subtotal),
        shipping=float(shipping),
        tax=float(tax),
        discount=float(applied_discount),
        total=float(total),
    )
