"""Order aggregate — a buyer's purchase from a single vendor.

An order carries frozen snapshots: unit prices and titles at checkout, the
commission computed from the rate snapshot taken when it was placed, and the
resulting vendor amount. None of them is ever recomputed.

Two status fields move independently:

    payment_status:  PENDING → PROCESSING → COMPLETED → REFUNDED
                     PENDING/PROCESSING → FAILED → PENDING (retry)
    order_status:    PENDING → PROCESSING → SHIPPED → DELIVERED
                     PENDING/PROCESSING → CANCELLED
                     PROCESSING/SHIPPED/DELIVERED → REFUNDED

Every status change is persisted with ``repo.add``; Protean's ``_version``
check refuses the write if another unit of work changed the order since this
instance was loaded.
"""

import json
import secrets
import time
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from marketplace.domain import marketplace
from marketplace.errors import LedgerInvariantViolation
from marketplace.order.events import (
    OrderCancelled,
    OrderDelivered,
    OrderFlaggedForReview,
    OrderPaymentConfirmed,
    OrderPaymentFailed,
    OrderPaymentReopened,
    OrderPlaced,
    OrderRefunded,
    OrderShipped,
)
from marketplace.shared.money import EPSILON, amounts_match, round_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


class PaymentStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class PaymentProvider(Enum):
    MPESA = "mpesa"
    CARD = "card"
    PAYPAL = "paypal"


class DeliveryMethod(Enum):
    STANDARD = "Standard"
    EXPRESS = "Express"


_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},  # retry
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),  # Terminal
}

_ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.PROCESSING}

# Payment states in which a callback may still settle the order
OPEN_PAYMENT_STATES = {PaymentStatus.PENDING, PaymentStatus.PROCESSING}


def generate_order_id() -> str:
    """External order reference: ORD-<epoch ms>-<6 hex>."""
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class DeliveryAddress:
    """Where the order goes. Captured at checkout and never updated."""

    full_name = String(required=True, max_length=100)
    phone = String(required=True, max_length=20)
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    county = String(max_length=100)
    postal_code = String(max_length=20)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderItem:
    """One cart line with the price, title and commission frozen at checkout."""

    product_id = Identifier(required=True)
    title = String(required=True, max_length=255)
    category_id = Identifier()
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    line_total = Float(default=0.0)
    commission_rate = Float(default=0.0)
    commission_amount = Float(default=0.0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    buyer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    items = HasMany(OrderItem)
    delivery_address = ValueObject(DeliveryAddress)
    delivery_method = String(choices=DeliveryMethod, default=DeliveryMethod.STANDARD.value)
    notes = Text()

    subtotal = Float(default=0.0)
    shipping = Float(default=0.0)
    tax = Float(default=0.0)
    discount = Float(default=0.0)
    total_amount = Float(default=0.0)
    commission_amount = Float(default=0.0)
    vendor_amount = Float(default=0.0)
    currency = String(max_length=3, default="KES")

    payment_method = String(choices=PaymentProvider, required=True)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    order_status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_ref = String(max_length=255)
    stock_released = Boolean(default=False)
    needs_review = Boolean(default=False)
    review_reason = String(max_length=500)
    cancellation_reason = String(max_length=500)

    estimated_delivery = DateTime()
    paid_at = DateTime()
    cancelled_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        buyer_id: str,
        vendor_id: str,
        items_data: list[dict],
        delivery_address: dict,
        payment_method: str,
        totals,
        commission_amount: float,
        currency: str,
        delivery_method: str = DeliveryMethod.STANDARD.value,
        delivery_days: int = 7,
        notes: str | None = None,
    ) -> "Order":
        """Build a new PENDING order.

        Args:
            items_data: List of dicts with product_id, title, category_id,
                        unit_price, quantity, line_total, commission_rate,
                        commission_amount.
            totals: OrderTotals with subtotal, shipping, tax, discount, total.
            commission_amount: Frozen platform commission for the whole order.
        """
        now = datetime.now(UTC)
        total_amount = round_money(totals.total)
        commission_amount = round_money(commission_amount)

        order = cls(
            id=generate_order_id(),
            buyer_id=buyer_id,
            vendor_id=vendor_id,
            delivery_address=DeliveryAddress(**delivery_address),
            delivery_method=delivery_method,
            notes=notes,
            subtotal=round_money(totals.subtotal),
            shipping=round_money(totals.shipping),
            tax=round_money(totals.tax),
            discount=round_money(totals.discount),
            total_amount=total_amount,
            commission_amount=commission_amount,
            vendor_amount=round_money(total_amount - commission_amount),
            currency=currency,
            payment_method=payment_method,
            estimated_delivery=now + timedelta(days=delivery_days),
            created_at=now,
            updated_at=now,
        )
        for item in items_data:
            order.add_items(OrderItem(**item))

        order.assert_balanced()

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                buyer_id=str(buyer_id),
                vendor_id=str(vendor_id),
                items=json.dumps(items_data),
                subtotal=order.subtotal,
                shipping=order.shipping,
                tax=order.tax,
                discount=order.discount,
                total_amount=order.total_amount,
                commission_amount=order.commission_amount,
                vendor_amount=order.vendor_amount,
                currency=currency,
                payment_method=payment_method,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Money invariants
    # -------------------------------------------------------------------
    def assert_balanced(self) -> None:
        """Totals must add up; a mismatch is a bug, never coerced."""
        expected_total = self.subtotal + self.shipping + self.tax - self.discount
        if not amounts_match(expected_total, self.total_amount, EPSILON):
            raise LedgerInvariantViolation(
                "Order total does not equal subtotal + shipping + tax - discount",
                order_id=str(self.id),
                expected=round_money(expected_total),
                total_amount=self.total_amount,
            )
        if not amounts_match(self.commission_amount + self.vendor_amount, self.total_amount, EPSILON):
            raise LedgerInvariantViolation(
                "Commission and vendor amount do not add up to the order total",
                order_id=str(self.id),
                commission_amount=self.commission_amount,
                vendor_amount=self.vendor_amount,
                total_amount=self.total_amount,
            )
        if self.vendor_amount < 0:
            raise LedgerInvariantViolation(
                "Vendor amount cannot be negative",
                order_id=str(self.id),
                commission_amount=self.commission_amount,
                vendor_amount=self.vendor_amount,
                total_amount=self.total_amount,
            )
        line_sum = sum(item.unit_price * item.quantity for item in (self.items or []))
        if not amounts_match(line_sum, self.subtotal, EPSILON):
            raise LedgerInvariantViolation(
                "Order subtotal does not equal the sum of its lines",
                order_id=str(self.id),
                subtotal=self.subtotal,
                line_sum=round_money(line_sum),
            )

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_payment_can_transition(self, target: PaymentStatus) -> None:
        current = PaymentStatus(self.payment_status)
        if target not in _PAYMENT_TRANSITIONS.get(current, set()):
            raise ValidationError(
                {"payment_status": [f"Cannot transition from {current.value} to {target.value}"]}
            )

    def _assert_order_can_transition(self, target: OrderStatus) -> None:
        current = OrderStatus(self.order_status)
        if target not in _ORDER_TRANSITIONS.get(current, set()):
            raise ValidationError({"order_status": [f"Cannot transition from {current.value} to {target.value}"]})

    @property
    def payment_open(self) -> bool:
        return PaymentStatus(self.payment_status) in OPEN_PAYMENT_STATES

    @property
    def is_cancelled(self) -> bool:
        return self.order_status == OrderStatus.CANCELLED.value

    def stock_lines(self) -> list[tuple[str, int]]:
        return [(str(item.product_id), item.quantity) for item in (self.items or [])]

    # -------------------------------------------------------------------
    # Payment lifecycle
    # -------------------------------------------------------------------
    def mark_payment_processing(self, provider_ref: str) -> None:
        """The provider accepted the initiation and the buyer is being prompted."""
        if self.payment_status == PaymentStatus.PROCESSING.value:
            return
        self._assert_payment_can_transition(PaymentStatus.PROCESSING)
        self.payment_status = PaymentStatus.PROCESSING.value
        self.payment_ref = provider_ref
        self.updated_at = datetime.now(UTC)

    def confirm_payment(self, attempt_id: str, provider: str, provider_ref: str, amount: float) -> None:
        self._assert_payment_can_transition(PaymentStatus.COMPLETED)
        if self.is_cancelled:
            raise ValidationError({"order_status": ["Cannot confirm payment for a cancelled order"]})

        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.COMPLETED.value
        if self.order_status == OrderStatus.PENDING.value:
            self.order_status = OrderStatus.PROCESSING.value
        self.payment_ref = provider_ref
        self.paid_at = now
        self.updated_at = now
        self.raise_(
            OrderPaymentConfirmed(
                order_id=str(self.id),
                buyer_id=str(self.buyer_id),
                vendor_id=str(self.vendor_id),
                attempt_id=str(attempt_id),
                provider=provider,
                provider_ref=provider_ref,
                amount=amount,
                currency=self.currency,
                confirmed_at=now,
            )
        )

    def fail_payment(self, reason: str, attempt_id: str | None = None) -> None:
        self._assert_payment_can_transition(PaymentStatus.FAILED)

        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.FAILED.value
        self.updated_at = now
        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                buyer_id=str(self.buyer_id),
                attempt_id=str(attempt_id) if attempt_id else None,
                reason=reason,
                failed_at=now,
            )
        )

    def void_payment(self) -> None:
        """Close an open payment as FAILED because the order is being cancelled.

        OrderCancelled already tells the story, so no payment event is raised.
        """
        if not self.payment_open:
            return
        self._assert_payment_can_transition(PaymentStatus.FAILED)
        self.payment_status = PaymentStatus.FAILED.value
        self.updated_at = datetime.now(UTC)

    def reopen_payment(self) -> None:
        """Put a FAILED payment back to PENDING. Stock must already be re-reserved."""
        if self.is_cancelled:
            raise ValidationError({"order_status": ["Cannot retry payment for a cancelled order"]})
        self._assert_payment_can_transition(PaymentStatus.PENDING)

        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.PENDING.value
        self.stock_released = False
        self.payment_ref = None
        self.updated_at = now
        self.raise_(OrderPaymentReopened(order_id=str(self.id), reopened_at=now))

    def mark_stock_released(self) -> None:
        if self.stock_released:
            raise LedgerInvariantViolation(
                "Stock for this order was already released",
                order_id=str(self.id),
            )
        self.stock_released = True

    def flag_for_review(self, reason: str, provider_ref: str | None = None) -> None:
        now = datetime.now(UTC)
        self.needs_review = True
        self.review_reason = reason
        self.updated_at = now
        self.raise_(
            OrderFlaggedForReview(
                order_id=str(self.id),
                reason=reason,
                provider_ref=provider_ref,
                flagged_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Order lifecycle
    # -------------------------------------------------------------------
    def cancel(self, reason: str | None = None) -> None:
        current = OrderStatus(self.order_status)
        if current not in _CANCELLABLE_STATES:
            raise ValidationError({"order_status": [f"Cannot cancel order in {current.value} state"]})
        if self.payment_status in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value):
            raise ValidationError({"payment_status": ["Cannot cancel an order whose payment has completed"]})

        now = datetime.now(UTC)
        self.order_status = OrderStatus.CANCELLED.value
        self.cancellation_reason = reason
        self.cancelled_at = now
        self.updated_at = now
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                buyer_id=str(self.buyer_id),
                reason=reason,
                cancelled_at=now,
            )
        )

    def ship(self) -> None:
        if self.payment_status != PaymentStatus.COMPLETED.value:
            raise ValidationError({"payment_status": ["Only paid orders can be shipped"]})
        self._assert_order_can_transition(OrderStatus.SHIPPED)

        now = datetime.now(UTC)
        self.order_status = OrderStatus.SHIPPED.value
        self.shipped_at = now
        self.updated_at = now
        self.raise_(OrderShipped(order_id=str(self.id), buyer_id=str(self.buyer_id), shipped_at=now))

    def deliver(self) -> None:
        self._assert_order_can_transition(OrderStatus.DELIVERED)

        now = datetime.now(UTC)
        self.order_status = OrderStatus.DELIVERED.value
        self.delivered_at = now
        self.updated_at = now
        self.raise_(OrderDelivered(order_id=str(self.id), buyer_id=str(self.buyer_id), delivered_at=now))

    def refund(self, reason: str | None = None) -> None:
        self._assert_payment_can_transition(PaymentStatus.REFUNDED)
        self._assert_order_can_transition(OrderStatus.REFUNDED)

        now = datetime.now(UTC)
        self.payment_status = PaymentStatus.REFUNDED.value
        self.order_status = OrderStatus.REFUNDED.value
        self.updated_at = now
        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                buyer_id=str(self.buyer_id),
                amount=self.total_amount,
                reason=reason,
                refunded_at=now,
            )
        )
