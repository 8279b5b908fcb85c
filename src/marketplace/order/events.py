"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, String, Text

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    """A buyer's order was accepted, its stock reserved and its commission frozen."""

    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of line dicts
    subtotal = Float(required=True)
    shipping = Float(required=True)
    tax = Float(required=True)
    discount = Float(required=True)
    total_amount = Float(required=True)
    commission_amount = Float(required=True)
    vendor_amount = Float(required=True)
    currency = String(max_length=3, required=True)
    payment_method = String(max_length=20, required=True)
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentConfirmed:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    attempt_id = Identifier(required=True)
    provider = String(max_length=20, required=True)
    provider_ref = String(max_length=255, required=True)
    amount = Float(required=True)
    currency = String(max_length=3, required=True)
    confirmed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    attempt_id = Identifier()
    reason = String(max_length=500, required=True)
    failed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentReopened:
    """A failed order was put back to payment PENDING for another attempt."""

    __version__ = 1

    order_id = Identifier(required=True)
    reopened_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    reason = String(max_length=500)
    cancelled_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    shipped_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    delivered_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderRefunded:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=500)
    refunded_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderFlaggedForReview:
    """A reconciliation anomaly needs a human to look at this order."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(max_length=500, required=True)
    provider_ref = String(max_length=255)
    flagged_at = DateTime(required=True)
