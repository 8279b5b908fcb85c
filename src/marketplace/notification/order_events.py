"""Notifications reacting to Order events.

Each notice carries an idempotency key ``<kind>:<order_id>:<discriminator>``
so a redelivered event produces a notice the receiver recognizes.
"""

import structlog
from protean import handle

from marketplace.domain import marketplace
from marketplace.notification import get_dispatcher
from marketplace.notification.port import NotificationKind
from marketplace.order.events import (
    OrderCancelled,
    OrderFlaggedForReview,
    OrderPaymentConfirmed,
    OrderPaymentFailed,
    OrderPlaced,
    OrderShipped,
)
from marketplace.order.order import Order

logger = structlog.get_logger(__name__)


def idempotency_key(kind: str, order_id: str, discriminator: str | None = None) -> str:
    return f"{kind}:{order_id}:{discriminator}" if discriminator else f"{kind}:{order_id}"


def _send(kind: str, order_id: str, payload: dict, discriminator: str | None = None) -> None:
    key = idempotency_key(kind, order_id, discriminator)
    if not get_dispatcher().notify(kind, {"order_id": order_id, **payload}, key):
        logger.warning("Notification was not accepted", kind=kind, order_id=order_id, idempotency_key=key)


@marketplace.event_handler(part_of=Order, stream_category="marketplace::order")
class OrderNotificationHandler:
    @handle(OrderPlaced)
    def on_order_placed(self, event: OrderPlaced) -> None:
        _send(
            NotificationKind.ORDER_PLACED,
            str(event.order_id),
            {
                "buyer_id": str(event.buyer_id),
                "vendor_id": str(event.vendor_id),
                "total_amount": event.total_amount,
                "currency": event.currency,
            },
        )

    @handle(OrderPaymentConfirmed)
    def on_payment_confirmed(self, event: OrderPaymentConfirmed) -> None:
        _send(
            NotificationKind.PAYMENT_CONFIRMED,
            str(event.order_id),
            {
                "buyer_id": str(event.buyer_id),
                "vendor_id": str(event.vendor_id),
                "amount": event.amount,
                "currency": event.currency,
                "provider_ref": event.provider_ref,
            },
            discriminator=str(event.attempt_id),
        )

    @handle(OrderPaymentFailed)
    def on_payment_failed(self, event: OrderPaymentFailed) -> None:
        _send(
            NotificationKind.PAYMENT_FAILED,
            str(event.order_id),
            {"buyer_id": str(event.buyer_id), "reason": event.reason},
            discriminator=str(event.attempt_id) if event.attempt_id else event.failed_at.isoformat(),
        )

    @handle(OrderCancelled)
    def on_order_cancelled(self, event: OrderCancelled) -> None:
        _send(
            NotificationKind.ORDER_CANCELLED,
            str(event.order_id),
            {"buyer_id": str(event.buyer_id), "reason": event.reason},
        )

    @handle(OrderShipped)
    def on_order_shipped(self, event: OrderShipped) -> None:
        _send(NotificationKind.ORDER_SHIPPED, str(event.order_id), {"buyer_id": str(event.buyer_id)})

    @handle(OrderFlaggedForReview)
    def on_flagged_for_review(self, event: OrderFlaggedForReview) -> None:
        logger.warning(
            "Order flagged for manual review",
            order_id=str(event.order_id),
            reason=event.reason,
            provider_ref=event.provider_ref,
        )
        _send(
            NotificationKind.PAYMENT_REVIEW_REQUIRED,
            str(event.order_id),
            {"reason": event.reason, "provider_ref": event.provider_ref},
            discriminator=event.flagged_at.isoformat(),
        )
