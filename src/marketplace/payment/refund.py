"""Refunds — admin action returning a completed payment to the buyer.

The provider's refund API is called first, outside any unit of work (M-Pesa
reversals are done by hand, so those need a manual reference). The result
is then recorded with RecordRefund: attempt and order move to REFUNDED and
the vendor's payout entry is REVERSED. An entry that was already paid out
cannot be reversed, so such refunds are refused before any money moves.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import OrderStateConflict, PaymentRejected
from marketplace.gateway import get_gateway
from marketplace.order.order import Order, PaymentStatus
from marketplace.payment.attempt import AttemptStatus, PaymentAttempt
from marketplace.payout.payout import PayoutEntry, PayoutStatus
from marketplace.shared import dispatch

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="PaymentAttempt")
class RecordRefund:
    order_id = Identifier(required=True)
    reason = Text()
    provider_refund_ref = String(max_length=255)


def _completed_attempt(order_id: str) -> PaymentAttempt:
    completed = [
        a
        for a in current_domain.repository_for(PaymentAttempt).for_order(order_id)
        if a.status == AttemptStatus.COMPLETED.value
    ]
    if not completed:
        raise ValidationError({"payment_status": ["Order has no completed payment to refund"]})
    return completed[-1]


def _check_refundable(order: Order) -> PayoutEntry | None:
    if order.payment_status != PaymentStatus.COMPLETED.value:
        raise ValidationError({"payment_status": [f"Cannot refund a payment in {order.payment_status} state"]})
    entry = current_domain.repository_for(PayoutEntry).for_order(str(order.id))
    if entry is not None and entry.status == PayoutStatus.PAID.value:
        raise ValidationError({"payout": ["Vendor has already been paid for this order"]})
    return entry


@marketplace.command_handler(part_of=PaymentAttempt)
class RefundHandler:
    @handle(RecordRefund)
    def record_refund(self, command: RecordRefund) -> None:
        orders = current_domain.repository_for(Order)
        order = orders.get(command.order_id)
        entry = _check_refundable(order)
        attempt = _completed_attempt(str(order.id))

        order.refund(command.reason)
        orders.add(order)

        attempt.refund(command.provider_refund_ref)
        current_domain.repository_for(PaymentAttempt).add(attempt)

        if entry is not None:
            entry.reverse(command.reason)
            current_domain.repository_for(PayoutEntry).add(entry)

        logger.info(
            "Payment refunded",
            order_id=str(order.id),
            attempt_id=str(attempt.id),
            amount=order.total_amount,
            provider_refund_ref=command.provider_refund_ref,
        )


def refund_payment(order_id: str, reason: str | None = None, manual_ref: str | None = None) -> str | None:
    """Refund an order's completed payment. Returns the provider refund reference."""
    order = current_domain.repository_for(Order).get(order_id)
    _check_refundable(order)
    attempt = _completed_attempt(order_id)

    refund_ref = manual_ref
    if refund_ref is None:
        result = get_gateway(attempt.provider).refund(
            attempt.provider_ref, attempt.amount, reason or "Refund requested"
        )
        if not result.success:
            raise PaymentRejected(
                result.failure_reason or "Provider refused the refund",
                order_id=order_id,
                provider=attempt.provider,
            )
        refund_ref = result.provider_refund_ref

    try:
        dispatch.process(RecordRefund(order_id=order_id, reason=reason, provider_refund_ref=refund_ref))
    except OrderStateConflict:
        logger.error(
            "Provider refunded but the order changed before the refund was recorded",
            order_id=order_id,
            provider_refund_ref=refund_ref,
        )
        raise
    return refund_ref
