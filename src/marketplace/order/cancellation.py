"""Order cancellation — command and handler.

A buyer may cancel while the order is PENDING or PROCESSING and its payment
has not completed. The cancel writes the same versioned Order the settlement
path writes, so a cancel racing a completing callback has exactly one
winner; the loser is re-run and finds the order already paid (or already
cancelled).

Any open payment attempt is failed with reason OrderCancelled and the
order's stock is restored, once.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.payment.attempt import FailureReason, PaymentAttempt
from marketplace.stock import reservation

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=500)
    requested_by = Identifier()


@marketplace.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command: CancelOrder):
        orders = current_domain.repository_for(Order)
        order = orders.get(command.order_id)
        if command.requested_by and str(command.requested_by) != str(order.buyer_id):
            raise ValidationError({"order_id": ["Only the buyer can cancel this order"]})

        order.cancel(command.reason)
        order.void_payment()

        release_stock = not order.stock_released
        if release_stock:
            order.mark_stock_released()

        orders.add(order)

        if release_stock:
            reservation.release_all(order.stock_lines())

        attempts = current_domain.repository_for(PaymentAttempt)
        open_attempt = attempts.open_for_order(str(order.id))
        if open_attempt is not None:
            open_attempt.fail(FailureReason.ORDER_CANCELLED)
            attempts.add(open_attempt)

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            reason=command.reason,
            stock_released=release_stock,
        )
