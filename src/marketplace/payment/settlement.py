"""Settlement — drive an order and its payment attempt to a terminal state.

Both functions run inside the caller's unit of work. Order, attempt, stock
ledger and payout entry are versioned aggregates written together: if any of
them changed since it was loaded, the commit fails with ExpectedVersionError,
nothing is applied, and the reconciling command is re-run against the fresh
state, where the terminal guard turns it into a no-op.
"""

import structlog
from protean.utils.globals import current_domain

from marketplace.order.order import Order
from marketplace.payment.attempt import PaymentAttempt
from marketplace.payout.payout import PayoutEntry
from marketplace.stock import reservation

logger = structlog.get_logger(__name__)


def settle_success(order: Order, attempt: PaymentAttempt, amount: float, provider_receipt: str | None = None) -> None:
    """Mark attempt and order COMPLETED and append the vendor's payout entry."""
    attempt.complete(amount=amount, provider_receipt=provider_receipt)
    order.confirm_payment(
        attempt_id=str(attempt.id),
        provider=attempt.provider,
        provider_ref=attempt.provider_ref,
        amount=amount,
    )

    current_domain.repository_for(Order).add(order)
    current_domain.repository_for(PaymentAttempt).add(attempt)
    current_domain.repository_for(PayoutEntry).append(PayoutEntry.record(order))

    logger.info(
        "Payment settled",
        order_id=str(order.id),
        attempt_id=str(attempt.id),
        provider=attempt.provider,
        provider_ref=attempt.provider_ref,
        amount=amount,
        vendor_amount=order.vendor_amount,
    )


def settle_failure(order: Order, attempt: PaymentAttempt | None, reason: str) -> None:
    """Mark the attempt and the order's payment FAILED and restore stock once."""
    if order.payment_open:
        order.fail_payment(reason, attempt_id=str(attempt.id) if attempt else None)

    release_stock = not order.stock_released
    if release_stock:
        order.mark_stock_released()

    current_domain.repository_for(Order).add(order)

    if release_stock:
        reservation.release_all(order.stock_lines())

    if attempt is not None and attempt.is_open:
        attempt.fail(reason)
        current_domain.repository_for(PaymentAttempt).add(attempt)

    logger.info(
        "Payment failed",
        order_id=str(order.id),
        attempt_id=str(attempt.id) if attempt else None,
        reason=reason,
        stock_released=release_stock,
    )
