"""Timeout sweep — the compensating path for callbacks that never arrive.

Open attempts whose provider was last contacted more than the configured
window ago are first checked with the provider (when they have a
reference), then expired: attempt and order payment FAILED with reason
PaymentTimeout and the order's stock restored. Each attempt is expired in
its own unit of work so one conflict does not hold back the rest.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.errors import OrderStateConflict
from marketplace.order.order import Order
from marketplace.payment.attempt import FailureReason, PaymentAttempt
from marketplace.payment.settlement import settle_failure
from marketplace.payment.verification import PENDING, UNAVAILABLE, verify_attempt
from marketplace.shared import dispatch

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    expired: list[str] = field(default_factory=list)
    resolved: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@marketplace.command(part_of="PaymentAttempt")
class ExpirePaymentAttempt:
    attempt_id = Identifier(required=True)


@marketplace.command_handler(part_of=PaymentAttempt)
class ExpirePaymentAttemptHandler:
    @handle(ExpirePaymentAttempt)
    def expire(self, command: ExpirePaymentAttempt) -> bool:
        attempt = current_domain.repository_for(PaymentAttempt).get(command.attempt_id)
        if not attempt.is_open:
            return False

        order = current_domain.repository_for(Order).get(attempt.order_id)
        settle_failure(order, attempt, FailureReason.PAYMENT_TIMEOUT)
        logger.info(
            "Payment attempt expired",
            attempt_id=str(attempt.id),
            order_id=str(order.id),
            provider=attempt.provider,
            provider_ref=attempt.provider_ref,
        )
        return True


def sweep_stale_payments(now: datetime | None = None, verify_first: bool = True) -> SweepReport:
    """Expire every open attempt older than the payment timeout window."""
    settings = get_settings()
    cutoff = (now or datetime.now(UTC)) - timedelta(minutes=settings.payment_timeout_minutes)
    report = SweepReport()

    for attempt in current_domain.repository_for(PaymentAttempt).stale(cutoff):
        attempt_id = str(attempt.id)

        if verify_first and attempt.provider_ref:
            outcome = verify_attempt(attempt, source="sweep")
            if outcome not in (PENDING, UNAVAILABLE):
                report.resolved.append(attempt_id)
                continue

        try:
            expired = dispatch.process(ExpirePaymentAttempt(attempt_id=attempt_id))
        except OrderStateConflict:
            logger.info("Stale payment attempt changed during sweep", attempt_id=attempt_id)
            report.skipped.append(attempt_id)
            continue

        (report.expired if expired else report.skipped).append(attempt_id)

    if report.expired or report.resolved:
        logger.info(
            "Payment sweep finished",
            expired=len(report.expired),
            resolved=len(report.resolved),
            skipped=len(report.skipped),
        )
    return report
