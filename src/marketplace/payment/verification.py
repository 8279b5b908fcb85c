"""Polling fallback — ask the provider for an attempt's outcome.

Used when a buyer or admin suspects the callback got lost, and by the
timeout sweep before it gives up on an attempt. A terminal provider answer
is reconciled exactly like a webhook, under its own ``verify:<code>`` dedup
key; the terminal guard makes a later webhook for the same outcome a no-op.
"""

import structlog
from protean.utils.globals import current_domain

from marketplace.gateway import get_gateway
from marketplace.gateway.port import ProviderState, TransientGatewayError
from marketplace.payment.attempt import PaymentAttempt
from marketplace.payment.callbacks import CallbackResult
from marketplace.payment.reconciliation import reconcile

logger = structlog.get_logger(__name__)

PENDING = "pending"
NO_ATTEMPT = "no_attempt"
UNAVAILABLE = "unavailable"


def verify_attempt(attempt: PaymentAttempt, source: str = "verify") -> str:
    """Poll the provider for one attempt and reconcile a terminal answer."""
    if not attempt.provider_ref:
        return PENDING

    try:
        status = get_gateway(attempt.provider).verify(attempt.provider_ref)
    except TransientGatewayError as exc:
        logger.warning(
            "Provider status check failed",
            attempt_id=str(attempt.id),
            provider=attempt.provider,
            provider_ref=attempt.provider_ref,
            error=str(exc),
        )
        return UNAVAILABLE

    if status.state == ProviderState.PENDING:
        return PENDING

    return reconcile(
        CallbackResult(
            provider=attempt.provider,
            provider_ref=attempt.provider_ref,
            result_code=f"verify:{status.result_code}",
            succeeded=status.state == ProviderState.COMPLETED,
            amount=status.amount,
            description=status.description,
            provider_receipt=status.provider_receipt,
            metadata=status.metadata,
        ),
        source=source,
    )


def verify_payment(order_id: str) -> str:
    """Poll the provider for the order's most recent attempt."""
    attempt = current_domain.repository_for(PaymentAttempt).latest_for_order(order_id)
    if attempt is None:
        return NO_ATTEMPT
    if attempt.is_terminal:
        return attempt.status.lower()
    return verify_attempt(attempt)
