"""Payment reconciliation — apply a provider outcome to its order exactly once.

Webhooks, verification polls and synchronous card completions all end up
here as a ReconcilePayment command carrying an already-normalized result.
The handler walks the same steps for every source:

1. dedup: a receipt for (provider, provider_ref, result_code) means the
   outcome was applied before;
2. orphan: an unknown provider_ref is logged and acknowledged, never turned
   into an order;
3. terminal guard: an attempt that is already COMPLETED/FAILED is left alone
   (a success arriving after a failure is flagged for review);
4. amount check: a paid amount outside tolerance of the order total fails
   the payment as AmountMismatch and flags it for review; a webhook success
   with no amount at all is flagged and left open for verification;
5. success or failure is settled on the versioned order and attempt;
6. the receipt is written in the same unit of work.

Every outcome is returned as a short string; none of them is an error from
the provider's point of view.
"""

import structlog
from protean import handle
from protean.fields import Boolean, Float, String, Text
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.payment.attempt import AttemptStatus, FailureReason, PaymentAttempt
from marketplace.payment.callbacks import CallbackResult, parse_callback
from marketplace.payment.receipt import WebhookReceipt, make_dedup_key
from marketplace.payment.settlement import settle_failure, settle_success
from marketplace.shared import dispatch
from marketplace.shared.money import amounts_match

logger = structlog.get_logger(__name__)


class Outcome:
    DUPLICATE = "duplicate"
    ORPHANED = "orphaned"
    ALREADY_RESOLVED = "already_resolved"
    COMPLETED = "completed"
    FAILED = "failed"
    AMOUNT_MISMATCH = "amount_mismatch"
    REVIEW = "review"
    IGNORED = "ignored"


@marketplace.command(part_of="PaymentAttempt")
class ReconcilePayment:
    provider = String(required=True, max_length=20)
    provider_ref = String(required=True, max_length=255)
    result_code = String(required=True, max_length=100)
    succeeded = Boolean(required=True)
    amount = Float()
    description = Text()
    provider_receipt = String(max_length=255)
    source = String(max_length=20, default="webhook")


def _flag(order: Order, attempt: PaymentAttempt, reason: str) -> None:
    attempt.flag_for_review(reason)
    current_domain.repository_for(PaymentAttempt).add(attempt)

    order.flag_for_review(reason, provider_ref=attempt.provider_ref)
    current_domain.repository_for(Order).add(order)


@marketplace.command_handler(part_of=PaymentAttempt)
class ReconcilePaymentHandler:
    @handle(ReconcilePayment)
    def reconcile(self, command: ReconcilePayment) -> str:
        log = logger.bind(
            provider=command.provider,
            provider_ref=command.provider_ref,
            result_code=command.result_code,
            source=command.source,
        )

        dedup_key = make_dedup_key(command.provider, command.provider_ref, command.result_code)
        receipts = current_domain.repository_for(WebhookReceipt)
        if receipts.exists(dedup_key):
            log.info("Duplicate payment callback ignored")
            return Outcome.DUPLICATE

        attempt = current_domain.repository_for(PaymentAttempt).find_by_ref(command.provider, command.provider_ref)
        if attempt is None:
            log.warning("Orphaned payment callback acknowledged")
            return Outcome.ORPHANED

        order = current_domain.repository_for(Order).get(attempt.order_id)
        log = log.bind(order_id=str(order.id), attempt_id=str(attempt.id))

        outcome = self._apply(command, attempt, order, log)
        receipts.add(
            WebhookReceipt.record(
                provider=command.provider,
                provider_ref=command.provider_ref,
                result_code=command.result_code,
                outcome=outcome,
                amount=command.amount,
                source=command.source or "webhook",
            )
        )
        return outcome

    def _apply(self, command: ReconcilePayment, attempt: PaymentAttempt, order: Order, log) -> str:
        if attempt.is_terminal:
            if command.succeeded and attempt.status == AttemptStatus.FAILED.value:
                log.warning("Success reported for a failed payment attempt", failure_reason=attempt.failure_reason)
                _flag(order, attempt, f"Provider reported success after attempt failed ({attempt.failure_reason})")
                return Outcome.REVIEW
            log.info("Callback for resolved payment attempt ignored", status=attempt.status)
            return Outcome.ALREADY_RESOLVED

        if not command.succeeded:
            reason = f"{FailureReason.PROVIDER_REJECTED}: {command.description or command.result_code}"
            settle_failure(order, attempt, reason)
            return Outcome.FAILED

        if not order.payment_open:
            log.warning("Success reported for an order that is not awaiting payment", payment_status=order.payment_status)
            _flag(order, attempt, f"Provider reported success while order payment is {order.payment_status}")
            return Outcome.REVIEW

        if command.amount is None and command.source == "webhook":
            log.warning("Success callback carries no paid amount")
            _flag(order, attempt, "Provider reported success without a paid amount")
            return Outcome.REVIEW

        # Status queries are keyed on our own request, which was for attempt.amount
        paid = command.amount if command.amount is not None else attempt.amount
        tolerance = get_settings().amount_tolerance
        if not amounts_match(paid, order.total_amount, tolerance):
            log.warning("Paid amount does not match order total", paid=paid, total_amount=order.total_amount)
            settle_failure(order, attempt, FailureReason.AMOUNT_MISMATCH)
            _flag(order, attempt, f"Paid {paid} against order total {order.total_amount}")
            return Outcome.AMOUNT_MISMATCH

        settle_success(order, attempt, amount=paid, provider_receipt=command.provider_receipt)
        return Outcome.COMPLETED


def reconcile(result: CallbackResult, source: str = "webhook") -> str:
    return dispatch.process(
        ReconcilePayment(
            provider=result.provider,
            provider_ref=result.provider_ref,
            result_code=result.result_code,
            succeeded=result.succeeded,
            amount=result.amount,
            description=result.description,
            provider_receipt=result.provider_receipt,
            source=source,
        )
    )


def handle_callback(provider: str, payload: dict) -> str:
    """Normalize a provider payload and reconcile it.

    Raises InvalidCallbackPayload for payloads that are not the provider's
    shape; every other outcome is acknowledged.
    """
    result = parse_callback(provider, payload)
    if result is None:
        logger.info("Payment callback event type ignored", provider=provider)
        return Outcome.IGNORED
    return reconcile(result, source="webhook")
