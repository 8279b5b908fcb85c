"""Payment initiation — open an attempt, call the provider, record the answer.

Initiation is split around the network call so no unit of work stays open
while the provider is being contacted:

    PreparePaymentAttempt     open (or reuse) the order's attempt
    provider.initiate()       outside any unit of work, bounded retries
    RecordPaymentInitiation   store the provider reference, PROCESSING
    RejectPaymentAttempt      definitive refusal: FAILED, stock released

A card payment that completes synchronously is then reconciled like any
other success. Transient failures that exhaust the retry budget leave the
attempt PENDING; calling initiate again reuses it with the same idempotency
key, and the timeout sweep expires it if nobody does.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.errors import PaymentInitiationFailed, PaymentRejected
from marketplace.gateway import get_gateway
from marketplace.gateway.mpesa_adapter import normalize_phone
from marketplace.gateway.port import (
    GatewayRejectedError,
    InitiationStatus,
    PaymentRequest,
    TransientGatewayError,
)
from marketplace.gateway.retry import call_with_backoff
from marketplace.order.order import Order, PaymentStatus
from marketplace.payment.attempt import AttemptStatus, FailureReason, PaymentAttempt
from marketplace.payment.callbacks import CallbackResult
from marketplace.payment.reconciliation import reconcile
from marketplace.payment.settlement import settle_failure
from marketplace.shared import dispatch
from marketplace.stock import reservation

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InitiationOutcome:
    attempt_id: str
    order_id: str
    provider: str
    status: str
    provider_ref: str | None = None
    redirect_url: str | None = None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@marketplace.command(part_of="PaymentAttempt")
class PreparePaymentAttempt:
    order_id = Identifier(required=True)


@marketplace.command(part_of="PaymentAttempt")
class RecordPaymentInitiation:
    attempt_id = Identifier(required=True)
    provider_ref = String(required=True, max_length=255)
    redirect_url = String(max_length=1000)
    tries = Integer(default=1)


@marketplace.command(part_of="PaymentAttempt")
class RejectPaymentAttempt:
    attempt_id = Identifier(required=True)
    reason = Text(required=True)
    tries = Integer(default=1)


@marketplace.command(part_of="PaymentAttempt")
class RecordInitiationTries:
    attempt_id = Identifier(required=True)
    tries = Integer(required=True)


@marketplace.command_handler(part_of=PaymentAttempt)
class PaymentInitiationHandler:
    @handle(PreparePaymentAttempt)
    def prepare(self, command: PreparePaymentAttempt) -> str:
        orders = current_domain.repository_for(Order)
        attempts = current_domain.repository_for(PaymentAttempt)
        order = orders.get(command.order_id)

        if order.is_cancelled:
            raise ValidationError({"order_status": ["Cannot pay for a cancelled order"]})

        open_attempt = attempts.open_for_order(str(order.id))
        if open_attempt is not None:
            return str(open_attempt.id)

        if order.payment_status == PaymentStatus.FAILED.value:
            # The failure released the stock; take it again before reopening
            reservation.reserve_all(order.stock_lines())
            order.reopen_payment()
            logger.info("Payment reopened for retry", order_id=str(order.id))
        elif order.payment_status != PaymentStatus.PENDING.value:
            raise ValidationError(
                {"payment_status": [f"Cannot initiate payment for an order in {order.payment_status} state"]}
            )

        sequence = len(attempts.for_order(str(order.id))) + 1
        attempt = PaymentAttempt.open(
            order_id=str(order.id),
            provider=order.payment_method,
            amount=order.total_amount,
            currency=order.currency,
            idempotency_key=f"{order.id}:{sequence}",
        )
        attempts.add(attempt)
        # Writing the order too makes a concurrent prepare for it lose at commit
        order.updated_at = datetime.now(UTC)
        orders.add(order)
        return str(attempt.id)

    @handle(RecordPaymentInitiation)
    def record_initiation(self, command: RecordPaymentInitiation) -> None:
        attempts = current_domain.repository_for(PaymentAttempt)
        orders = current_domain.repository_for(Order)
        attempt = attempts.get(command.attempt_id)
        order = orders.get(attempt.order_id)

        if attempt.status != AttemptStatus.PENDING.value:
            # Cancelled or expired while the provider was being called
            logger.warning(
                "Provider reference arrived for a closed payment attempt",
                attempt_id=str(attempt.id),
                status=attempt.status,
                provider_ref=command.provider_ref,
            )
            return

        attempts.claim_provider_ref(attempt, command.provider_ref)

        attempt.record_tries(command.tries or 1)
        attempt.record_initiation(command.provider_ref, redirect_url=command.redirect_url)

        order.mark_payment_processing(command.provider_ref)
        orders.add(order)
        attempts.add(attempt)

    @handle(RejectPaymentAttempt)
    def reject(self, command: RejectPaymentAttempt) -> None:
        attempt = current_domain.repository_for(PaymentAttempt).get(command.attempt_id)
        order = current_domain.repository_for(Order).get(attempt.order_id)
        attempt.record_tries(command.tries or 1)
        settle_failure(order, attempt, f"{FailureReason.PROVIDER_REJECTED}: {command.reason}")

    @handle(RecordInitiationTries)
    def record_tries(self, command: RecordInitiationTries) -> None:
        repo = current_domain.repository_for(PaymentAttempt)
        attempt = repo.get(command.attempt_id)
        attempt.record_tries(command.tries)
        repo.add(attempt)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
def _outcome(attempt: PaymentAttempt) -> InitiationOutcome:
    return InitiationOutcome(
        attempt_id=str(attempt.id),
        order_id=str(attempt.order_id),
        provider=attempt.provider,
        status=attempt.status,
        provider_ref=attempt.provider_ref,
        redirect_url=attempt.redirect_url,
    )


def initiate_payment(
    order_id: str,
    phone: str | None = None,
    email: str | None = None,
    payment_token: str | None = None,
    return_url: str | None = None,
    cancel_url: str | None = None,
) -> InitiationOutcome:
    """Ask the order's payment provider to collect the order total.

    Raises PaymentRejected when the provider refuses outright and
    PaymentInitiationFailed when transient failures exhaust the retries.
    """
    settings = get_settings()
    order = current_domain.repository_for(Order).get(order_id)

    if order.payment_method == "mpesa":
        try:
            phone = normalize_phone(phone or order.delivery_address.phone)
        except ValueError as exc:
            raise ValidationError({"phone": [str(exc)]}) from exc

    attempt_id = dispatch.process(PreparePaymentAttempt(order_id=order_id))
    attempts = current_domain.repository_for(PaymentAttempt)
    attempt = attempts.get(attempt_id)
    if attempt.status != AttemptStatus.PENDING.value:
        # Already handed to the provider; the buyer is being prompted
        return _outcome(attempt)

    gateway = get_gateway(attempt.provider)
    request = PaymentRequest(
        order_id=str(order.id),
        amount=attempt.amount,
        currency=attempt.currency,
        idempotency_key=attempt.idempotency_key,
        description=f"Order {order.id}",
        phone=phone,
        email=email,
        payment_token=payment_token,
        return_url=return_url,
        cancel_url=cancel_url,
    )

    tries = 0

    def _call():
        nonlocal tries
        tries += 1
        return gateway.initiate(request)

    log = logger.bind(order_id=str(order.id), attempt_id=str(attempt.id), provider=attempt.provider)
    try:
        result = call_with_backoff(
            _call,
            max_attempts=settings.initiation_max_attempts,
            base_delay=settings.initiation_base_delay,
        )
    except GatewayRejectedError as exc:
        log.warning("Provider rejected payment initiation", reason=exc.reason, code=exc.code)
        dispatch.process(RejectPaymentAttempt(attempt_id=str(attempt.id), reason=exc.reason, tries=tries))
        raise PaymentRejected(
            exc.reason,
            order_id=str(order.id),
            provider=attempt.provider,
            code=exc.code,
        ) from exc
    except TransientGatewayError as exc:
        log.error("Payment initiation failed after retries", tries=tries, error=str(exc))
        dispatch.process(RecordInitiationTries(attempt_id=str(attempt.id), tries=tries))
        raise PaymentInitiationFailed(
            "Payment provider is unavailable, please try again",
            order_id=str(order.id),
            provider=attempt.provider,
            tries=tries,
        ) from exc

    dispatch.process(
        RecordPaymentInitiation(
            attempt_id=str(attempt.id),
            provider_ref=result.provider_ref,
            redirect_url=result.redirect_url,
            tries=tries,
        )
    )
    log.info("Payment initiated", provider_ref=result.provider_ref, status=result.status.value)

    if result.status == InitiationStatus.COMPLETED:
        reconcile(
            CallbackResult(
                provider=attempt.provider,
                provider_ref=result.provider_ref,
                result_code="initiate:completed",
                succeeded=True,
                amount=result.amount,
                provider_receipt=result.provider_receipt,
            ),
            source="initiation",
        )

    return _outcome(attempts.get(attempt_id))
