"""PaymentAttempt aggregate — one initiation of payment with a provider.

An order may accumulate several attempts after failures, but at most one is
open (PENDING or PROCESSING) at a time. ``provider_ref`` is the provider's
transaction reference and the join key for callbacks; it is unique per
provider.

State Machine:
    PENDING → PROCESSING → COMPLETED → REFUNDED
    PENDING/PROCESSING → FAILED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.order.order import PaymentProvider
from marketplace.payment.events import (
    PaymentAttemptCreated,
    PaymentAttemptFailed,
    PaymentCompleted,
    PaymentFlaggedForReview,
    PaymentInitiated,
    PaymentRefunded,
)


class AttemptStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


_VALID_TRANSITIONS = {
    AttemptStatus.PENDING: {AttemptStatus.PROCESSING, AttemptStatus.COMPLETED, AttemptStatus.FAILED},
    AttemptStatus.PROCESSING: {AttemptStatus.COMPLETED, AttemptStatus.FAILED},
    AttemptStatus.COMPLETED: {AttemptStatus.REFUNDED},
    AttemptStatus.FAILED: set(),  # Terminal
    AttemptStatus.REFUNDED: set(),  # Terminal
}

OPEN_STATES = {AttemptStatus.PENDING, AttemptStatus.PROCESSING}


class FailureReason:
    AMOUNT_MISMATCH = "AmountMismatch"
    PAYMENT_TIMEOUT = "PaymentTimeout"
    ORDER_CANCELLED = "OrderCancelled"
    PROVIDER_REJECTED = "ProviderRejected"


@marketplace.aggregate
class PaymentAttempt:
    order_id = Identifier(required=True)
    provider = String(choices=PaymentProvider, required=True)
    provider_ref = String(max_length=255)
    idempotency_key = String(max_length=255, required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="KES")
    status = String(choices=AttemptStatus, default=AttemptStatus.PENDING.value)
    failure_reason = String(max_length=500)
    provider_receipt = String(max_length=255)
    redirect_url = String(max_length=1000)
    initiation_tries = Integer(default=0)
    needs_review = Boolean(default=False)
    review_reason = String(max_length=500)
    created_at = DateTime()
    initiated_at = DateTime()
    resolved_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def open(cls, order_id: str, provider: str, amount: float, currency: str, idempotency_key: str):
        now = datetime.now(UTC)
        attempt = cls(
            order_id=order_id,
            provider=provider,
            amount=amount,
            currency=currency,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        attempt.raise_(
            PaymentAttemptCreated(
                attempt_id=str(attempt.id),
                order_id=order_id,
                provider=provider,
                amount=amount,
                currency=currency,
                idempotency_key=idempotency_key,
                created_at=now,
            )
        )
        return attempt

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: AttemptStatus) -> None:
        current = AttemptStatus(self.status)
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

    @property
    def is_open(self) -> bool:
        return AttemptStatus(self.status) in OPEN_STATES

    @property
    def is_terminal(self) -> bool:
        return not self.is_open

    @property
    def age_anchor(self) -> datetime:
        """When the provider was last asked to collect; timeouts count from here."""
        return self.initiated_at or self.created_at

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def record_tries(self, count: int = 1) -> None:
        self.initiation_tries = (self.initiation_tries or 0) + count

    def record_initiation(self, provider_ref: str, redirect_url: str | None = None) -> None:
        """Store the provider's reference and move to PROCESSING."""
        self._assert_can_transition(AttemptStatus.PROCESSING)

        now = datetime.now(UTC)
        self.provider_ref = provider_ref
        self.redirect_url = redirect_url
        self.status = AttemptStatus.PROCESSING.value
        self.initiated_at = now
        self.raise_(
            PaymentInitiated(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                provider=self.provider,
                provider_ref=provider_ref,
                initiated_at=now,
            )
        )

    def complete(self, amount: float, provider_receipt: str | None = None) -> None:
        self._assert_can_transition(AttemptStatus.COMPLETED)

        now = datetime.now(UTC)
        self.status = AttemptStatus.COMPLETED.value
        self.provider_receipt = provider_receipt
        self.resolved_at = now
        self.raise_(
            PaymentCompleted(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                provider=self.provider,
                provider_ref=self.provider_ref,
                amount=amount,
                provider_receipt=provider_receipt,
                completed_at=now,
            )
        )

    def fail(self, reason: str) -> None:
        self._assert_can_transition(AttemptStatus.FAILED)

        now = datetime.now(UTC)
        self.status = AttemptStatus.FAILED.value
        self.failure_reason = reason
        self.resolved_at = now
        self.raise_(
            PaymentAttemptFailed(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                provider=self.provider,
                provider_ref=self.provider_ref,
                reason=reason,
                failed_at=now,
            )
        )

    def refund(self, provider_refund_ref: str | None = None) -> None:
        self._assert_can_transition(AttemptStatus.REFUNDED)

        now = datetime.now(UTC)
        self.status = AttemptStatus.REFUNDED.value
        self.raise_(
            PaymentRefunded(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                provider_refund_ref=provider_refund_ref,
                refunded_at=now,
            )
        )

    def flag_for_review(self, reason: str) -> None:
        now = datetime.now(UTC)
        self.needs_review = True
        self.review_reason = reason
        self.raise_(
            PaymentFlaggedForReview(
                attempt_id=str(self.id),
                order_id=str(self.order_id),
                provider_ref=self.provider_ref,
                reason=reason,
                flagged_at=now,
            )
        )
