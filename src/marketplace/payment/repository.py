"""Repository for PaymentAttempt."""

from datetime import datetime

from marketplace.domain import marketplace
from marketplace.errors import LedgerInvariantViolation
from marketplace.payment.attempt import AttemptStatus, PaymentAttempt
from marketplace.shared.queries import fetch_all


@marketplace.repository(part_of=PaymentAttempt)
class PaymentAttemptRepository:
    def find_by_ref(self, provider: str, provider_ref: str) -> PaymentAttempt | None:
        results = self._dao.query.filter(provider=provider, provider_ref=provider_ref).all().items
        if len(results) > 1:
            raise LedgerInvariantViolation(
                "Provider reference is attached to more than one payment attempt",
                provider=provider,
                provider_ref=provider_ref,
            )
        return results[0] if results else None

    def for_order(self, order_id: str) -> list[PaymentAttempt]:
        return fetch_all(self._dao.query.filter(order_id=order_id).order_by("created_at"))

    def open_for_order(self, order_id: str) -> PaymentAttempt | None:
        open_attempts = [a for a in self.for_order(order_id) if a.is_open]
        if len(open_attempts) > 1:
            raise LedgerInvariantViolation(
                "Order has more than one open payment attempt",
                order_id=order_id,
            )
        return open_attempts[0] if open_attempts else None

    def latest_for_order(self, order_id: str) -> PaymentAttempt | None:
        attempts = self.for_order(order_id)
        return attempts[-1] if attempts else None

    def stale(self, cutoff: datetime) -> list[PaymentAttempt]:
        """Open attempts whose provider was last contacted before ``cutoff``."""
        stale = []
        for status in (AttemptStatus.PENDING, AttemptStatus.PROCESSING):
            for attempt in fetch_all(self._dao.query.filter(status=status.value).order_by("created_at")):
                if _as_aware(attempt.age_anchor, cutoff) < cutoff:
                    stale.append(attempt)
        return stale

    def claim_provider_ref(self, attempt: PaymentAttempt, provider_ref: str) -> None:
        """Refuse to attach a provider reference another attempt already holds."""
        existing = self.find_by_ref(attempt.provider, provider_ref)
        if existing is not None and str(existing.id) != str(attempt.id):
            raise LedgerInvariantViolation(
                "Provider reference is already attached to another payment attempt",
                provider=attempt.provider,
                provider_ref=provider_ref,
                attempt_id=str(existing.id),
            )


def _as_aware(value: datetime, reference: datetime) -> datetime:
    # Normalize timezone awareness for comparison
    if value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.replace(tzinfo=None)
    return value
