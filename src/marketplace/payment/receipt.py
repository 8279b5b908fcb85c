"""WebhookReceipt aggregate — the dedup table for provider callbacks.

The identifier is ``<provider>:<provider_ref>:<result_code>``, so a second
insert of the same key cannot commit. Receipts are read-only after creation
and are purged once older than the retention window; providers stop
redelivering long before that.
"""

from datetime import UTC, datetime

from protean.fields import DateTime, Float, String

from marketplace.domain import marketplace
from marketplace.shared.queries import fetch_all


def make_dedup_key(provider: str, provider_ref: str, result_code: str) -> str:
    return f"{provider}:{provider_ref}:{result_code}"


@marketplace.aggregate
class WebhookReceipt:
    dedup_key = String(identifier=True, max_length=512)
    provider = String(max_length=20, required=True)
    provider_ref = String(max_length=255, required=True)
    result_code = String(max_length=100, required=True)
    outcome = String(max_length=50, required=True)
    amount = Float()
    source = String(max_length=20, default="webhook")
    received_at = DateTime(required=True)

    @classmethod
    def record(cls, provider, provider_ref, result_code, outcome, amount=None, source="webhook"):
        return cls(
            dedup_key=make_dedup_key(provider, provider_ref, result_code),
            provider=provider,
            provider_ref=provider_ref,
            result_code=result_code,
            outcome=outcome,
            amount=amount,
            source=source,
            received_at=datetime.now(UTC),
        )


@marketplace.repository(part_of=WebhookReceipt)
class WebhookReceiptRepository:
    def exists(self, dedup_key: str) -> bool:
        return bool(self._dao.query.filter(dedup_key=dedup_key).all().items)

    def purge_older_than(self, cutoff: datetime) -> int:
        purged = 0
        for receipt in fetch_all(self._dao.query.order_by("received_at")):
            received_at = receipt.received_at
            if received_at.tzinfo is None:
                received_at = received_at.replace(tzinfo=UTC)
            if received_at < cutoff:
                self._dao.delete(receipt)
                purged += 1
        return purged
