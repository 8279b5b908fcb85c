"""Domain events for the PaymentAttempt aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from marketplace.domain import marketplace


@marketplace.event(part_of="PaymentAttempt")
class PaymentAttemptCreated:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider = String(max_length=20, required=True)
    amount = Float(required=True)
    currency = String(max_length=3, required=True)
    idempotency_key = String(max_length=255, required=True)
    created_at = DateTime(required=True)


@marketplace.event(part_of="PaymentAttempt")
class PaymentInitiated:
    """The provider accepted the request and returned its transaction reference."""

    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider = String(max_length=20, required=True)
    provider_ref = String(max_length=255, required=True)
    initiated_at = DateTime(required=True)


@marketplace.event(part_of="PaymentAttempt")
class PaymentCompleted:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider = String(max_length=20, required=True)
    provider_ref = String(max_length=255, required=True)
    amount = Float(required=True)
    provider_receipt = String(max_length=255)
    completed_at = DateTime(required=True)


@marketplace.event(part_of="PaymentAttempt")
class PaymentAttemptFailed:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider = String(max_length=20, required=True)
    provider_ref = String(max_length=255)
    reason = String(max_length=500, required=True)
    failed_at = DateTime(required=True)


@marketplace.event(part_of="PaymentAttempt")
class PaymentRefunded:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    provider_refund_ref = String(max_length=255)
    refunded_at = DateTime(required=True)


@marketplace.event(part_of="PaymentAttempt")
class PaymentFlaggedForReview:
    __version__ = 1

    attempt_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider_ref = String(max_length=255)
    reason = String(max_length=500, required=True)
    flagged_at = DateTime(required=True)
