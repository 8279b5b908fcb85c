"""Typed errors raised by the order and payment engine.

Each family carries the HTTP status the API layer renders it with.
Protean's own exceptions (ValidationError, ObjectNotFoundError) are still
used for field validation and illegal state transitions on aggregates.
"""

from typing import Any


class MarketplaceError(Exception):
    """Base for engine errors that are reported to the caller."""

    code = "MarketplaceError"
    http_status = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "details": self.details}


# ---------------------------------------------------------------------------
# Validation errors: rejected synchronously, never retried
# ---------------------------------------------------------------------------
class ProductUnavailable(MarketplaceError):
    code = "ProductUnavailable"
    http_status = 422


class PriceChanged(MarketplaceError):
    code = "PriceChanged"
    http_status = 422


class MultiVendorCartRejected(MarketplaceError):
    code = "MultiVendorCartRejected"
    http_status = 422


class OrderLimitExceeded(MarketplaceError):
    code = "OrderLimitExceeded"
    http_status = 422


class InvalidCallbackPayload(MarketplaceError):
    code = "InvalidCallbackPayload"
    http_status = 400


# ---------------------------------------------------------------------------
# Contention errors
# ---------------------------------------------------------------------------
class InsufficientStock(MarketplaceError):
    code = "InsufficientStock"
    http_status = 409


class OrderStateConflict(MarketplaceError):
    """A command kept losing to concurrent writers of the same aggregate."""

    code = "OrderStateConflict"
    http_status = 409


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------
class PaymentInitiationFailed(MarketplaceError):
    """Transient provider failures exhausted the retry budget."""

    code = "PaymentInitiationFailed"
    http_status = 502


class PaymentRejected(MarketplaceError):
    """The provider refused the payment outright."""

    code = "PaymentRejected"
    http_status = 402


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------
class LedgerInvariantViolation(MarketplaceError):
    """Money does not add up or a ledger row would be duplicated.

    Raised inside the unit of work so nothing is committed.
    """

    code = "LedgerInvariantViolation"
    http_status = 500
