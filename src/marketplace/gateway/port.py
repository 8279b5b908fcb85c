"""Payment gateway port (abstract interface).

Three provider families sit behind one contract:

- push-style mobile money (M-Pesa STK push): initiation returns a pending
  reference, the outcome only arrives by callback;
- card capture (Stripe): initiation may itself come back COMPLETED;
- redirect wallet (PayPal): the buyer approves on the provider's site and the
  engine confirms with a server-to-server call.

Adapters raise TransientGatewayError for failures worth retrying and
GatewayRejectedError for definitive refusals.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class InitiationStatus(Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class ProviderState(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransientGatewayError(Exception):
    """Timeout, connection failure, 429 or 5xx. Safe to retry."""


class GatewayRejectedError(Exception):
    """The provider explicitly refused the request. Never retried."""

    def __init__(self, reason: str, code: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code


@dataclass(frozen=True)
class PaymentRequest:
    order_id: str
    amount: float
    currency: str
    idempotency_key: str
    description: str = ""
    phone: str | None = None
    email: str | None = None
    payment_token: str | None = None
    return_url: str | None = None
    cancel_url: str | None = None


@dataclass(frozen=True)
class InitiationResult:
    provider_ref: str
    status: InitiationStatus = InitiationStatus.PROCESSING
    amount: float | None = None
    redirect_url: str | None = None
    provider_receipt: str | None = None


@dataclass(frozen=True)
class ProviderStatus:
    """Provider's view of a transaction, from a polling call."""

    provider_ref: str
    state: ProviderState
    result_code: str
    amount: float | None = None
    description: str = ""
    provider_receipt: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    success: bool
    provider_refund_ref: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    provider: str

    @abstractmethod
    def initiate(self, request: PaymentRequest) -> InitiationResult:
        """Ask the provider to collect payment for an order."""
        ...

    @abstractmethod
    def verify(self, provider_ref: str) -> ProviderStatus:
        """Poll the provider for the current state of a transaction."""
        ...

    @abstractmethod
    def refund(self, provider_ref: str, amount: float, reason: str) -> RefundResult:
        """Return a completed payment to the buyer."""
        ...

    @abstractmethod
    def verify_callback(self, payload: bytes, headers: Mapping[str, str]) -> bool:
        """Check that a callback really comes from the provider."""
        ...
