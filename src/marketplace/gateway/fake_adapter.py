"""Configurable fake payment gateway for development and testing.

One instance stands in for one provider family. It makes no external calls
and can be configured at runtime to accept, complete, reject or fail
transiently, which makes it useful for:
- Manual API testing via /gateway/configure
- Automated tests with predictable outcomes
- Development without real provider credentials
"""

from typing import Mapping
from uuid import uuid4

from marketplace.gateway.port import (
    GatewayRejectedError,
    InitiationResult,
    InitiationStatus,
    PaymentGateway,
    PaymentRequest,
    ProviderState,
    ProviderStatus,
    RefundResult,
    TransientGatewayError,
)

TEST_SIGNATURE = "test-signature"

_REF_PREFIXES = {
    "mpesa": "ws_CO_",
    "card": "pi_",
    "paypal": "PAYPAL-",
}


class FakeGateway(PaymentGateway):
    """Configurable fake gateway.

    ``outcome`` controls initiation:
        "accept"   → PROCESSING with a fresh reference (push/redirect style)
        "complete" → COMPLETED synchronously (card style)
        "reject"   → GatewayRejectedError
    ``transient_failures`` makes the next N initiations raise
    TransientGatewayError before the outcome applies.
    """

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.outcome: str = "complete" if provider == "card" else "accept"
        self.rejection_reason: str = "Request rejected by provider"
        self.transient_failures: int = 0
        self.next_ref: str | None = None
        self.statuses: dict[str, ProviderStatus] = {}
        self.calls: list[dict] = []

    def configure(
        self,
        outcome: str | None = None,
        rejection_reason: str | None = None,
        transient_failures: int | None = None,
        next_ref: str | None = None,
    ) -> None:
        """Configure gateway behavior at runtime."""
        if outcome is not None:
            self.outcome = outcome
        if rejection_reason is not None:
            self.rejection_reason = rejection_reason
        if transient_failures is not None:
            self.transient_failures = transient_failures
        if next_ref is not None:
            self.next_ref = next_ref

    def set_status(
        self,
        provider_ref: str,
        state: ProviderState,
        amount: float | None = None,
        result_code: str | None = None,
        description: str = "",
    ) -> None:
        """Script what verify() reports for a reference."""
        self.statuses[provider_ref] = ProviderStatus(
            provider_ref=provider_ref,
            state=state,
            result_code=result_code or state.value,
            amount=amount,
            description=description,
        )

    def _new_ref(self) -> str:
        if self.next_ref:
            ref, self.next_ref = self.next_ref, None
            return ref
        return f"{_REF_PREFIXES.get(self.provider, 'fake_')}{uuid4().hex[:12]}"

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        self.calls.append(
            {
                "method": "initiate",
                "order_id": request.order_id,
                "amount": request.amount,
                "currency": request.currency,
                "idempotency_key": request.idempotency_key,
            }
        )

        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise TransientGatewayError(f"{self.provider} provider timed out")

        if self.outcome == "reject":
            raise GatewayRejectedError(self.rejection_reason, code="rejected")

        ref = self._new_ref()
        if self.outcome == "complete":
            self.set_status(ref, ProviderState.COMPLETED, amount=request.amount)
            return InitiationResult(
                provider_ref=ref,
                status=InitiationStatus.COMPLETED,
                amount=request.amount,
                provider_receipt=f"rcpt_{uuid4().hex[:10]}",
            )

        self.set_status(ref, ProviderState.PENDING)
        redirect_url = f"https://fake-{self.provider}.test/approve/{ref}" if self.provider == "paypal" else None
        return InitiationResult(provider_ref=ref, status=InitiationStatus.PROCESSING, redirect_url=redirect_url)

    def verify(self, provider_ref: str) -> ProviderStatus:
        self.calls.append({"method": "verify", "provider_ref": provider_ref})
        status = self.statuses.get(provider_ref)
        if status is None:
            return ProviderStatus(provider_ref=provider_ref, state=ProviderState.PENDING, result_code="pending")
        return status

    def refund(self, provider_ref: str, amount: float, reason: str) -> RefundResult:
        self.calls.append({"method": "refund", "provider_ref": provider_ref, "amount": amount, "reason": reason})
        if self.outcome == "reject":
            return RefundResult(success=False, failure_reason=self.rejection_reason)
        return RefundResult(success=True, provider_refund_ref=f"fake_ref_{uuid4().hex[:12]}")

    def verify_callback(self, payload: bytes, headers: Mapping[str, str]) -> bool:  # noqa: ARG002
        normalized = {key.lower(): value for key, value in headers.items()}
        return normalized.get("x-gateway-signature") == TEST_SIGNATURE
