"""Card payments through Stripe PaymentIntents.

Initiation creates and confirms a PaymentIntent with the buyer's payment
method token. A ``succeeded`` intent is a synchronous COMPLETED result; an
intent that needs 3-D Secure or is still processing stays PROCESSING and is
settled by the ``payment_intent.*`` webhook.
"""

from typing import Mapping

import stripe
import structlog

from marketplace.config import StripeSettings
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
from marketplace.shared.money import from_minor_units, to_minor_units

logger = structlog.get_logger(__name__)

_PENDING_STATES = {"processing", "requires_action", "requires_confirmation", "requires_capture"}
_FAILED_STATES = {"requires_payment_method", "canceled"}


def _classify(exc: stripe.StripeError) -> Exception:
    """Card declines and bad requests are definitive; the rest is worth retrying."""
    if isinstance(exc, (stripe.CardError, stripe.InvalidRequestError, stripe.AuthenticationError)):
        return GatewayRejectedError(getattr(exc, "user_message", None) or str(exc), code=getattr(exc, "code", None))
    return TransientGatewayError(str(exc))


def _redirect_url(intent) -> str | None:
    next_action = getattr(intent, "next_action", None)
    redirect = getattr(next_action, "redirect_to_url", None) if next_action else None
    return getattr(redirect, "url", None) if redirect else None


def _amount(intent) -> float:
    return from_minor_units(getattr(intent, "amount_received", None) or intent.amount)


class CardGateway(PaymentGateway):
    provider = "card"

    def __init__(self, settings: StripeSettings) -> None:
        self.api_key = settings.secret_key
        self.webhook_secret = settings.webhook_secret

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(request.amount),
                currency=request.currency.lower(),
                payment_method=request.payment_token,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                description=request.description or f"Order {request.order_id}",
                receipt_email=request.email,
                metadata={"order_id": request.order_id},
                idempotency_key=request.idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe initiation failed", order_id=request.order_id, error=str(exc))
            raise _classify(exc) from exc

        status = intent.status
        if status == "succeeded":
            return InitiationResult(
                provider_ref=intent.id,
                status=InitiationStatus.COMPLETED,
                amount=_amount(intent),
                provider_receipt=getattr(intent, "latest_charge", None),
            )
        if status in _PENDING_STATES:
            return InitiationResult(
                provider_ref=intent.id,
                status=InitiationStatus.PROCESSING,
                redirect_url=_redirect_url(intent),
            )

        error = getattr(intent, "last_payment_error", None)
        raise GatewayRejectedError(
            getattr(error, "message", None) or f"Payment intent {status}",
            code=getattr(error, "code", None) or status,
        )

    def verify(self, provider_ref: str) -> ProviderStatus:
        try:
            intent = stripe.PaymentIntent.retrieve(provider_ref, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise _classify(exc) from exc

        status = intent.status
        if status == "succeeded":
            state = ProviderState.COMPLETED
        elif status in _FAILED_STATES:
            state = ProviderState.FAILED
        else:
            state = ProviderState.PENDING

        return ProviderStatus(
            provider_ref=provider_ref,
            state=state,
            result_code=status,
            amount=_amount(intent),
            provider_receipt=getattr(intent, "latest_charge", None),
        )

    def refund(self, provider_ref: str, amount: float, reason: str) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=provider_ref,
                amount=to_minor_units(amount),
                metadata={"reason": reason},
                idempotency_key=f"refund-{provider_ref}",
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            return RefundResult(success=False, failure_reason=str(exc))
        return RefundResult(success=refund.status in ("succeeded", "pending"), provider_refund_ref=refund.id)

    def verify_callback(self, payload: bytes, headers: Mapping[str, str]) -> bool:
        normalized = {key.lower(): value for key, value in headers.items()}
        try:
            stripe.Webhook.construct_event(payload, normalized.get("stripe-signature", ""), self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature invalid", error=str(exc))
            return False
        except ValueError:
            return False
        return True
