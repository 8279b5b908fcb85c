"""Provider callback payloads and their normalization.

Each provider posts its own JSON shape. Every shape is modelled here and
reduced to one CallbackResult before anything reaches reconciliation; the
state machine never looks at a raw payload.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.errors import InvalidCallbackPayload
from marketplace.shared.money import from_minor_units


@dataclass(frozen=True)
class CallbackResult:
    """A provider outcome in the engine's terms."""

    provider: str
    provider_ref: str
    result_code: str
    succeeded: bool
    amount: float | None = None
    description: str = ""
    provider_receipt: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# M-Pesa STK push callback
# ---------------------------------------------------------------------------
class MpesaCallbackItem(BaseModel):
    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class MpesaCallbackMetadata(BaseModel):
    items: list[MpesaCallbackItem] = Field(default_factory=list, alias="Item")

    @field_validator("items")
    @classmethod
    def amount_is_numeric(cls, items: list[MpesaCallbackItem]) -> list[MpesaCallbackItem]:
        for item in items:
            if item.name != "Amount":
                continue
            try:
                amount = float(item.value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Amount must be a number, got {item.value!r}") from exc
            if not math.isfinite(amount):
                raise ValueError(f"Amount must be finite, got {item.value!r}")
            item.value = amount
        return items


class MpesaStkCallback(BaseModel):
    merchant_request_id: str | None = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID", min_length=1)
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    callback_metadata: MpesaCallbackMetadata | None = Field(default=None, alias="CallbackMetadata")


class MpesaCallbackBody(BaseModel):
    stk_callback: MpesaStkCallback = Field(alias="stkCallback")


class MpesaCallback(BaseModel):
    body: MpesaCallbackBody = Field(alias="Body")

    def normalize(self) -> CallbackResult:
        callback = self.body.stk_callback
        items = {item.name: item.value for item in (callback.callback_metadata.items if callback.callback_metadata else [])}
        amount = items.get("Amount")
        return CallbackResult(
            provider="mpesa",
            provider_ref=callback.checkout_request_id,
            result_code=str(callback.result_code),
            succeeded=callback.result_code == 0,
            amount=amount,
            description=callback.result_desc,
            provider_receipt=items.get("MpesaReceiptNumber"),
            metadata={
                "merchant_request_id": callback.merchant_request_id,
                "phone_number": items.get("PhoneNumber"),
                "transaction_date": items.get("TransactionDate"),
            },
        )


# ---------------------------------------------------------------------------
# Stripe event
# ---------------------------------------------------------------------------
STRIPE_SUCCESS_EVENTS = {"payment_intent.succeeded", "charge.succeeded"}
STRIPE_FAILURE_EVENTS = {"payment_intent.payment_failed", "charge.failed"}


class StripeEventObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    object: str | None = None
    amount: int | None = None
    amount_received: int | None = None
    currency: str | None = None
    status: str | None = None
    payment_intent: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    failure_message: str | None = None
    last_payment_error: dict[str, Any] | None = None


class StripeEventData(BaseModel):
    object: StripeEventObject


class StripeEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    data: StripeEventData

    def normalize(self) -> CallbackResult | None:
        if self.type not in STRIPE_SUCCESS_EVENTS | STRIPE_FAILURE_EVENTS:
            return None

        obj = self.data.object
        # Charges point at their PaymentIntent, which is the reference we hold
        provider_ref = obj.payment_intent if obj.object == "charge" and obj.payment_intent else obj.id
        minor = obj.amount_received if obj.amount_received else obj.amount
        error = obj.last_payment_error or {}
        return CallbackResult(
            provider="card",
            provider_ref=provider_ref,
            result_code=self.type,
            succeeded=self.type in STRIPE_SUCCESS_EVENTS,
            amount=from_minor_units(minor) if minor is not None else None,
            description=obj.failure_message or error.get("message", "") or obj.status or "",
            provider_receipt=obj.id if obj.object == "charge" else None,
            metadata={"event_id": self.id, "order_id": obj.metadata.get("order_id")},
        )


# ---------------------------------------------------------------------------
# PayPal webhook event
# ---------------------------------------------------------------------------
PAYPAL_SUCCESS_EVENTS = {"PAYMENT.CAPTURE.COMPLETED"}
PAYPAL_FAILURE_EVENTS = {"PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"}


class PayPalAmount(BaseModel):
    value: Decimal
    currency_code: str | None = None


class PayPalResource(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str | None = None
    amount: PayPalAmount | None = None
    supplementary_data: dict[str, Any] | None = None


class PayPalEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    event_type: str
    resource: PayPalResource

    def normalize(self) -> CallbackResult | None:
        if self.event_type not in PAYPAL_SUCCESS_EVENTS | PAYPAL_FAILURE_EVENTS:
            return None

        resource = self.resource
        related = (resource.supplementary_data or {}).get("related_ids") or {}
        return CallbackResult(
            provider="paypal",
            provider_ref=related.get("order_id") or resource.id,
            result_code=self.event_type,
            succeeded=self.event_type in PAYPAL_SUCCESS_EVENTS,
            amount=float(resource.amount.value) if resource.amount else None,
            description=resource.status or "",
            provider_receipt=resource.id,
            metadata={"event_id": self.id},
        )


_MODELS: dict[str, Callable[..., BaseModel]] = {
    "mpesa": MpesaCallback,
    "card": StripeEvent,
    "paypal": PayPalEvent,
}


def parse_callback(provider: str, payload: dict) -> CallbackResult | None:
    """Validate a provider payload and normalize it.

    Returns None for well-formed events the engine does not act on.
    Raises InvalidCallbackPayload when the payload is not the provider's shape.
    """
    model = _MODELS.get(provider)
    if model is None:
        raise InvalidCallbackPayload(f"Unknown payment provider: {provider}", provider=provider)

    try:
        parsed = model.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise InvalidCallbackPayload(
            f"Malformed {provider} callback",
            provider=provider,
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc
    return parsed.normalize()
