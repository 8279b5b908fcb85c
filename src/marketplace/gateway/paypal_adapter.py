"""PayPal Orders v2 adapter.

Initiation creates a PayPal order and returns its id and the approval link
the buyer is redirected to. Once the buyer approves, ``verify`` captures the
order server-to-server; the capture webhook reports the same outcome.
"""

import json
import time
from typing import Mapping

import httpx
import structlog

from marketplace.config import PayPalSettings
from marketplace.gateway.http import check_response, send
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

logger = structlog.get_logger(__name__)

_TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _captured_amount(order: dict) -> float | None:
    units = order.get("purchase_units") or []
    if not units:
        return None
    captures = (units[0].get("payments") or {}).get("captures") or []
    amount = captures[0].get("amount") if captures else units[0].get("amount")
    return float(amount["value"]) if amount and amount.get("value") else None


def _capture_id(order: dict) -> str | None:
    units = order.get("purchase_units") or []
    if not units:
        return None
    captures = (units[0].get("payments") or {}).get("captures") or []
    return captures[0].get("id") if captures else None


class PayPalGateway(PaymentGateway):
    provider = "paypal"

    def __init__(self, settings: PayPalSettings, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self.settings = settings
        self.client = client or httpx.Client(base_url=settings.base_url, timeout=timeout)
        self._token: str | None = None
        self._token_expires_at: float = 0.0

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = send(
            self.client,
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.settings.client_id, self.settings.client_secret),
        )
        body = check_response(response)
        if not body.get("access_token"):
            raise TransientGatewayError("PayPal token response did not include an access token")

        self._token = body["access_token"]
        # Refresh a minute before PayPal expires it
        self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 0)) - 60, 0)
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self._access_token()}", **kwargs.pop("headers", {})}
        return check_response(send(self.client, method, path, headers=headers, **kwargs))

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        body = self._request(
            "POST",
            "/v2/checkout/orders",
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "reference_id": request.order_id,
                        "description": request.description or f"Order {request.order_id}",
                        "amount": {"currency_code": request.currency, "value": f"{request.amount:.2f}"},
                    }
                ],
                "application_context": {
                    "return_url": request.return_url,
                    "cancel_url": request.cancel_url,
                    "user_action": "PAY_NOW",
                },
            },
            headers={"PayPal-Request-Id": request.idempotency_key},
        )

        approve_url = next((link["href"] for link in body.get("links", []) if link.get("rel") == "approve"), None)
        logger.info("PayPal order created", order_id=request.order_id, paypal_order_id=body.get("id"))
        return InitiationResult(
            provider_ref=body["id"],
            status=InitiationStatus.PROCESSING,
            redirect_url=approve_url,
        )

    def verify(self, provider_ref: str) -> ProviderStatus:
        order = self._request("GET", f"/v2/checkout/orders/{provider_ref}")
        status = order.get("status")

        if status == "APPROVED":
            try:
                order = self._request(
                    "POST",
                    f"/v2/checkout/orders/{provider_ref}/capture",
                    json={},
                    headers={"PayPal-Request-Id": f"capture-{provider_ref}"},
                )
            except GatewayRejectedError as exc:
                return ProviderStatus(
                    provider_ref=provider_ref,
                    state=ProviderState.FAILED,
                    result_code=exc.code or "CAPTURE_FAILED",
                    description=exc.reason,
                )
            status = order.get("status")

        if status == "COMPLETED":
            state = ProviderState.COMPLETED
        elif status == "VOIDED":
            state = ProviderState.FAILED
        else:
            state = ProviderState.PENDING

        return ProviderStatus(
            provider_ref=provider_ref,
            state=state,
            result_code=status or "UNKNOWN",
            amount=_captured_amount(order),
            provider_receipt=_capture_id(order),
        )

    def refund(self, provider_ref: str, amount: float, reason: str) -> RefundResult:
        order = self._request("GET", f"/v2/checkout/orders/{provider_ref}")
        capture_id = _capture_id(order)
        if not capture_id:
            return RefundResult(success=False, failure_reason="PayPal order has no capture to refund")

        currency = (order["purchase_units"][0].get("amount") or {}).get("currency_code", "USD")
        try:
            body = self._request(
                "POST",
                f"/v2/payments/captures/{capture_id}/refund",
                json={"amount": {"value": f"{amount:.2f}", "currency_code": currency}, "note_to_payer": reason[:255]},
                headers={"PayPal-Request-Id": f"refund-{capture_id}"},
            )
        except GatewayRejectedError as exc:
            return RefundResult(success=False, failure_reason=exc.reason)
        return RefundResult(success=body.get("status") in ("COMPLETED", "PENDING"), provider_refund_ref=body.get("id"))

    def verify_callback(self, payload: bytes, headers: Mapping[str, str]) -> bool:
        normalized = {key.lower(): value for key, value in headers.items()}
        verification = {field: normalized.get(header, "") for field, header in _TRANSMISSION_HEADERS.items()}
        if not all(verification.values()):
            return False

        try:
            body = self._request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json={**verification, "webhook_id": self.settings.webhook_id, "webhook_event": json.loads(payload)},
            )
        except (GatewayRejectedError, TransientGatewayError, ValueError) as exc:
            logger.warning("PayPal webhook verification failed", error=str(exc))
            return False
        return body.get("verification_status") == "SUCCESS"
