"""M-Pesa (Daraja) STK push adapter.

Initiation sends an STK push to the buyer's phone and returns the
CheckoutRequestID; the outcome arrives later on the callback URL. ``verify``
uses the STK push query endpoint. Daraja does not sign callbacks, so when a
callback token is configured the callback URL must carry it in the
``X-Callback-Token`` header.
"""

import base64
import hmac
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Mapping

import httpx
import structlog

from marketplace.config import MpesaSettings
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

TOKEN_TTL_SECONDS = 3500
ACCOUNT_REFERENCE_MAX = 12
EXPIRED_TOKEN_CODE = "404.001.03"
STILL_PROCESSING_CODE = "500.001.1001"
EAT = timezone(timedelta(hours=3))

_PHONE_PATTERN = re.compile(r"^254[17]\d{8}$")


def normalize_phone(phone: str) -> str:
    """Normalize a Kenyan mobile number to 2547XXXXXXXX / 2541XXXXXXXX.

    Raises ValueError for anything that is not a valid Safaricom-style number.
    """
    digits = re.sub(r"[\s\-()]", "", phone or "")
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits
    if not _PHONE_PATTERN.match(digits):
        raise ValueError(f"Invalid M-Pesa phone number: {phone}")
    return digits


def stk_amount(amount: float) -> int:
    """Daraja only accepts whole shillings, at least 1."""
    return max(1, int(round(amount)))


class MpesaGateway(PaymentGateway):
    provider = "mpesa"

    def __init__(self, settings: MpesaSettings, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self.settings = settings
        self.client = client or httpx.Client(base_url=settings.base_url, timeout=timeout)
        self._token: str | None = None
        self._token_expires_at: float = 0.0

    # -------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------
    def _access_token(self, force_refresh: bool = False) -> str:
        if not force_refresh and self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = send(
            self.client,
            "GET",
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.settings.consumer_key, self.settings.consumer_secret),
        )
        body = check_response(response)
        token = body.get("access_token")
        if not token:
            raise TransientGatewayError("M-Pesa token response did not include an access token")

        self._token = token
        self._token_expires_at = time.monotonic() + TOKEN_TTL_SECONDS
        return token

    def _password(self, timestamp: str) -> str:
        raw = f"{self.settings.shortcode}{self.settings.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def _post(self, path: str, payload: dict) -> dict:
        """POST with a bearer token, refreshing it once if Daraja says it expired."""
        response = self._send_authorized(path, payload, self._access_token())
        if _token_rejected(response):
            logger.info("M-Pesa token rejected, refreshing")
            response = self._send_authorized(path, payload, self._access_token(force_refresh=True))
        return check_response(response)

    def _send_authorized(self, path: str, payload: dict, token: str) -> httpx.Response:
        return send(self.client, "POST", path, json=payload, headers={"Authorization": f"Bearer {token}"})

    # -------------------------------------------------------------------
    # Gateway contract
    # -------------------------------------------------------------------
    def initiate(self, request: PaymentRequest) -> InitiationResult:
        try:
            phone = normalize_phone(request.phone or "")
        except ValueError as exc:
            raise GatewayRejectedError(str(exc), code="invalid_phone") from exc

        timestamp = datetime.now(EAT).strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.settings.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": stk_amount(request.amount),
            "PartyA": phone,
            "PartyB": self.settings.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.callback_url,
            "AccountReference": request.order_id[:ACCOUNT_REFERENCE_MAX],
            "TransactionDesc": (request.description or f"Payment for {request.order_id}")[:100],
        }
        body = self._post("/mpesa/stkpush/v1/processrequest", payload)

        if str(body.get("ResponseCode")) != "0":
            raise GatewayRejectedError(
                body.get("ResponseDescription") or body.get("errorMessage") or "STK push rejected",
                code=str(body.get("ResponseCode") or body.get("errorCode")),
            )

        checkout_request_id = body.get("CheckoutRequestID")
        if not checkout_request_id:
            raise TransientGatewayError("STK push response did not include a CheckoutRequestID")

        logger.info(
            "M-Pesa STK push sent",
            order_id=request.order_id,
            checkout_request_id=checkout_request_id,
        )
        return InitiationResult(provider_ref=checkout_request_id, status=InitiationStatus.PROCESSING)

    def verify(self, provider_ref: str) -> ProviderStatus:
        timestamp = datetime.now(EAT).strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.settings.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": provider_ref,
        }
        try:
            body = self._post("/mpesa/stkpushquery/v1/query", payload)
        except GatewayRejectedError as exc:
            if exc.code == STILL_PROCESSING_CODE:
                return ProviderStatus(provider_ref=provider_ref, state=ProviderState.PENDING, result_code="pending")
            raise
        except TransientGatewayError:
            # Daraja answers "still processing" with an HTTP 500
            return ProviderStatus(provider_ref=provider_ref, state=ProviderState.PENDING, result_code="pending")

        result_code = str(body.get("ResultCode", ""))
        if result_code == "":
            return ProviderStatus(provider_ref=provider_ref, state=ProviderState.PENDING, result_code="pending")
        return ProviderStatus(
            provider_ref=provider_ref,
            state=ProviderState.COMPLETED if result_code == "0" else ProviderState.FAILED,
            result_code=result_code,
            description=body.get("ResultDesc", ""),
        )

    def refund(self, provider_ref: str, amount: float, reason: str) -> RefundResult:  # noqa: ARG002
        # Reversals need initiator credentials and are handled by finance
        return RefundResult(success=False, failure_reason="M-Pesa reversals are processed manually")

    def verify_callback(self, payload: bytes, headers: Mapping[str, str]) -> bool:  # noqa: ARG002
        if not self.settings.callback_token:
            return True
        normalized = {key.lower(): value for key, value in headers.items()}
        return hmac.compare_digest(normalized.get("x-callback-token", ""), self.settings.callback_token)


def _token_rejected(response: httpx.Response) -> bool:
    if response.status_code == 401:
        return True
    try:
        return response.json().get("errorCode") == EXPIRED_TOKEN_CODE
    except ValueError:
        return False
