"""M-Pesa Daraja adapter against a mocked HTTP transport."""

import json

import httpx
import pytest

from marketplace.config import MpesaSettings
from marketplace.gateway.mpesa_adapter import MpesaGateway, normalize_phone, stk_amount
from marketplace.gateway.port import (
    GatewayRejectedError,
    InitiationStatus,
    PaymentRequest,
    ProviderState,
    TransientGatewayError,
)

SETTINGS = MpesaSettings(
    consumer_key="key",
    consumer_secret="secret",
    shortcode="174379",
    passkey="passkey",
    callback_url="https://shop.test/webhooks/mpesa",
    callback_token="cb-token",
)


def _request(**overrides):
    values = dict(
        order_id="ORD-1",
        amount=2820.4,
        currency="KES",
        idempotency_key="ORD-1:1",
        phone="0712345678",
    )
    values.update(overrides)
    return PaymentRequest(**values)


class Daraja:
    """Scriptable stand-in for the Daraja API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.stk_responses: list[httpx.Response] = []
        self.query_response = httpx.Response(200, json={"ResultCode": "0", "ResultDesc": "Processed"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/v1/generate":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_calls}", "expires_in": "3599"})
        if request.url.path == "/mpesa/stkpush/v1/processrequest":
            if self.stk_responses:
                return self.stk_responses.pop(0)
            return httpx.Response(
                200,
                json={
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": "ws_CO_191220191020363925",
                    "ResponseCode": "0",
                    "ResponseDescription": "Success. Request accepted for processing",
                },
            )
        if request.url.path == "/mpesa/stkpushquery/v1/query":
            return self.query_response
        return httpx.Response(404)


@pytest.fixture()
def daraja():
    return Daraja()


@pytest.fixture()
def gateway(daraja):
    client = httpx.Client(base_url=SETTINGS.base_url, transport=httpx.MockTransport(daraja))
    return MpesaGateway(SETTINGS, client=client)


class TestPhoneNormalization:
    @pytest.mark.parametrize(
        "raw",
        ["0712345678", "+254712345678", "254712345678", "712345678", "0712 345 678"],
    )
    def test_accepted_formats(self, raw):
        assert normalize_phone(raw) == "254712345678"

    def test_airtel_style_prefix(self):
        assert normalize_phone("0110123456") == "254110123456"

    @pytest.mark.parametrize("raw", ["", "12345", "0812345678", "25471234567"])
    def test_rejected(self, raw):
        with pytest.raises(ValueError):
            normalize_phone(raw)


def test_amount_is_whole_shillings():
    assert stk_amount(2820.4) == 2820
    assert stk_amount(0.2) == 1


class TestInitiate:
    def test_stk_push(self, gateway, daraja):
        result = gateway.initiate(_request())

        assert result.provider_ref == "ws_CO_191220191020363925"
        assert result.status == InitiationStatus.PROCESSING

        push = daraja.requests[-1]
        assert push.headers["Authorization"] == "Bearer token-1"
        body = json.loads(push.content)
        assert body["Amount"] == 2820
        assert body["PhoneNumber"] == "254712345678"
        assert body["AccountReference"] == "ORD-1"
        assert body["CallBackURL"] == SETTINGS.callback_url

    def test_token_cached(self, gateway, daraja):
        gateway.initiate(_request())
        gateway.initiate(_request())
        assert daraja.token_calls == 1

    def test_expired_token_refreshed_once(self, gateway, daraja):
        daraja.stk_responses.append(
            httpx.Response(404, json={"errorCode": "404.001.03", "errorMessage": "Invalid Access Token"})
        )
        result = gateway.initiate(_request())
        assert result.provider_ref == "ws_CO_191220191020363925"
        assert daraja.token_calls == 2

    def test_invalid_phone_rejected_without_call(self, gateway, daraja):
        with pytest.raises(GatewayRejectedError) as exc:
            gateway.initiate(_request(phone="123"))
        assert exc.value.code == "invalid_phone"
        assert daraja.requests == []

    def test_non_zero_response_code_rejected(self, gateway, daraja):
        daraja.stk_responses.append(
            httpx.Response(200, json={"ResponseCode": "1", "ResponseDescription": "Invalid BusinessShortCode"})
        )
        with pytest.raises(GatewayRejectedError) as exc:
            gateway.initiate(_request())
        assert exc.value.reason == "Invalid BusinessShortCode"

    def test_server_error_is_transient(self, gateway, daraja):
        daraja.stk_responses.append(httpx.Response(503))
        with pytest.raises(TransientGatewayError):
            gateway.initiate(_request())

    def test_timeout_is_transient(self, daraja):
        def _timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.Client(base_url=SETTINGS.base_url, transport=httpx.MockTransport(_timeout))
        with pytest.raises(TransientGatewayError):
            MpesaGateway(SETTINGS, client=client).initiate(_request())


class TestVerify:
    def test_completed(self, gateway):
        status = gateway.verify("ws_CO_1")
        assert status.state == ProviderState.COMPLETED
        assert status.result_code == "0"

    def test_cancelled_by_user(self, gateway, daraja):
        daraja.query_response = httpx.Response(
            200, json={"ResultCode": "1032", "ResultDesc": "Request cancelled by user"}
        )
        status = gateway.verify("ws_CO_1")
        assert status.state == ProviderState.FAILED
        assert status.description == "Request cancelled by user"

    def test_still_processing(self, gateway, daraja):
        daraja.query_response = httpx.Response(
            500, json={"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}
        )
        assert gateway.verify("ws_CO_1").state == ProviderState.PENDING


class TestCallbackVerification:
    def test_token_header_checked(self, gateway):
        assert gateway.verify_callback(b"{}", {"X-Callback-Token": "cb-token"})
        assert not gateway.verify_callback(b"{}", {"X-Callback-Token": "wrong"})
        assert not gateway.verify_callback(b"{}", {})

    def test_open_when_no_token_configured(self):
        gateway = MpesaGateway(MpesaSettings(), client=httpx.Client(transport=httpx.MockTransport(Daraja())))
        assert gateway.verify_callback(b"{}", {})


def test_refunds_are_manual(gateway):
    result = gateway.refund("ws_CO_1", 100.0, "Damaged")
    assert result.success is False
