from marketplace.gateway import get_gateway
from marketplace.gateway.port import ProviderState, TransientGatewayError
from marketplace.order.order import PaymentStatus
from marketplace.payment.reconciliation import Outcome, handle_callback
from marketplace.payment.verification import NO_ATTEMPT, PENDING, UNAVAILABLE, verify_payment


def test_pending_at_provider(awaiting_callback, load):
    assert verify_payment(awaiting_callback) == PENDING
    order, _ = load(awaiting_callback)
    assert order.payment_status == PaymentStatus.PROCESSING.value


def test_completed_at_provider_settles_order(awaiting_callback, load):
    get_gateway("mpesa").set_status("CRQ-1", ProviderState.COMPLETED, amount=2820.0)

    assert verify_payment(awaiting_callback) == Outcome.COMPLETED
    order, _ = load(awaiting_callback)
    assert order.payment_status == PaymentStatus.COMPLETED.value


def test_failed_at_provider_releases_stock(awaiting_callback, load, available):
    get_gateway("mpesa").set_status(
        "CRQ-1", ProviderState.FAILED, result_code="1032", description="Request cancelled by user"
    )

    assert verify_payment(awaiting_callback) == Outcome.FAILED
    order, attempt = load(awaiting_callback)
    assert order.payment_status == PaymentStatus.FAILED.value
    assert "Request cancelled by user" in attempt.failure_reason
    assert available("prod-001") == 5


def test_resolved_attempt_reports_its_status(awaiting_callback):
    get_gateway("mpesa").set_status("CRQ-1", ProviderState.COMPLETED, amount=2820.0)
    verify_payment(awaiting_callback)

    assert verify_payment(awaiting_callback) == "completed"


def test_webhook_after_verification_is_a_no_op(awaiting_callback, mpesa_payload):
    get_gateway("mpesa").set_status("CRQ-1", ProviderState.COMPLETED, amount=2820.0)
    verify_payment(awaiting_callback)

    assert handle_callback("mpesa", mpesa_payload("CRQ-1", 2820)) == Outcome.ALREADY_RESOLVED


def test_no_attempt(add_product, place_order):
    add_product("prod-001", 1000.0)
    assert verify_payment(place_order([("prod-001", 1)])) == NO_ATTEMPT


def test_provider_unreachable(awaiting_callback, load, monkeypatch):
    def _down(provider_ref):
        raise TransientGatewayError("timed out")

    monkeypatch.setattr(get_gateway("mpesa"), "verify", _down)

    assert verify_payment(awaiting_callback) == UNAVAILABLE
    order, _ = load(awaiting_callback)
    assert order.payment_status == PaymentStatus.PROCESSING.value
