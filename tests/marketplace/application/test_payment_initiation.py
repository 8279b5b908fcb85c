import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from marketplace.errors import InsufficientStock, PaymentInitiationFailed, PaymentRejected
from marketplace.gateway import get_gateway
from marketplace.order.cancellation import CancelOrder
from marketplace.order.order import OrderStatus, PaymentStatus
from marketplace.payment.attempt import AttemptStatus, PaymentAttempt
from marketplace.payment.initiation import initiate_payment
from marketplace.payout.payout import PayoutEntry


@pytest.fixture()
def mpesa_order(add_product, place_order):
    add_product("prod-001", 1000.0, stock=5)
    return place_order([("prod-001", 2)])


class TestPushInitiation:
    def test_accepted_push_moves_to_processing(self, mpesa_order, load):
        outcome = initiate_payment(mpesa_order)

        assert outcome.status == AttemptStatus.PROCESSING.value
        assert outcome.provider == "mpesa"
        assert outcome.provider_ref.startswith("ws_CO_")

        order, attempt = load(mpesa_order)
        assert order.payment_status == PaymentStatus.PROCESSING.value
        assert order.payment_ref == outcome.provider_ref
        assert attempt.amount == order.total_amount
        assert attempt.idempotency_key == f"{mpesa_order}:1"
        assert attempt.initiation_tries == 1

    def test_phone_normalized_from_delivery_address(self, mpesa_order):
        initiate_payment(mpesa_order)
        call = get_gateway("mpesa").calls[0]
        assert call["amount"] == 2820.0
        assert call["idempotency_key"] == f"{mpesa_order}:1"

    def test_invalid_phone_rejected_before_any_attempt(self, mpesa_order):
        with pytest.raises(ValidationError):
            initiate_payment(mpesa_order, phone="12345")
        assert current_domain.repository_for(PaymentAttempt).for_order(mpesa_order) == []

    def test_second_call_reuses_processing_attempt(self, mpesa_order):
        first = initiate_payment(mpesa_order)
        second = initiate_payment(mpesa_order)

        assert second.attempt_id == first.attempt_id
        assert second.provider_ref == first.provider_ref
        assert len(get_gateway("mpesa").calls) == 1

    def test_cancelled_order_cannot_be_paid(self, mpesa_order):
        current_domain.process(CancelOrder(order_id=mpesa_order), asynchronous=False)
        with pytest.raises(ValidationError):
            initiate_payment(mpesa_order)


class TestSynchronousCompletion:
    def test_card_capture_completes_immediately(self, add_product, place_order, load):
        add_product("prod-001", 1000.0, stock=5)
        order_id = place_order([("prod-001", 2)], payment_method="card")

        outcome = initiate_payment(order_id, payment_token="pm_card_visa")
        assert outcome.status == AttemptStatus.COMPLETED.value

        order, attempt = load(order_id)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.order_status == OrderStatus.PROCESSING.value
        assert attempt.provider_receipt.startswith("rcpt_")
        assert current_domain.repository_for(PayoutEntry).for_order(order_id).net_amount == 2620.0

    def test_paypal_returns_redirect(self, add_product, place_order):
        add_product("prod-001", 1000.0, stock=5)
        order_id = place_order([("prod-001", 1)], payment_method="paypal")

        outcome = initiate_payment(order_id, return_url="https://shop.test/return")
        assert outcome.status == AttemptStatus.PROCESSING.value
        assert outcome.redirect_url.endswith(outcome.provider_ref)


class TestRejection:
    def test_rejection_fails_payment_and_releases_stock(self, mpesa_order, load, available):
        get_gateway("mpesa").configure(outcome="reject", rejection_reason="Invalid shortcode")

        with pytest.raises(PaymentRejected) as exc:
            initiate_payment(mpesa_order)
        assert exc.value.details["order_id"] == mpesa_order

        order, attempt = load(mpesa_order)
        assert order.payment_status == PaymentStatus.FAILED.value
        assert attempt.status == AttemptStatus.FAILED.value
        assert "Invalid shortcode" in attempt.failure_reason
        assert available("prod-001") == 5

    def test_rejection_is_not_retried(self, mpesa_order):
        get_gateway("mpesa").configure(outcome="reject")
        with pytest.raises(PaymentRejected):
            initiate_payment(mpesa_order)
        assert len(get_gateway("mpesa").calls) == 1


class TestTransientFailures:
    def test_recovers_within_retry_budget(self, mpesa_order, load):
        get_gateway("mpesa").configure(transient_failures=2)

        outcome = initiate_payment(mpesa_order)
        assert outcome.status == AttemptStatus.PROCESSING.value

        _, attempt = load(mpesa_order)
        assert attempt.initiation_tries == 3

    def test_exhausted_retries_leave_attempt_pending(self, mpesa_order, load, available):
        get_gateway("mpesa").configure(transient_failures=5)

        with pytest.raises(PaymentInitiationFailed) as exc:
            initiate_payment(mpesa_order)
        assert exc.value.details["tries"] == 3

        order, attempt = load(mpesa_order)
        assert order.payment_status == PaymentStatus.PENDING.value
        assert attempt.status == AttemptStatus.PENDING.value
        assert attempt.initiation_tries == 3
        assert available("prod-001") == 3

    def test_retry_reuses_idempotency_key(self, mpesa_order, load):
        gateway = get_gateway("mpesa")
        gateway.configure(transient_failures=3)
        with pytest.raises(PaymentInitiationFailed):
            initiate_payment(mpesa_order)

        outcome = initiate_payment(mpesa_order)
        assert outcome.status == AttemptStatus.PROCESSING.value

        keys = {call["idempotency_key"] for call in gateway.calls}
        assert keys == {f"{mpesa_order}:1"}
        assert len(current_domain.repository_for(PaymentAttempt).for_order(mpesa_order)) == 1


class TestRetryAfterFailure:
    def test_new_attempt_re_reserves_stock(self, mpesa_order, load, available):
        gateway = get_gateway("mpesa")
        gateway.configure(outcome="reject")
        with pytest.raises(PaymentRejected):
            initiate_payment(mpesa_order)
        assert available("prod-001") == 5

        gateway.configure(outcome="accept")
        outcome = initiate_payment(mpesa_order)

        order, attempt = load(mpesa_order)
        assert outcome.attempt_id == str(attempt.id)
        assert attempt.idempotency_key == f"{mpesa_order}:2"
        assert order.payment_status == PaymentStatus.PROCESSING.value
        assert order.stock_released is False
        assert available("prod-001") == 3

    def test_retry_fails_when_stock_is_gone(self, mpesa_order, load, place_order, available):
        get_gateway("mpesa").configure(outcome="reject")
        with pytest.raises(PaymentRejected):
            initiate_payment(mpesa_order)

        place_order([("prod-001", 4)], buyer_id="buyer-002")
        get_gateway("mpesa").configure(outcome="accept")

        with pytest.raises(InsufficientStock):
            initiate_payment(mpesa_order)

        order, _ = load(mpesa_order)
        assert order.payment_status == PaymentStatus.FAILED.value
        assert available("prod-001") == 1
