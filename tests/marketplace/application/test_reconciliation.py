"""Reconciliation of provider callbacks against orders and attempts."""

import pytest
from protean import current_domain

from marketplace.errors import InvalidCallbackPayload
from marketplace.order.order import OrderStatus, PaymentStatus
from marketplace.payment.attempt import AttemptStatus, FailureReason
from marketplace.payment.callbacks import CallbackResult
from marketplace.payment.receipt import WebhookReceipt, make_dedup_key
from marketplace.payment.reconciliation import Outcome, handle_callback, reconcile
from marketplace.payout.payout import PayoutEntry, PayoutStatus


def _entries(order_id):
    return current_domain.repository_for(PayoutEntry)._dao.query.filter(order_id=order_id).all().items


class TestSuccessfulCallback:
    def test_completes_order_and_records_payout(self, awaiting_callback, load, mpesa_payload):
        outcome = handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
        assert outcome == Outcome.COMPLETED

        order, attempt = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.order_status == OrderStatus.PROCESSING.value
        assert attempt.status == AttemptStatus.COMPLETED.value
        assert attempt.provider_receipt == "QKX1234ABC"

        entries = _entries(awaiting_callback)
        assert len(entries) == 1
        assert entries[0].net_amount == order.total_amount - order.commission_amount
        assert entries[0].status == PayoutStatus.PENDING.value

    def test_stock_stays_reserved(self, awaiting_callback, mpesa_payload, available):
        handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
        assert available("prod-001") == 3

    def test_amount_within_tolerance_accepted(self, awaiting_callback, mpesa_payload):
        assert handle_callback("mpesa", mpesa_payload("CRQ-1", 2819.5)) == Outcome.COMPLETED

    def test_webhook_success_without_amount_is_flagged(self, awaiting_callback, load):
        outcome = reconcile(
            CallbackResult(provider="mpesa", provider_ref="CRQ-1", result_code="0", succeeded=True, amount=None)
        )
        assert outcome == Outcome.REVIEW

        order, attempt = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.PROCESSING.value
        assert attempt.status == AttemptStatus.PROCESSING.value
        assert order.needs_review is True
        assert attempt.needs_review is True
        assert _entries(awaiting_callback) == []

    def test_status_query_without_amount_uses_requested_amount(self, awaiting_callback):
        outcome = reconcile(
            CallbackResult(provider="mpesa", provider_ref="CRQ-1", result_code="verify:0", succeeded=True),
            source="verify",
        )
        assert outcome == Outcome.COMPLETED
        assert _entries(awaiting_callback)[0].gross_amount == 2820.0

    def test_receipt_written(self, awaiting_callback, mpesa_payload):
        handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
        receipt = current_domain.repository_for(WebhookReceipt).get(make_dedup_key("mpesa", "CRQ-1", "0"))
        assert receipt.outcome == Outcome.COMPLETED
        assert receipt.amount == 2820.0


class TestDuplicateCallbacks:
    def test_redelivery_is_acknowledged_without_effect(self, awaiting_callback, load, mpesa_payload):
        payload = mpesa_payload("CRQ-1", 2820)
        handle_callback("mpesa", payload)

        assert handle_callback("mpesa", payload) == Outcome.DUPLICATE

        order, _ = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert len(_entries(awaiting_callback)) == 1

    def test_many_redeliveries(self, awaiting_callback, mpesa_payload):
        payload = mpesa_payload("CRQ-1", 2820)
        outcomes = [handle_callback("mpesa", payload) for _ in range(5)]
        assert outcomes == [Outcome.COMPLETED] + [Outcome.DUPLICATE] * 4
        assert len(_entries(awaiting_callback)) == 1

    def test_different_result_code_hits_terminal_guard(self, awaiting_callback, load, mpesa_payload):
        handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
        outcome = reconcile(
            CallbackResult(provider="mpesa", provider_ref="CRQ-1", result_code="verify:completed", succeeded=True)
        )
        assert outcome == Outcome.ALREADY_RESOLVED
        assert len(_entries(awaiting_callback)) == 1


class TestFailedCallback:
    def test_failure_releases_stock(self, awaiting_callback, load, mpesa_payload, available):
        outcome = handle_callback("mpesa", mpesa_payload("CRQ-1", 2820, result_code=1032))
        assert outcome == Outcome.FAILED

        order, attempt = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.stock_released is True
        assert attempt.status == AttemptStatus.FAILED.value
        assert attempt.failure_reason.startswith(FailureReason.PROVIDER_REJECTED)
        assert available("prod-001") == 5
        assert _entries(awaiting_callback) == []

    def test_late_failure_after_success_is_ignored(self, awaiting_callback, load, mpesa_payload, available):
        handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
        outcome = handle_callback("mpesa", mpesa_payload("CRQ-1", 2820, result_code=1032))
        assert outcome == Outcome.ALREADY_RESOLVED

        order, _ = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert available("prod-001") == 3

    def test_success_after_failure_is_flagged(self, awaiting_callback, load, mpesa_payload, available):
        handle_callback("mpesa", mpesa_payload("CRQ-1", 2820, result_code=1032))
        outcome = handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
        assert outcome == Outcome.REVIEW

        order, attempt = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.needs_review is True
        assert attempt.needs_review is True
        assert available("prod-001") == 5
        assert _entries(awaiting_callback) == []


class TestAmountMismatch:
    def test_mismatch_fails_and_flags(self, awaiting_callback, load, mpesa_payload, available):
        outcome = handle_callback("mpesa", mpesa_payload("CRQ-1", 1))
        assert outcome == Outcome.AMOUNT_MISMATCH

        order, attempt = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.needs_review is True
        assert attempt.status == AttemptStatus.FAILED.value
        assert attempt.failure_reason == FailureReason.AMOUNT_MISMATCH
        assert available("prod-001") == 5
        assert _entries(awaiting_callback) == []

    def test_overpayment_is_also_a_mismatch(self, awaiting_callback, mpesa_payload):
        assert handle_callback("mpesa", mpesa_payload("CRQ-1", 3000)) == Outcome.AMOUNT_MISMATCH


class TestUnmatchedCallbacks:
    def test_unknown_reference_is_orphaned(self, awaiting_callback, load, mpesa_payload):
        assert handle_callback("mpesa", mpesa_payload("CRQ-404", 2820)) == Outcome.ORPHANED

        order, _ = load(awaiting_callback)
        assert order.payment_status == PaymentStatus.PROCESSING.value

    def test_orphan_writes_no_receipt(self, mpesa_payload):
        handle_callback("mpesa", mpesa_payload("CRQ-404", 2820))
        assert not current_domain.repository_for(WebhookReceipt).exists(make_dedup_key("mpesa", "CRQ-404", "0"))

    def test_reference_from_another_provider_is_orphaned(self, awaiting_callback):
        outcome = reconcile(
            CallbackResult(provider="paypal", provider_ref="CRQ-1", result_code="PAYMENT.CAPTURE.COMPLETED", succeeded=True)
        )
        assert outcome == Outcome.ORPHANED

    def test_malformed_payload_rejected(self):
        with pytest.raises(InvalidCallbackPayload):
            handle_callback("mpesa", {"Body": {}})

    def test_ignored_event_type(self):
        payload = {"id": "evt_1", "type": "customer.created", "data": {"object": {"id": "cus_1"}}}
        assert handle_callback("card", payload) == Outcome.IGNORED


def test_callback_after_cancellation_is_flagged(awaiting_callback, load, mpesa_payload):
    from marketplace.order.cancellation import CancelOrder

    current_domain.process(CancelOrder(order_id=awaiting_callback, reason="Changed my mind"), asynchronous=False)
    assert handle_callback("mpesa", mpesa_payload("CRQ-1", 2820)) == Outcome.REVIEW

    order, _ = load(awaiting_callback)
    assert order.order_status == OrderStatus.CANCELLED.value
    assert order.needs_review is True
