import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from marketplace.order.fulfillment import DeliverOrder, ShipOrder
from marketplace.order.order import Order, OrderStatus
from marketplace.payment.reconciliation import handle_callback


@pytest.fixture()
def paid_order(awaiting_callback, mpesa_payload):
    handle_callback("mpesa", mpesa_payload("CRQ-1", 2820))
    return awaiting_callback


def test_ship_and_deliver(paid_order):
    current_domain.process(ShipOrder(order_id=paid_order), asynchronous=False)
    current_domain.process(DeliverOrder(order_id=paid_order), asynchronous=False)

    order = current_domain.repository_for(Order).get(paid_order)
    assert order.order_status == OrderStatus.DELIVERED.value
    assert order.shipped_at is not None
    assert order.delivered_at is not None


def test_unpaid_order_cannot_ship(awaiting_callback):
    with pytest.raises(ValidationError):
        current_domain.process(ShipOrder(order_id=awaiting_callback), asynchronous=False)


def test_cannot_deliver_before_shipping(paid_order):
    with pytest.raises(ValidationError):
        current_domain.process(DeliverOrder(order_id=paid_order), asynchronous=False)
