import pytest
from protean import current_domain

from marketplace.gateway import get_gateway
from marketplace.order.order import Order
from marketplace.payment.attempt import PaymentAttempt
from marketplace.payment.initiation import initiate_payment


@pytest.fixture()
def awaiting_callback(add_product, place_order):
    """An mpesa order for 2 x 1000 (total 2820) pushed to the buyer's phone as CRQ-1."""
    add_product("prod-001", 1000.0, stock=5)
    order_id = place_order([("prod-001", 2)])
    get_gateway("mpesa").configure(next_ref="CRQ-1")
    outcome = initiate_payment(order_id)
    assert outcome.provider_ref == "CRQ-1"
    return order_id


@pytest.fixture()
def load():
    """Fetch the order and its latest attempt."""

    def _load(order_id):
        order = current_domain.repository_for(Order).get(order_id)
        attempt = current_domain.repository_for(PaymentAttempt).latest_for_order(order_id)
        return order, attempt

    return _load
