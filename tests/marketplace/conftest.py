import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def marketplace_bed():
    from marketplace.domain import marketplace

    bed = DomainFixture(marketplace)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(marketplace_bed):
    with marketplace_bed.domain_context():
        yield


VENDOR_ID = "vendor-001"
BUYER_ID = "buyer-001"
ADDRESS = {
    "full_name": "Amina Otieno",
    "phone": "0712345678",
    "street": "Moi Avenue 12",
    "city": "Nairobi",
    "county": "Nairobi",
    "postal_code": "00100",
}


@pytest.fixture()
def add_product():
    """Publish a product in the catalog and seed its stock."""
    from protean import current_domain

    from marketplace.catalog import get_catalog
    from marketplace.stock.management import InitializeStock

    def _add(product_id, price, stock=10, vendor_id=VENDOR_ID, category_id=None, **flags):
        product = get_catalog().add_product(
            product_id=product_id,
            vendor_id=vendor_id,
            price=price,
            title=f"Product {product_id}",
            category_id=category_id,
            **flags,
        )
        current_domain.process(InitializeStock(product_id=product_id, quantity=stock), asynchronous=False)
        return product

    return _add


@pytest.fixture()
def place_order():
    """Place an order for ``[(product_id, quantity), ...]`` at catalog prices."""
    import json

    from marketplace.catalog import get_catalog
    from marketplace.order.creation import PlaceOrder
    from marketplace.shared import dispatch

    def _place(lines, payment_method="mpesa", buyer_id=BUYER_ID, **overrides):
        catalog = get_catalog()
        items = [
            {"product_id": product_id, "quantity": quantity, "unit_price": catalog.get_product(product_id).price}
            for product_id, quantity in lines
        ]
        command = PlaceOrder(
            buyer_id=buyer_id,
            items=json.dumps(items),
            delivery_address=json.dumps(ADDRESS),
            payment_method=payment_method,
            **overrides,
        )
        return dispatch.process(command)

    return _place


@pytest.fixture()
def available():
    """Current available stock for a product."""
    from protean import current_domain

    from marketplace.stock.stock import StockLedger

    def _available(product_id):
        return current_domain.repository_for(StockLedger).current(product_id).available

    return _available


def mpesa_callback(checkout_request_id, amount, result_code=0, receipt="QKX1234ABC"):
    """An M-Pesa STK push callback body as Daraja posts it."""
    stk = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully."
        if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261018103000},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": stk}}


@pytest.fixture()
def mpesa_payload():
    return mpesa_callback
