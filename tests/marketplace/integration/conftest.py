import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean.integrations.fastapi import register_exception_handlers

from marketplace.api import register_error_handlers, routers


@pytest.fixture()
def client():
    app = FastAPI()
    for router in routers:
        app.include_router(router)
    register_exception_handlers(app)
    register_error_handlers(app)
    return TestClient(app)


@pytest.fixture()
def api_order(client, add_product):
    """Place an mpesa order through the API: 2 x 1000, total 2820."""

    def _place(quantity=2, payment_method="mpesa"):
        response = client.post(
            "/orders",
            json={
                "items": [{"product_id": "prod-001", "quantity": quantity, "unit_price": 1000.0}],
                "delivery_address": {
                    "full_name": "Amina Otieno",
                    "phone": "0712345678",
                    "street": "Moi Avenue 12",
                    "city": "Nairobi",
                },
                "payment_method": payment_method,
            },
            headers={"X-User-Id": "buyer-001"},
        )
        assert response.status_code == 201
        return response.json()["order_id"]

    add_product("prod-001", 1000.0, stock=5)
    return _place
