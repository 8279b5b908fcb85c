"""Order placement — command and handler.

The handler validates the cart against the live catalog, reserves stock,
freezes the commission from a rate snapshot and persists the order as
PENDING/PENDING. Stock decrement and order insert share one unit of work;
a lost race on a stock ledger rolls both back and the command is re-run.
Payment initiation is a separate step.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.catalog import get_catalog
from marketplace.commission import get_rate_source
from marketplace.commission.calculator import CommissionLine, compute
from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.errors import MultiVendorCartRejected, PriceChanged, ProductUnavailable
from marketplace.order.order import DeliveryMethod, Order, PaymentProvider
from marketplace.order.pricing import compute_totals
from marketplace.shared.money import amounts_match
from marketplace.stock import reservation

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class PlaceOrder:
    buyer_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of {product_id, quantity, unit_price}
    delivery_address = Text(required=True)  # JSON: address dict
    payment_method = String(choices=PaymentProvider, required=True)
    delivery_method = String(choices=DeliveryMethod, default=DeliveryMethod.STANDARD.value)
    # Granted by platform-side callers (promotions, support); the buyer API never sets these
    free_shipping = Boolean(default=False)
    discount = Float(default=0.0, min_value=0.0)
    notes = Text()


def _load(value):
    return json.loads(value) if isinstance(value, str) else value


@marketplace.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command: PlaceOrder):
        settings = get_settings()
        cart = _load(command.items)
        if not cart:
            raise ValidationError({"items": ["Order must contain at least one item"]})

        lines = self._validate_cart(cart)

        vendors = {line["vendor_id"] for line in lines}
        if len(vendors) > 1:
            raise MultiVendorCartRejected(
                "All items in an order must come from the same vendor",
                vendor_ids=sorted(vendors),
            )
        vendor_id = vendors.pop()

        totals = compute_totals(
            [(line["unit_price"], line["quantity"]) for line in lines],
            settings,
            delivery_method=command.delivery_method or DeliveryMethod.STANDARD.value,
            free_shipping=bool(command.free_shipping),
            discount=command.discount or 0.0,
        )

        # Rates are read once here and never again for this order
        split = compute(
            [
                CommissionLine(
                    product_id=line["product_id"],
                    vendor_id=line["vendor_id"],
                    category_id=line["category_id"],
                    unit_price=line["unit_price"],
                    quantity=line["quantity"],
                )
                for line in lines
            ],
            get_rate_source().snapshot(),
        )
        line_commissions = {lc.product_id: lc for lc in split.lines}

        if totals.total < split.total_commission:
            raise ValidationError({"discount": ["Discount cannot exceed the order total less commission"]})

        reservation.reserve_all([(line["product_id"], line["quantity"]) for line in lines])

        order = Order.place(
            buyer_id=str(command.buyer_id),
            vendor_id=vendor_id,
            items_data=[
                {
                    "product_id": line["product_id"],
                    "title": line["title"],
                    "category_id": line["category_id"],
                    "unit_price": line["unit_price"],
                    "quantity": line["quantity"],
                    "line_total": line_commissions[line["product_id"]].gross,
                    "commission_rate": line_commissions[line["product_id"]].rate,
                    "commission_amount": line_commissions[line["product_id"]].commission,
                }
                for line in lines
            ],
            delivery_address=_load(command.delivery_address),
            payment_method=command.payment_method,
            totals=totals,
            commission_amount=split.total_commission,
            currency=settings.currency,
            delivery_method=command.delivery_method or DeliveryMethod.STANDARD.value,
            delivery_days=settings.delivery_days,
            notes=command.notes,
        )
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order placed",
            order_id=str(order.id),
            buyer_id=str(command.buyer_id),
            vendor_id=vendor_id,
            total_amount=order.total_amount,
            commission_amount=order.commission_amount,
        )
        return str(order.id)

    def _validate_cart(self, cart: list[dict]) -> list[dict]:
        catalog = get_catalog()
        lines = []
        seen = set()
        for entry in cart:
            product_id = str(entry["product_id"])
            quantity = int(entry.get("quantity", 0))
            if quantity < 1:
                raise ValidationError({"quantity": [f"Quantity for {product_id} must be at least 1"]})
            if product_id in seen:
                raise ValidationError({"items": [f"Product {product_id} appears more than once"]})
            seen.add(product_id)

            product = catalog.get_product(product_id)
            if product is None or not product.purchasable:
                raise ProductUnavailable(
                    f"Product {product_id} is not available for purchase",
                    product_id=product_id,
                )

            client_price = entry.get("unit_price")
            if client_price is None:
                raise ValidationError({"unit_price": [f"Unit price for {product_id} is required"]})
            if not amounts_match(client_price, product.price):
                raise PriceChanged(
                    f"Price of {product.title} changed from {client_price} to {product.price}",
                    product_id=product_id,
                    submitted_price=client_price,
                    current_price=product.price,
                )

            lines.append(
                {
                    "product_id": product_id,
                    "vendor_id": product.vendor_id,
                    "category_id": product.category_id,
                    "title": product.title,
                    "unit_price": product.price,
                    "quantity": quantity,
                }
            )
        return lines
