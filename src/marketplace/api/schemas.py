"""Pydantic request/response schemas for the Marketplace API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class CartItemSchema(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class DeliveryAddressSchema(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=1, max_length=20)
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    county: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)


# ---------------------------------------------------------------------------
# Order Schemas
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    items: list[CartItemSchema] = Field(min_length=1)
    delivery_address: DeliveryAddressSchema
    payment_method: str = Field(pattern="^(mpesa|card|paypal)$")
    delivery_method: str = "Standard"
    notes: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [{"product_id": "prod-001", "quantity": 2, "unit_price": 1200.0}],
                    "delivery_address": {
                        "full_name": "Amina Otieno",
                        "phone": "0712345678",
                        "street": "Moi Avenue 12",
                        "city": "Nairobi",
                        "county": "Nairobi",
                    },
                    "payment_method": "mpesa",
                }
            ]
        }
    }


class OrderCreatedResponse(BaseModel):
    order_id: str
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total_amount: float
    commission_amount: float
    vendor_amount: float
    currency: str


class OrderItemResponse(BaseModel):
    product_id: str
    title: str
    unit_price: float
    quantity: int
    line_total: float


class OrderResponse(OrderCreatedResponse):
    buyer_id: str
    vendor_id: str
    payment_method: str
    payment_status: str
    order_status: str
    payment_ref: str | None = None
    needs_review: bool = False
    items: list[OrderItemResponse]


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Payment Schemas
# ---------------------------------------------------------------------------
class InitiatePaymentRequest(BaseModel):
    phone: str | None = None
    email: str | None = None
    payment_token: str | None = None
    return_url: str | None = None
    cancel_url: str | None = None


class InitiatePaymentResponse(BaseModel):
    attempt_id: str
    provider: str
    provider_ref: str | None = None
    status: str
    redirect_url: str | None = None


class PaymentStatusResponse(BaseModel):
    order_id: str
    payment_status: str
    order_status: str
    payment_method: str
    total_amount: float
    currency: str
    payment_ref: str | None = None
    attempt_status: str | None = None
    failure_reason: str | None = None


class VerifyPaymentResponse(PaymentStatusResponse):
    outcome: str


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)
    manual_ref: str | None = Field(default=None, max_length=255)


class RefundResponse(BaseModel):
    order_id: str
    provider_refund_ref: str | None = None
    status: str


class WebhookAck(BaseModel):
    status: str = "accepted"
    outcome: str


# ---------------------------------------------------------------------------
# Payout Schemas
# ---------------------------------------------------------------------------
class PayoutEntryResponse(BaseModel):
    entry_id: str
    order_id: str
    gross_amount: float
    commission_amount: float
    net_amount: float
    currency: str
    status: str


class VendorPayoutsResponse(BaseModel):
    vendor_id: str
    pending: list[PayoutEntryResponse]
    balance: dict[str, float]


class MarkPaidRequest(BaseModel):
    transaction_ref: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Stock Schemas
# ---------------------------------------------------------------------------
class StockRequest(BaseModel):
    quantity: int = Field(ge=0)
    mode: str = Field(default="restock", pattern="^(initialize|restock)$")


class StockResponse(BaseModel):
    product_id: str
    available: int


# ---------------------------------------------------------------------------
# Gateway Schemas
# ---------------------------------------------------------------------------
class ConfigureGatewayRequest(BaseModel):
    provider: str = Field(pattern="^(mpesa|card|paypal)$")
    outcome: str | None = Field(default=None, pattern="^(accept|complete|reject)$")
    rejection_reason: str | None = None
    transient_failures: int | None = Field(default=None, ge=0)
    next_ref: str | None = None


class GatewayConfigResponse(BaseModel):
    provider: str
    gateway: str
    outcome: str
    rejection_reason: str
    transient_failures: int


class StatusResponse(BaseModel):
    status: str
