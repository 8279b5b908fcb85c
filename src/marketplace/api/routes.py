"""FastAPI routes for the Marketplace — orders, payments, webhooks, payouts, stock.

Callers are identified by the ``X-User-Id`` and ``X-User-Role`` headers set by
the authentication layer in front of this service.
"""

import json
import os

from fastapi import APIRouter, Header, HTTPException, Request
from protean.utils.globals import current_domain

from marketplace.api.schemas import (
    CancelOrderRequest,
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    MarkPaidRequest,
    OrderCreatedResponse,
    OrderItemResponse,
    OrderResponse,
    PaymentStatusResponse,
    PayoutEntryResponse,
    PlaceOrderRequest,
    RefundRequest,
    RefundResponse,
    StatusResponse,
    StockRequest,
    StockResponse,
    VendorPayoutsResponse,
    VerifyPaymentResponse,
    WebhookAck,
)
from marketplace.gateway import get_gateway
from marketplace.gateway.fake_adapter import FakeGateway
from marketplace.order.cancellation import CancelOrder
from marketplace.order.creation import PlaceOrder
from marketplace.order.fulfillment import DeliverOrder, ShipOrder
from marketplace.order.order import Order
from marketplace.payment.attempt import PaymentAttempt
from marketplace.payment.initiation import initiate_payment
from marketplace.payment.reconciliation import handle_callback
from marketplace.payment.refund import refund_payment
from marketplace.payment.verification import verify_payment
from marketplace.payout.disbursement import ApprovePayout, MarkPayoutPaid
from marketplace.payout.payout import PayoutEntry
from marketplace.shared import dispatch
from marketplace.stock.management import InitializeStock, Restock
from marketplace.stock.stock import StockLedger

ADMIN = "admin"
VENDOR = "vendor"


# ---------------------------------------------------------------------------
# Access helpers
# ---------------------------------------------------------------------------
def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id


def _require_admin(role: str | None) -> None:
    if role != ADMIN:
        raise HTTPException(status_code=403, detail="Admin role required")


def _require_buyer_or_admin(order: Order, user_id: str | None, role: str | None) -> None:
    if role == ADMIN:
        return
    if str(order.buyer_id) != _require_user(user_id):
        raise HTTPException(status_code=403, detail="Not allowed to access this order")


def _require_vendor_or_admin(vendor_id: str, user_id: str | None, role: str | None) -> None:
    if role == ADMIN:
        return
    if role != VENDOR or str(vendor_id) != _require_user(user_id):
        raise HTTPException(status_code=403, detail="Not allowed to act for this vendor")


def _load_order(order_id: str) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _payment_status(order: Order) -> PaymentStatusResponse:
    attempt = current_domain.repository_for(PaymentAttempt).latest_for_order(str(order.id))
    return PaymentStatusResponse(
        order_id=str(order.id),
        payment_status=order.payment_status,
        order_status=order.order_status,
        payment_method=order.payment_method,
        total_amount=order.total_amount,
        currency=order.currency,
        payment_ref=order.payment_ref,
        attempt_status=attempt.status if attempt else None,
        failure_reason=attempt.failure_reason if attempt else None,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderCreatedResponse)
async def place_order(
    body: PlaceOrderRequest,
    x_user_id: str | None = Header(default=None),
) -> OrderCreatedResponse:
    """Place an order for a single-vendor cart."""
    command = PlaceOrder(
        buyer_id=_require_user(x_user_id),
        items=json.dumps([item.model_dump() for item in body.items]),
        delivery_address=json.dumps(body.delivery_address.model_dump()),
        payment_method=body.payment_method,
        delivery_method=body.delivery_method,
        notes=body.notes,
    )
    order_id = dispatch.process(command)
    order = _load_order(order_id)
    return OrderCreatedResponse(
        order_id=str(order.id),
        subtotal=order.subtotal,
        shipping=order.shipping,
        tax=order.tax,
        discount=order.discount,
        total_amount=order.total_amount,
        commission_amount=order.commission_amount,
        vendor_amount=order.vendor_amount,
        currency=order.currency,
    )


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> OrderResponse:
    order = _load_order(order_id)
    _require_buyer_or_admin(order, x_user_id, x_user_role)
    return OrderResponse(
        order_id=str(order.id),
        buyer_id=str(order.buyer_id),
        vendor_id=str(order.vendor_id),
        subtotal=order.subtotal,
        shipping=order.shipping,
        tax=order.tax,
        discount=order.discount,
        total_amount=order.total_amount,
        commission_amount=order.commission_amount,
        vendor_amount=order.vendor_amount,
        currency=order.currency,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        order_status=order.order_status,
        payment_ref=order.payment_ref,
        needs_review=bool(order.needs_review),
        items=[
            OrderItemResponse(
                product_id=str(item.product_id),
                title=item.title,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in order.items
        ],
    )


@order_router.post("/{order_id}/cancel", response_model=StatusResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> StatusResponse:
    """Cancel an unpaid order and release its stock."""
    requested_by = None if x_user_role == ADMIN else _require_user(x_user_id)
    dispatch.process(CancelOrder(order_id=order_id, reason=body.reason, requested_by=requested_by))
    return StatusResponse(status="cancelled")


@order_router.post("/{order_id}/ship", response_model=StatusResponse)
async def ship_order(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> StatusResponse:
    order = _load_order(order_id)
    _require_vendor_or_admin(str(order.vendor_id), x_user_id, x_user_role)
    dispatch.process(ShipOrder(order_id=order_id))
    return StatusResponse(status="shipped")


@order_router.post("/{order_id}/deliver", response_model=StatusResponse)
async def deliver_order(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> StatusResponse:
    order = _load_order(order_id)
    _require_vendor_or_admin(str(order.vendor_id), x_user_id, x_user_role)
    dispatch.process(DeliverOrder(order_id=order_id))
    return StatusResponse(status="delivered")


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/{order_id}/initiate", response_model=InitiatePaymentResponse)
async def initiate(
    order_id: str,
    body: InitiatePaymentRequest,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> InitiatePaymentResponse:
    """Ask the order's payment provider to collect the total."""
    order = _load_order(order_id)
    _require_buyer_or_admin(order, x_user_id, x_user_role)
    outcome = initiate_payment(
        order_id,
        phone=body.phone,
        email=body.email,
        payment_token=body.payment_token,
        return_url=body.return_url,
        cancel_url=body.cancel_url,
    )
    return InitiatePaymentResponse(
        attempt_id=outcome.attempt_id,
        provider=outcome.provider,
        provider_ref=outcome.provider_ref,
        status=outcome.status,
        redirect_url=outcome.redirect_url,
    )


@payment_router.get("/{order_id}/status", response_model=PaymentStatusResponse)
async def payment_status(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentStatusResponse:
    """Current payment and order status, for client polling."""
    order = _load_order(order_id)
    _require_buyer_or_admin(order, x_user_id, x_user_role)
    return _payment_status(order)


@payment_router.post("/{order_id}/verify", response_model=VerifyPaymentResponse)
async def verify(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> VerifyPaymentResponse:
    """Poll the provider when no callback has arrived."""
    _require_buyer_or_admin(_load_order(order_id), x_user_id, x_user_role)
    outcome = verify_payment(order_id)
    status = _payment_status(_load_order(order_id))
    return VerifyPaymentResponse(**status.model_dump(), outcome=outcome)


@payment_router.post("/{order_id}/refund", response_model=RefundResponse)
async def refund(
    order_id: str,
    body: RefundRequest,
    x_user_role: str | None = Header(default=None),
) -> RefundResponse:
    _require_admin(x_user_role)
    refund_ref = refund_payment(order_id, reason=body.reason, manual_ref=body.manual_ref)
    return RefundResponse(order_id=order_id, provider_refund_ref=refund_ref, status="refunded")


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _receive(provider: str, request: Request) -> WebhookAck:
    raw = await request.body()
    if not get_gateway(provider).verify_callback(raw, request.headers):
        raise HTTPException(status_code=401, detail="Invalid callback signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Callback body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Callback body must be a JSON object")
    return WebhookAck(outcome=handle_callback(provider, payload))


@webhook_router.post("/mpesa", response_model=WebhookAck)
async def mpesa_callback(request: Request) -> WebhookAck:
    return await _receive("mpesa", request)


@webhook_router.post("/card", response_model=WebhookAck)
async def card_callback(request: Request) -> WebhookAck:
    return await _receive("card", request)


@webhook_router.post("/paypal", response_model=WebhookAck)
async def paypal_callback(request: Request) -> WebhookAck:
    return await _receive("paypal", request)


# ---------------------------------------------------------------------------
# Payout Router
# ---------------------------------------------------------------------------
payout_router = APIRouter(prefix="/payouts", tags=["payouts"])


def _entry_response(entry: PayoutEntry) -> PayoutEntryResponse:
    return PayoutEntryResponse(
        entry_id=str(entry.id),
        order_id=str(entry.order_id),
        gross_amount=entry.gross_amount,
        commission_amount=entry.commission_amount,
        net_amount=entry.net_amount,
        currency=entry.currency,
        status=entry.status,
    )


@payout_router.get("/vendors/{vendor_id}", response_model=VendorPayoutsResponse)
async def vendor_payouts(
    vendor_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> VendorPayoutsResponse:
    """Undisbursed entries and balance summary for a vendor."""
    _require_vendor_or_admin(vendor_id, x_user_id, x_user_role)
    repo = current_domain.repository_for(PayoutEntry)
    balance = repo.balance(vendor_id)
    return VendorPayoutsResponse(
        vendor_id=vendor_id,
        pending=[_entry_response(entry) for entry in repo.list_pending(vendor_id)],
        balance={
            "pending": balance.pending,
            "approved": balance.approved,
            "paid": balance.paid,
            "reversed": balance.reversed,
        },
    )


@payout_router.post("/{entry_id}/approve", response_model=StatusResponse)
async def approve_payout(entry_id: str, x_user_role: str | None = Header(default=None)) -> StatusResponse:
    _require_admin(x_user_role)
    dispatch.process(ApprovePayout(entry_id=entry_id))
    return StatusResponse(status="approved")


@payout_router.post("/{entry_id}/paid", response_model=StatusResponse)
async def mark_payout_paid(
    entry_id: str,
    body: MarkPaidRequest,
    x_user_role: str | None = Header(default=None),
) -> StatusResponse:
    _require_admin(x_user_role)
    dispatch.process(MarkPayoutPaid(entry_id=entry_id, transaction_ref=body.transaction_ref))
    return StatusResponse(status="paid")


# ---------------------------------------------------------------------------
# Stock Router
# ---------------------------------------------------------------------------
stock_router = APIRouter(prefix="/stock", tags=["stock"])


@stock_router.post("/{product_id}", response_model=StockResponse)
async def set_stock(
    product_id: str,
    body: StockRequest,
    x_user_role: str | None = Header(default=None),
) -> StockResponse:
    """Seed (``initialize``) or top up (``restock``) a product's stock."""
    _require_admin(x_user_role)
    if body.mode == "initialize":
        command = InitializeStock(product_id=product_id, quantity=body.quantity)
    else:
        command = Restock(product_id=product_id, quantity=body.quantity)
    available = dispatch.process(command)
    return StockResponse(product_id=product_id, available=available)


@stock_router.get("/{product_id}", response_model=StockResponse)
async def get_stock(product_id: str) -> StockResponse:
    ledger = current_domain.repository_for(StockLedger).current(product_id)
    if ledger is None:
        raise HTTPException(status_code=404, detail=f"No stock record for product {product_id}")
    return StockResponse(product_id=product_id, available=ledger.available)


# ---------------------------------------------------------------------------
# Gateway Router
# ---------------------------------------------------------------------------
gateway_router = APIRouter(prefix="/gateway", tags=["gateway"])


@gateway_router.post("/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure a FakeGateway's behavior (non-production only).

    This endpoint is only available when PROTEAN_ENV is not 'production'.
    It allows scripting provider outcomes for manual API testing.
    """
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway(body.provider)
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        outcome=body.outcome,
        rejection_reason=body.rejection_reason,
        transient_failures=body.transient_failures,
        next_ref=body.next_ref,
    )
    return GatewayConfigResponse(
        provider=body.provider,
        gateway=type(gateway).__name__,
        outcome=gateway.outcome,
        rejection_reason=gateway.rejection_reason,
        transient_failures=gateway.transient_failures,
    )
