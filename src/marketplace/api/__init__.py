"""Marketplace API package."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketplace.api.routes import (
    gateway_router,
    order_router,
    payment_router,
    payout_router,
    stock_router,
    webhook_router,
)
from marketplace.errors import MarketplaceError

routers = [order_router, payment_router, webhook_router, payout_router, stock_router, gateway_router]


def register_error_handlers(app: FastAPI) -> None:
    """Render MarketplaceError subclasses with their family's HTTP status."""

    @app.exception_handler(MarketplaceError)
    async def _marketplace_error(request: Request, exc: MarketplaceError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


__all__ = [
    "gateway_router",
    "order_router",
    "payment_router",
    "payout_router",
    "register_error_handlers",
    "routers",
    "stock_router",
    "webhook_router",
]
