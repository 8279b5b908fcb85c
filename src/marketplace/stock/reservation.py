"""Stock reservation service.

``reserve`` decrements a loaded ledger and ``release`` increments it; both
persist through the repository inside the caller's unit of work, so a
concurrent writer on the same product makes the write fail with
ExpectedVersionError rather than oversell. Callers own the "already
released" bookkeeping: the Order's ``stock_released`` flag is the source of
truth.
"""

from typing import Iterable

import structlog
from protean.utils.globals import current_domain

from marketplace.errors import InsufficientStock, LedgerInvariantViolation
from marketplace.stock.stock import StockLedger

logger = structlog.get_logger(__name__)


def _merge(lines: Iterable[tuple[str, int]]) -> dict[str, int]:
    merged: dict[str, int] = {}
    for product_id, quantity in lines:
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def reserve(product_id: str, quantity: int) -> None:
    """Reserve ``quantity`` units or raise InsufficientStock with no side effects."""
    repo = current_domain.repository_for(StockLedger)
    ledger = repo.current(product_id)
    if ledger is None:
        raise InsufficientStock(
            f"Insufficient stock for product {product_id}",
            product_id=product_id,
            requested=quantity,
            available=0,
        )
    ledger.reserve(quantity)
    repo.add(ledger)


def release(product_id: str, quantity: int) -> None:
    repo = current_domain.repository_for(StockLedger)
    ledger = repo.current(product_id)
    if ledger is None:
        raise LedgerInvariantViolation(
            f"No stock record to release into for product {product_id}",
            product_id=product_id,
        )
    ledger.release(quantity)
    repo.add(ledger)


def reserve_all(lines: Iterable[tuple[str, int]]) -> None:
    """Reserve every (product_id, quantity) pair, or none of them.

    When a later line fails, reservations already taken for earlier lines in
    the same call are released before InsufficientStock propagates.
    """
    taken: list[tuple[str, int]] = []
    try:
        for product_id, quantity in _merge(lines).items():
            reserve(product_id, quantity)
            taken.append((product_id, quantity))
    except InsufficientStock:
        for product_id, quantity in reversed(taken):
            release(product_id, quantity)
        logger.info(
            "Rolled back partial stock reservation",
            released=[product_id for product_id, _ in taken],
        )
        raise


def release_all(lines: Iterable[tuple[str, int]]) -> None:
    for product_id, quantity in _merge(lines).items():
        release(product_id, quantity)
