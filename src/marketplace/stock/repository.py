"""Repository for StockLedger."""

from marketplace.domain import marketplace
from marketplace.stock.stock import StockLedger


@marketplace.repository(part_of=StockLedger)
class StockLedgerRepository:
    def current(self, product_id: str) -> StockLedger | None:
        """The stored ledger, or None when the product has no stock record."""
        results = self._dao.query.filter(product_id=product_id).all().items
        return results[0] if results else None
