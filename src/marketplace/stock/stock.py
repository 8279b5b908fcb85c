"""StockLedger aggregate — available units of one product.

Every change is made on a loaded ledger and persisted with ``repo.add``.
Protean's ``_version`` check rejects a writer whose ledger went stale while
it was deciding, so two buyers racing for the last unit cannot both commit;
the loser's command is re-run against the fresh ledger (see
``marketplace.shared.dispatch``).
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer

from marketplace.domain import marketplace
from marketplace.errors import InsufficientStock
from marketplace.stock.events import StockInitialized, StockRestocked


@marketplace.aggregate
class StockLedger:
    product_id = Identifier(identifier=True)
    available = Integer(default=0, min_value=0)
    updated_at = DateTime()

    @classmethod
    def initialize(cls, product_id: str, quantity: int) -> "StockLedger":
        if quantity < 0:
            raise ValidationError({"quantity": ["Initial stock cannot be negative"]})

        now = datetime.now(UTC)
        ledger = cls(product_id=product_id, available=quantity, updated_at=now)
        ledger.raise_(
            StockInitialized(
                product_id=product_id,
                quantity=quantity,
                initialized_at=now,
            )
        )
        return ledger

    def reserve(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Reserved quantity must be positive"]})
        if self.available < quantity:
            raise InsufficientStock(
                f"Insufficient stock for product {self.product_id}",
                product_id=str(self.product_id),
                requested=quantity,
                available=self.available,
            )

        self.available = self.available - quantity
        self.updated_at = datetime.now(UTC)

    def release(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Released quantity must be positive"]})

        self.available = self.available + quantity
        self.updated_at = datetime.now(UTC)

    def restock(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Restock quantity must be positive"]})

        now = datetime.now(UTC)
        self.available = self.available + quantity
        self.updated_at = now
        self.raise_(
            StockRestocked(
                product_id=str(self.product_id),
                quantity=quantity,
                available=self.available,
                restocked_at=now,
            )
        )
