"""Stock administration — commands and handler for seeding and restocking."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.stock.stock import StockLedger


@marketplace.command(part_of="StockLedger")
class InitializeStock:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=0)


@marketplace.command(part_of="StockLedger")
class Restock:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@marketplace.command_handler(part_of=StockLedger)
class StockManagementHandler:
    @handle(InitializeStock)
    def initialize_stock(self, command: InitializeStock):
        repo = current_domain.repository_for(StockLedger)
        if repo.current(str(command.product_id)) is not None:
            raise ValidationError({"product_id": ["Stock is already initialized for this product"]})

        ledger = StockLedger.initialize(str(command.product_id), command.quantity)
        repo.add(ledger)
        return ledger.available

    @handle(Restock)
    def restock(self, command: Restock):
        repo = current_domain.repository_for(StockLedger)
        ledger = repo.get(str(command.product_id))
        ledger.restock(command.quantity)
        repo.add(ledger)
        return ledger.available
