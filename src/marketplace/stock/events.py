"""Domain events for the StockLedger aggregate."""

from protean.fields import DateTime, Identifier, Integer

from marketplace.domain import marketplace


@marketplace.event(part_of="StockLedger")
class StockInitialized:
    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    initialized_at = DateTime(required=True)


@marketplace.event(part_of="StockLedger")
class StockRestocked:
    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    available = Integer(required=True)
    restocked_at = DateTime(required=True)
