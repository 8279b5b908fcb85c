"""Marketplace bounded context — orders, payments, stock and vendor payouts.

A single context owns every record that must change together when a payment
settles: the Order, its PaymentAttempts, the per-product StockLedger, the
vendor PayoutEntry and the WebhookReceipt dedup table. Keeping them in one
domain lets a reconciliation run inside a single unit of work.
"""

from protean.domain import Domain

from marketplace.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

logger = get_logger(__name__)

# Domain Composition Root
marketplace = Domain(name="marketplace")
