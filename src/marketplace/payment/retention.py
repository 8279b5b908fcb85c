"""Webhook receipt retention — purge receipts past the retention window."""

from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.fields import DateTime
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.payment.receipt import WebhookReceipt

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="WebhookReceipt")
class PurgeWebhookReceipts:
    # Defaults to now minus the configured retention window
    older_than = DateTime()


@marketplace.command_handler(part_of=WebhookReceipt)
class ReceiptRetentionHandler:
    @handle(PurgeWebhookReceipts)
    def purge(self, command: PurgeWebhookReceipts) -> int:
        cutoff = command.older_than or datetime.now(UTC) - timedelta(days=get_settings().receipt_retention_days)
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=UTC)
        purged = current_domain.repository_for(WebhookReceipt).purge_older_than(cutoff)
        if purged:
            logger.info("Webhook receipts purged", count=purged, cutoff=cutoff.isoformat())
        return purged
