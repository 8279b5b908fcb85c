"""Payout disbursement — commands and handler for approving and paying entries.

Disbursement itself (bank or mobile-money transfer) happens outside the
engine; these commands only record its outcome.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.payout.payout import PayoutEntry

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="PayoutEntry")
class ApprovePayout:
    entry_id = Identifier(required=True)


@marketplace.command(part_of="PayoutEntry")
class MarkPayoutPaid:
    entry_id = Identifier(required=True)
    transaction_ref = String(required=True, max_length=255)


@marketplace.command_handler(part_of=PayoutEntry)
class PayoutDisbursementHandler:
    @handle(ApprovePayout)
    def approve(self, command: ApprovePayout):
        repo = current_domain.repository_for(PayoutEntry)
        entry = repo.get(command.entry_id)
        entry.approve()
        repo.add(entry)

    @handle(MarkPayoutPaid)
    def mark_paid(self, command: MarkPayoutPaid):
        repo = current_domain.repository_for(PayoutEntry)
        entry = repo.get(command.entry_id)
        entry.mark_paid(command.transaction_ref)
        repo.add(entry)
        logger.info(
            "Payout marked paid",
            entry_id=str(entry.id),
            vendor_id=str(entry.vendor_id),
            net_amount=entry.net_amount,
        )
