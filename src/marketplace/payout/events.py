"""Domain events for the PayoutEntry aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from marketplace.domain import marketplace


@marketplace.event(part_of="PayoutEntry")
class PayoutEntryRecorded:
    __version__ = 1

    entry_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    order_id = Identifier(required=True)
    gross_amount = Float(required=True)
    commission_amount = Float(required=True)
    net_amount = Float(required=True)
    recorded_at = DateTime(required=True)


@marketplace.event(part_of="PayoutEntry")
class PayoutApproved:
    __version__ = 1

    entry_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    approved_at = DateTime(required=True)


@marketplace.event(part_of="PayoutEntry")
class PayoutPaid:
    __version__ = 1

    entry_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    net_amount = Float(required=True)
    transaction_ref = String(max_length=255, required=True)
    paid_at = DateTime(required=True)


@marketplace.event(part_of="PayoutEntry")
class PayoutReversed:
    __version__ = 1

    entry_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(max_length=500)
    reversed_at = DateTime(required=True)
