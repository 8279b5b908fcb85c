"""Notification dispatch port — abstract interface for buyer/vendor notices.

Delivery (SMS, email) is an external collaborator. Dispatch is at-least-once:
the same notice may be sent twice, so every call carries an idempotency key
receivers use to drop repeats.
"""

from abc import ABC, abstractmethod


class NotificationKind:
    ORDER_PLACED = "order_placed"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_SHIPPED = "order_shipped"
    PAYMENT_REVIEW_REQUIRED = "payment_review_required"


class NotificationDispatcher(ABC):
    @abstractmethod
    def notify(self, kind: str, payload: dict, idempotency_key: str) -> bool:
        """Hand a notice to the delivery service.

        Returns False when the service refused it; dispatch is not retried
        here.
        """
        ...
