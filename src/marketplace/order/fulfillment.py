"""Fulfillment — ship and deliver paid orders."""

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class ShipOrder:
    order_id = Identifier(required=True)


@marketplace.command(part_of="Order")
class DeliverOrder:
    order_id = Identifier(required=True)


@marketplace.command_handler(part_of=Order)
class FulfillmentHandler:
    @handle(ShipOrder)
    def ship_order(self, command: ShipOrder):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.ship()
        repo.add(order)
        logger.info("Order shipped", order_id=str(order.id))

    @handle(DeliverOrder)
    def deliver_order(self, command: DeliverOrder):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.deliver()
        repo.add(order)
        logger.info("Order delivered", order_id=str(order.id))
