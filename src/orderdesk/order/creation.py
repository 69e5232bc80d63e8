"""Order placement: command and handler.

Orders arrive from the storefront checkout; from here on they only change
through the order workflow.
"""

import json

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from orderdesk.domain import orderdesk
from orderdesk.order.order import Order

logger = structlog.get_logger(__name__)


@orderdesk.command(part_of="Order")
class CreateOrder:
    customer_id = Identifier(required=True)
    customer_email = String(max_length=255)
    items = Text(required=True)  # JSON: list of {product_id, product_name, quantity, unit_price}
    shipping_address = Text()  # JSON: address dict
    payment_method = String(max_length=50)
    tax_total = Float(default=0.0)
    shipping_cost = Float(default=0.0)


@orderdesk.command_handler(part_of=Order)
class CreateOrderHandler:
    @handle(CreateOrder)
    def create_order(self, command):
        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        shipping_address = (
            json.loads(command.shipping_address)
            if isinstance(command.shipping_address, str)
            else command.shipping_address
        )

        order = Order.create(
            customer_id=command.customer_id,
            customer_email=command.customer_email,
            items_data=items_data,
            shipping_address=shipping_address,
            payment_method=command.payment_method,
            tax_total=command.tax_total or 0.0,
            shipping_cost=command.shipping_cost or 0.0,
        )
        current_domain.repository_for(Order).add(order)
        logger.info("Order placed", order_id=str(order.id), order_number=order.order_number, total=order.total)
        return str(order.id)
