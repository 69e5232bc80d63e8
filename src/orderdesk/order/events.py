"""Order domain events: immutable facts about order state changes.

All events are past tense, versioned, and carry enough data for
downstream consumers (notifications, reporting) without reloading the order.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from orderdesk.domain import orderdesk


@orderdesk.event(part_of="Order")
class OrderCreated:
    """A new order was placed and is awaiting processing."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of line item dicts
    total = Float(required=True)
    created_at = DateTime(required=True)


@orderdesk.event(part_of="Order")
class OrderProcessingStarted:
    """Payment was confirmed and the order moved into processing."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    reason = String(required=True)
    actor = String()
    started_at = DateTime(required=True)


@orderdesk.event(part_of="Order")
class OrderCancelled:
    __version__ = "v1"

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    actor = String()
    cancelled_at = DateTime(required=True)


@orderdesk.event(part_of="Order")
class OrderShipped:
    """The order left the warehouse with the given carrier details."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    carrier = String(required=True)
    tracking_number = String(required=True)
    estimated_delivery = DateTime()
    item_count = Integer(required=True)
    shipped_at = DateTime(required=True)


@orderdesk.event(part_of="Order")
class OrderCompleted:
    __version__ = "v1"

    order_id = Identifier(required=True)
    delivered_at = DateTime()
    completed_at = DateTime(required=True)


@orderdesk.event(part_of="Order")
class OrderRefunded:
    """A full or partial refund was applied to the order."""

    __version__ = "v1"

    order_id = Identifier(required=True)
    transaction_id = String(required=True)
    refund_type = String(required=True)
    reason_code = String(required=True)
    amount = Float(required=True)
    refunded_amount = Float(required=True)
    resulting_status = String(required=True)
    items = Text()  # JSON list of refunded line details
    refunded_at = DateTime(required=True)
