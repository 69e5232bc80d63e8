"""Order desk bounded context: order fulfillment and refund workflow.

Owns the Order aggregate and its state machine, the inventory guard that
gates shipping, the refund calculator, and the dispatcher that records
carrier details. Stock levels and customer notifications are external
collaborators reached through ports.
"""

from protean.domain import Domain

from orderdesk.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

orderdesk = Domain(name="orderdesk")
