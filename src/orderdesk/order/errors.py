"""Typed workflow errors.

Every error the order workflow surfaces derives from ``OrderWorkflowError``
so callers (the admin API, scripts) can branch on the class rather than on
message text. Like Protean's ``ValidationError`` each error carries a
``messages`` dict of field -> list of strings.
"""

from protean.exceptions import ProteanExceptionWithMessage


class OrderWorkflowError(ProteanExceptionWithMessage):
    """Base class for errors raised by the order workflow."""

    code = "order_workflow_error"


class OrderNotFound(OrderWorkflowError):
    """No order exists with the requested identifier."""

    code = "order_not_found"

    def __init__(self, order_id: str):
        self.order_id = str(order_id)
        super().__init__({"order_id": [f"Order {order_id} not found"]})


class InvalidTransition(OrderWorkflowError):
    """The requested target status is not reachable from the current one."""

    code = "invalid_transition"

    def __init__(self, current: str, target: str, detail: str | None = None):
        self.current = current
        self.target = target
        super().__init__({"status": [detail or f"Cannot transition from {current} to {target}"]})


class MissingShippingDetails(OrderWorkflowError):
    code = "missing_shipping_details"

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__({field: [f"{field} is required to ship an order"] for field in self.missing})


class InsufficientInventory(OrderWorkflowError):
    """Shipping was blocked by a stock shortfall.

    ``issues`` holds the full list of ``ShortfallIssue`` records so the
    caller can act on it without re-querying stock.
    """

    code = "insufficient_inventory"

    def __init__(self, issues: list):
        self.issues = list(issues)
        super().__init__(
            {"inventory": [f"{issue.product_name}: {issue.describe()}" for issue in self.issues]}
        )


class RefundExceedsBalance(OrderWorkflowError):
    """The refund would exceed the remaining refundable balance or an item's units."""

    code = "refund_exceeds_balance"

    def __init__(self, message: str, requested: float | None = None, remaining: float | None = None):
        self.requested = requested
        self.remaining = remaining
        super().__init__({"amount": [message]})


class InvalidRefundRequest(OrderWorkflowError):
    """The refund request is malformed: no items for a partial refund, unknown item, bad type."""

    code = "invalid_refund_request"

    def __init__(self, field: str, message: str):
        super().__init__({field: [message]})


class ConcurrentModification(OrderWorkflowError):
    """Another writer committed a change to the same order first."""

    code = "concurrent_modification"

    def __init__(self, order_id: str):
        self.order_id = str(order_id)
        super().__init__({"order_id": [f"Order {order_id} was modified concurrently; reload and retry"]})


class IdempotencyConflict(OrderWorkflowError):
    """An idempotency key was reused for a different operation on the same order."""

    code = "idempotency_conflict"

    def __init__(self, idempotency_key: str, recorded: str, requested: str):
        self.idempotency_key = idempotency_key
        super().__init__(
            {
                "idempotency_key": [
                    f"Key {idempotency_key} was already used for {recorded}, not {requested}"
                ]
            }
        )
