"""Refund calculator: computes how much to give back for a refund request.

Pure functions over an order's current state: nothing here mutates the
order. The Order aggregate applies a computed refund via ``apply_refund``.

Full refunds close out whatever remains (``total - refunded_amount``);
partial refunds are priced from the line items' order-time unit prices
and may not refund more units of a line than remain unrefunded.
"""

from dataclasses import dataclass, field
from enum import Enum

from orderdesk.order.errors import InvalidRefundRequest, RefundExceedsBalance


class RefundType(Enum):
    FULL = "Full"
    PARTIAL = "Partial"


class RefundReason(Enum):
    CUSTOMER_REQUEST = "Customer_Request"
    DAMAGED = "Damaged"
    WRONG_ITEM = "Wrong_Item"
    NOT_AS_DESCRIBED = "Not_As_Described"
    RETURNED = "Returned"
    OTHER = "Other"


def to_cents(value: float) -> float:
    """Round a monetary amount to whole cents."""
    return round(float(value), 2)


@dataclass(frozen=True)
class RefundLine:
    """A request to refund ``quantity`` units of one line item."""

    item_id: str
    quantity: int


@dataclass(frozen=True)
class RefundRequest:
    refund_type: RefundType
    reason: RefundReason
    lines: tuple[RefundLine, ...] = ()

    @classmethod
    def full(cls, reason: RefundReason) -> "RefundRequest":
        return cls(refund_type=RefundType.FULL, reason=reason)

    @classmethod
    def partial(cls, reason: RefundReason, items: list[dict]) -> "RefundRequest":
        """Build a partial request from ``[{"item_id": ..., "quantity": ...}]``.

        Raises:
            InvalidRefundRequest: an entry is not a mapping, has no
                ``item_id``, or has a quantity that is not a whole number.
        """
        lines = []
        for entry in items:
            if not isinstance(entry, dict):
                raise InvalidRefundRequest("items", f"Refund item {entry!r} must be an object")
            item_id = entry.get("item_id")
            if item_id is None or not str(item_id).strip():
                raise InvalidRefundRequest("items", "Each refund item needs an item_id")

            quantity = entry.get("quantity", 1)
            if isinstance(quantity, bool):
                quantity = None
            try:
                quantity = int(quantity)
            except (TypeError, ValueError):
                raise InvalidRefundRequest(
                    "items", f"Refund quantity for item {item_id} must be a whole number"
                ) from None
            lines.append(RefundLine(item_id=str(item_id), quantity=quantity))
        return cls(refund_type=RefundType.PARTIAL, reason=reason, lines=tuple(lines))


@dataclass(frozen=True)
class RefundLineDetail:
    item_id: str
    product_id: str
    product_name: str
    quantity: int
    amount: float

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class RefundComputation:
    """The validated outcome of a refund request."""

    amount: float
    lines: tuple[RefundLineDetail, ...] = field(default_factory=tuple)


def _line_detail(item, quantity: int) -> RefundLineDetail:
    return RefundLineDetail(
        item_id=str(item.id),
        product_id=str(item.product_id),
        product_name=item.product_name,
        quantity=quantity,
        amount=to_cents(item.unit_price * quantity),
    )


def remaining_balance(order) -> float:
    return to_cents(order.total - (order.refunded_amount or 0.0))


def compute_refund(order, request: RefundRequest) -> RefundComputation:
    """Compute and validate the amount to refund for ``request``.

    Raises:
        InvalidRefundRequest: a partial refund without lines, or naming an
            item that is not on the order.
        RefundExceedsBalance: nothing left to refund, a line refunded beyond
            its remaining units, or an amount above the remaining balance.
    """
    balance = remaining_balance(order)

    if request.refund_type == RefundType.FULL:
        if balance <= 0:
            raise RefundExceedsBalance("Order has no remaining refundable balance", requested=0.0, remaining=balance)
        # Every unrefunded unit goes back; the amount also covers tax and shipping
        return RefundComputation(
            amount=balance,
            lines=tuple(
                _line_detail(item, item.refundable_quantity)
                for item in (order.items or [])
                if item.refundable_quantity > 0
            ),
        )

    if not request.lines:
        raise InvalidRefundRequest("items", "Items are required for partial refund")

    # Merge repeated references to the same line
    quantities: dict[str, int] = {}
    for line in request.lines:
        if line.quantity < 1:
            raise InvalidRefundRequest("items", f"Refund quantity for item {line.item_id} must be at least 1")
        quantities[line.item_id] = quantities.get(line.item_id, 0) + line.quantity

    details = []
    for item_id, quantity in quantities.items():
        item = order.find_item(item_id)
        if item is None:
            raise InvalidRefundRequest("items", f"Item {item_id} not found")
        if quantity > item.refundable_quantity:
            raise RefundExceedsBalance(
                f"Cannot refund {quantity} unit(s) of {item.product_name}; "
                f"only {item.refundable_quantity} remain unrefunded"
            )
        details.append(_line_detail(item, quantity))

    amount = to_cents(sum(detail.amount for detail in details))
    if amount > balance:
        raise RefundExceedsBalance(
            f"Refund amount {amount:.2f} exceeds remaining balance {balance:.2f}",
            requested=amount,
            remaining=balance,
        )
    return RefundComputation(amount=amount, lines=tuple(details))
