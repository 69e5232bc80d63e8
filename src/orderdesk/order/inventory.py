"""Inventory guard: decides whether an order's line items can ship.

A pure read-and-compare step: each line's quantity is compared with the
stock reported by the ``StockQuery`` port. Nothing is reserved or
deducted, so the answer is best-effort and must be re-evaluated on every
shipping attempt.
"""

from dataclasses import dataclass, field
from enum import Enum

import structlog

from orderdesk.stock import get_stock_query

logger = structlog.get_logger(__name__)


class ShortfallKind(Enum):
    INSUFFICIENT_STOCK = "insufficient_stock"
    PRODUCT_NOT_FOUND = "product_not_found"


@dataclass(frozen=True)
class ShortfallIssue:
    """A line item that cannot be covered by current stock."""

    item_id: str
    product_id: str
    product_name: str
    requested: int
    available: int
    issue: ShortfallKind = ShortfallKind.INSUFFICIENT_STOCK

    def describe(self) -> str:
        if self.issue == ShortfallKind.PRODUCT_NOT_FOUND:
            return "Product not found"
        return f"Insufficient stock: requested {self.requested}, available {self.available}"

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "requested": self.requested,
            "available": self.available,
            "issue": self.issue.value,
        }


@dataclass(frozen=True)
class StockCheck:
    """Per-line stock report, for every line whether short or not."""

    item_id: str
    product_id: str
    product_name: str
    requested: int
    available: int
    sufficient: bool

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "requested": self.requested,
            "available": self.available,
            "sufficient": self.sufficient,
        }


@dataclass(frozen=True)
class InventoryCheck:
    can_ship: bool
    issues: list[ShortfallIssue] = field(default_factory=list)
    checks: list[StockCheck] = field(default_factory=list)


def check_inventory(order, stock=None) -> InventoryCheck:
    """Compare every line item of ``order`` against available stock.

    A line is short when its own quantity exceeds the stock reported for
    its product. Each product is looked up once.
    """
    stock = stock or get_stock_query()

    available_by_product: dict[str, int | None] = {}
    issues = []
    checks = []
    for item in order.items or []:
        product_id = str(item.product_id)
        if product_id not in available_by_product:
            available_by_product[product_id] = stock.get_available(product_id)
        available = available_by_product[product_id]

        if available is None:
            issue = ShortfallKind.PRODUCT_NOT_FOUND
            available = 0
        elif item.quantity > available:
            issue = ShortfallKind.INSUFFICIENT_STOCK
        else:
            issue = None

        checks.append(
            StockCheck(
                item_id=str(item.id),
                product_id=product_id,
                product_name=item.product_name,
                requested=item.quantity,
                available=available,
                sufficient=issue is None,
            )
        )
        if issue is not None:
            issues.append(
                ShortfallIssue(
                    item_id=str(item.id),
                    product_id=product_id,
                    product_name=item.product_name,
                    requested=item.quantity,
                    available=available,
                    issue=issue,
                )
            )

    if issues:
        logger.info(
            "Inventory shortfall detected",
            order_id=str(order.id),
            short_items=[i.product_id for i in issues],
        )

    return InventoryCheck(can_ship=not issues, issues=issues, checks=checks)
