"""Fake stock levels: in-memory stock table for testing and development."""

from orderdesk.stock.port import StockQuery


class FakeStockLevels(StockQuery):
    """Stock table held in memory; unknown products report as not found."""

    def __init__(self):
        self.levels: dict[str, int] = {}
        self.lookups: list[str] = []

    def set_level(self, product_id: str, quantity: int) -> None:
        self.levels[str(product_id)] = quantity

    def remove(self, product_id: str) -> None:
        self.levels.pop(str(product_id), None)

    def get_available(self, product_id: str) -> int | None:
        self.lookups.append(str(product_id))
        return self.levels.get(str(product_id))

    def reset(self):
        """Clear stock levels and recorded lookups (useful between tests)."""
        self.levels.clear()
        self.lookups.clear()
