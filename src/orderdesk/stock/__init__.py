"""Stock query adapters: read-only access to the catalogue's stock levels."""

import os

_stock_instance = None


def get_stock_query():
    """Return the configured stock query adapter (singleton).

    Uses FakeStockLevels by default. Select another adapter via the
    STOCK_ADAPTER environment variable.
    """
    global _stock_instance
    if _stock_instance is None:
        adapter = os.environ.get("STOCK_ADAPTER", "fake")
        if adapter == "fake":
            from orderdesk.stock.fake_adapter import FakeStockLevels

            _stock_instance = FakeStockLevels()
        else:
            raise ValueError(f"Unknown stock adapter: {adapter}")
    return _stock_instance


def reset_stock_query():
    """Reset the stock query singleton (useful for testing)."""
    global _stock_instance
    _stock_instance = None
