"""Stock query port: abstract interface to the product catalogue's stock levels.

The order desk never owns stock. It only reads available quantities to
decide whether an order can ship.
"""

from abc import ABC, abstractmethod


class StockQuery(ABC):
    """Abstract interface for stock level lookups."""

    @abstractmethod
    def get_available(self, product_id: str) -> int | None:
        """Return the quantity available for ``product_id``.

        Returns:
            The available quantity, or None when the product is unknown.
        """
        ...
