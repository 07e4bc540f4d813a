from __future__ import annotations

import logging
from typing import Any

from town_sim.errors import NotForSale
from town_sim.utils.types import ItemType
from town_sim.world.catalog import Catalog
from town_sim.world.inventory import InventoryLedger


class Shop:
    """General store: fixed price tables and a shared stock ledger.

    The shop never mutates a resident itself; ActionApplier moves goods
    and money under both parties' locks.
    """

    def __init__(self, catalog: Catalog, stock: InventoryLedger | None = None) -> None:
        self.catalog = catalog
        self.buy_prices: dict[ItemType, int] = dict(catalog.shop_buy_prices)
        self.sell_prices: dict[ItemType, int] = dict(catalog.shop_sell_prices)
        self.stock = stock or InventoryLedger()
        self.logger = logging.getLogger("town_sim.shop")

    def quote_buy(self, item: ItemType, quantity: int) -> int:
        """Total a resident pays for ``quantity`` units."""
        price = self.buy_prices.get(item)
        if not price:
            raise NotForSale(item.value)
        return price * quantity

    def quote_sell(self, item: ItemType, quantity: int) -> int:
        """Total the shop pays a resident for ``quantity`` units."""
        price = self.sell_prices.get(item)
        if not price:
            raise NotForSale(item.value)
        return price * quantity

    def restock(self, level: int) -> dict[ItemType, int]:
        """Tops every buyable item up to ``level`` units. Returns what was added."""
        added: dict[ItemType, int] = {}
        with self.stock.lock:
            for item in self.buy_prices:
                missing = level - self.stock.count(item)
                if missing > 0:
                    self.stock.add(item, missing)
                    added[item] = missing
        if added:
            self.logger.debug("Shop restocked: %s", {k.value: v for k, v in added.items()})
        return added

    def to_dict(self) -> dict[str, Any]:
        return {"stock": self.stock.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any], catalog: Catalog) -> "Shop":
        return cls(catalog, InventoryLedger.from_dict(data.get("stock", {})))
