from __future__ import annotations

import threading
from typing import Any, Iterator

from town_sim.errors import InsufficientInventory
from town_sim.utils.types import ItemType


class InventoryLedger:
    """Item counts; zero entries are pruned, counts never go negative."""

    def __init__(self, items: dict[ItemType, int] | None = None) -> None:
        self._items: dict[ItemType, int] = {}
        self.lock = threading.RLock()
        for item, qty in (items or {}).items():
            self.add(item, qty)

    def add(self, item: ItemType, quantity: int = 1) -> int:
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        with self.lock:
            self._items[item] = self._items.get(item, 0) + quantity
            return self._items[item]

    def remove(self, item: ItemType, quantity: int = 1) -> int:
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        with self.lock:
            current = self._items.get(item, 0)
            if current < quantity:
                raise InsufficientInventory(item.value, quantity, current)
            remaining = current - quantity
            if remaining == 0:
                del self._items[item]
            else:
                self._items[item] = remaining
            return remaining

    def has(self, item: ItemType, quantity: int = 1) -> bool:
        with self.lock:
            return self._items.get(item, 0) >= quantity

    def count(self, item: ItemType) -> int:
        with self.lock:
            return self._items.get(item, 0)

    def total_count(self) -> int:
        with self.lock:
            return sum(self._items.values())

    def items(self) -> dict[ItemType, int]:
        with self.lock:
            return dict(self._items)

    def __iter__(self) -> Iterator[ItemType]:
        return iter(self.items())

    def __len__(self) -> int:
        with self.lock:
            return len(self._items)

    def to_dict(self) -> dict[str, int]:
        with self.lock:
            return {item.value: qty for item, qty in sorted(self._items.items())}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InventoryLedger":
        return cls({ItemType(name): int(qty) for name, qty in data.items() if int(qty) > 0})
