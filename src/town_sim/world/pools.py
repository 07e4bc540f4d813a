from __future__ import annotations

import bisect
import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Generic, Hashable, TypeVar

from town_sim.errors import Depleted, EmptyPoolError

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


class WeightedPool(Generic[T]):
    """Draws items with probability proportional to their weight."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._items: list[T] = []
        self._cumulative: list[float] = []
        self._total = 0.0

    def add(self, item: T, weight: float) -> None:
        if weight <= 0:
            raise ValueError(f"weight must be positive, got {weight}")
        self._total += weight
        self._items.append(item)
        self._cumulative.append(self._total)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def total_weight(self) -> float:
        return self._total

    def validate(self) -> None:
        if not self._items:
            raise EmptyPoolError("weighted pool has no entries")

    def draw(self) -> T:
        self.validate()
        point = self._rng.random() * self._total
        idx = bisect.bisect_right(self._cumulative, point)
        # random() < 1.0, but float rounding on the sum can land on the edge
        return self._items[min(idx, len(self._items) - 1)]


@dataclass
class ResourceSlot:
    count: int
    max_capacity: int
    replenish: int
    weight: float


class ResourcePool(Generic[K]):
    """Shared depletable resource for a production site (mine, fishing spot).

    Every mutation takes the pool lock once, so check-and-decrement is a
    single critical section and no unit can be granted twice.
    """

    def __init__(
        self,
        site: str,
        slots: dict[K, ResourceSlot],
        refresh_interval: float,
        last_refresh_time: float = 0.0,
    ) -> None:
        if refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        self.site = site
        self.refresh_interval = refresh_interval
        self.last_refresh_time = last_refresh_time
        self._slots = dict(slots)
        self._lock = threading.RLock()
        self._logger = logging.getLogger("town_sim.pools")
        for kind, slot in self._slots.items():
            if slot.count > slot.max_capacity or slot.count < 0:
                raise ValueError(f"slot {kind!r} count {slot.count} outside [0, {slot.max_capacity}]")

    @classmethod
    def from_weights(
        cls,
        site: str,
        weights: dict[K, float],
        capacity: dict[K, int] | int,
        refresh_interval: float,
        replenish: dict[K, int] | int | None = None,
        now: float = 0.0,
    ) -> "ResourcePool[K]":
        slots: dict[K, ResourceSlot] = {}
        for kind, weight in weights.items():
            cap = capacity[kind] if isinstance(capacity, dict) else capacity
            if replenish is None:
                rep = cap
            elif isinstance(replenish, dict):
                rep = replenish.get(kind, cap)
            else:
                rep = replenish
            slots[kind] = ResourceSlot(count=cap, max_capacity=cap, replenish=rep, weight=weight)
        return cls(site, slots, refresh_interval, last_refresh_time=now)

    def validate(self) -> None:
        if not self._slots or all(s.weight <= 0 for s in self._slots.values()):
            raise EmptyPoolError(f"resource pool {self.site!r} has no drawable kinds")

    def count(self, kind: K) -> int:
        with self._lock:
            slot = self._slots.get(kind)
            return slot.count if slot else 0

    def counts(self) -> dict[K, int]:
        with self._lock:
            return {kind: slot.count for kind, slot in self._slots.items()}

    def kinds(self) -> list[K]:
        return list(self._slots)

    def try_draw(self, kind: K) -> K:
        with self._lock:
            slot = self._slots.get(kind)
            if slot is None or slot.count <= 0:
                raise Depleted(str(getattr(kind, "value", kind)))
            slot.count -= 1
            return kind

    def draw_any(self, rng: random.Random) -> K:
        """Weighted draw over kinds that still have units left."""
        with self._lock:
            pool: WeightedPool[K] = WeightedPool(rng)
            for kind, slot in self._slots.items():
                if slot.count > 0 and slot.weight > 0:
                    pool.add(kind, slot.weight)
            if not len(pool):
                raise Depleted()
            return self.try_draw(pool.draw())

    def refresh(self, now: float) -> int:
        """Replenishes once per full elapsed interval. Returns the interval count."""
        with self._lock:
            elapsed = now - self.last_refresh_time
            if elapsed < self.refresh_interval:
                return 0
            intervals = int(elapsed // self.refresh_interval)
            for slot in self._slots.values():
                slot.count = min(slot.max_capacity, slot.count + slot.replenish * intervals)
            self.last_refresh_time += intervals * self.refresh_interval
        self._logger.debug(
            "pool refreshed site=%s intervals=%d last_refresh=%.1f",
            self.site, intervals, self.last_refresh_time,
        )
        return intervals

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "site": self.site,
                "refresh_interval": self.refresh_interval,
                "last_refresh_time": self.last_refresh_time,
                "slots": {
                    str(getattr(kind, "value", kind)): {
                        "count": slot.count,
                        "max_capacity": slot.max_capacity,
                        "replenish": slot.replenish,
                        "weight": slot.weight,
                    }
                    for kind, slot in self._slots.items()
                },
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any], kind_type: Any = str) -> "ResourcePool":
        slots = {
            kind_type(name): ResourceSlot(
                count=int(raw["count"]),
                max_capacity=int(raw["max_capacity"]),
                replenish=int(raw["replenish"]),
                weight=float(raw["weight"]),
            )
            for name, raw in data["slots"].items()
        }
        return cls(
            site=str(data["site"]),
            slots=slots,
            refresh_interval=float(data["refresh_interval"]),
            last_refresh_time=float(data["last_refresh_time"]),
        )
