from __future__ import annotations

import logging
import random
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any

from town_sim.errors import InsufficientFunds, NotEdible
from town_sim.utils.types import ItemType, Location, MemoryRecord
from town_sim.world.catalog import Catalog
from town_sim.world.inventory import InventoryLedger

MAX_HUNGER = 100.0

logger = logging.getLogger("town_sim.agents")


def _clamp(value: float, low: float = 0.0, high: float = MAX_HUNGER) -> float:
    return max(low, min(high, value))


def new_agent_id() -> str:
    return f"char_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class TimeUpdate:
    hunger_before: float
    hunger_after: float
    age: float
    died: bool = False


@dataclass(frozen=True)
class Relocation:
    old: Location
    new: Location
    redundant: bool = False


@dataclass
class AgentState:
    agent_id: str
    name: str
    age: float = 18.0
    hunger: float = MAX_HUNGER
    money: int = 100
    location: Location = Location.HOME
    current_action: str | None = None
    busy_until: float = 0.0
    is_alive: bool = True
    cause_of_death: str | None = None
    inventory: InventoryLedger = field(default_factory=InventoryLedger)
    memories: list[MemoryRecord] = field(default_factory=list)
    memory_limit: int = 20
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        name: str,
        rng: random.Random,
        starting_money: int = 100,
        min_age: float = 18.0,
        max_age: float = 25.0,
        memory_limit: int = 20,
    ) -> "AgentState":
        state = cls(
            agent_id=new_agent_id(),
            name=name,
            age=min_age + rng.random() * (max_age - min_age),
            money=starting_money,
            memory_limit=memory_limit,
        )
        logger.info("Resident created: name=%s id=%s age=%.1f", name, state.agent_id, state.age)
        return state

    # ---- time ----

    def advance_time(
        self,
        elapsed: float,
        decay_per_minute: float = 0.5,
        seconds_per_age_year: float = 3600.0,
    ) -> TimeUpdate:
        """Decays hunger and ages the resident. Death at hunger 0 is terminal."""
        with self.lock:
            if not self.is_alive:
                return TimeUpdate(self.hunger, self.hunger, self.age)
            if elapsed < 0:
                raise ValueError("elapsed time must be non-negative")
            before = self.hunger
            self.hunger = _clamp(self.hunger - decay_per_minute * (elapsed / 60.0))
            self.age += elapsed / seconds_per_age_year
            died = False
            if self.hunger <= 0.0:
                self.hunger = 0.0
                self.is_alive = False
                self.current_action = None
                self.cause_of_death = "starvation"
                died = True
                logger.info("Resident died: id=%s name=%s cause=starvation", self.agent_id, self.name)
            return TimeUpdate(before, self.hunger, self.age, died=died)

    # ---- needs ----

    def eat(self, item: ItemType, catalog: Catalog) -> float:
        """Consumes one unit and returns the new hunger value."""
        restore = catalog.hunger_restore.get(item, 0.0)
        if restore <= 0.0:
            raise NotEdible(item.value)
        with self.lock:
            self.inventory.remove(item, 1)
            self.hunger = _clamp(self.hunger + restore)
            return self.hunger

    def relocate(self, new_location: Location) -> Relocation:
        with self.lock:
            if self.location == new_location:
                logger.debug("Redundant move: id=%s already at %s", self.agent_id, new_location.value)
                return Relocation(self.location, new_location, redundant=True)
            old = self.location
            self.location = new_location
            return Relocation(old, new_location)

    # ---- money ----

    def earn(self, amount: int) -> int:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        with self.lock:
            self.money += amount
            return self.money

    def spend(self, amount: int) -> int:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        with self.lock:
            if self.money < amount:
                raise InsufficientFunds(amount, self.money)
            self.money -= amount
            return self.money

    # ---- memory ----

    def remember(self, text: str, importance: float, time: float, source_agent: str | None = None) -> None:
        with self.lock:
            self.memories.append(MemoryRecord(text, importance, time, source_agent))
            if len(self.memories) > self.memory_limit:
                # least important first, oldest among equals
                victim = min(range(len(self.memories)), key=lambda i: (self.memories[i].importance, self.memories[i].time))
                del self.memories[victim]

    # ---- views ----

    def snapshot(self) -> dict[str, Any]:
        """Immutable-by-copy view used to build decision contexts."""
        with self.lock:
            return {
                "agent_id": self.agent_id,
                "name": self.name,
                "age": round(self.age, 2),
                "hunger": round(self.hunger, 2),
                "money": self.money,
                "location": self.location.value,
                "inventory": self.inventory.to_dict(),
                "memories": [m.text for m in sorted(self.memories, key=lambda m: m.time)[-5:]],
            }

    def status_line(self) -> str:
        return (
            f"{self.name} age={int(self.age)} hunger={self.hunger:.1f} "
            f"money={self.money} location={self.location.value}"
        )

    def to_dict(self) -> dict[str, Any]:
        with self.lock:
            return {
                "agent_id": self.agent_id,
                "name": self.name,
                "age": self.age,
                "hunger": self.hunger,
                "money": self.money,
                "location": self.location.value,
                "current_action": self.current_action,
                "busy_until": self.busy_until,
                "is_alive": self.is_alive,
                "cause_of_death": self.cause_of_death,
                "inventory": self.inventory.to_dict(),
                "memory_limit": self.memory_limit,
                "memories": [
                    {"text": m.text, "importance": m.importance, "time": m.time, "source_agent": m.source_agent}
                    for m in self.memories
                ],
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentState":
        return cls(
            agent_id=str(data["agent_id"]),
            name=str(data["name"]),
            age=float(data["age"]),
            hunger=float(data["hunger"]),
            money=int(data["money"]),
            location=Location(data["location"]),
            current_action=data.get("current_action"),
            busy_until=float(data.get("busy_until", 0.0)),
            is_alive=bool(data["is_alive"]),
            cause_of_death=data.get("cause_of_death"),
            inventory=InventoryLedger.from_dict(data.get("inventory", {})),
            memories=[MemoryRecord(**m) for m in data.get("memories", [])],
            memory_limit=int(data.get("memory_limit", 20)),
        )
