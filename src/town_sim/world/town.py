from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any

from town_sim.agents.registry import AgentRegistry
from town_sim.agents.state import AgentState
from town_sim.config.settings import SimulationSettings
from town_sim.social.ballot import Ballot
from town_sim.social.relationships import RelationshipGraph
from town_sim.utils.types import ItemType, Location
from town_sim.world.catalog import Catalog
from town_sim.world.farm import FarmPlots
from town_sim.world.pools import ResourcePool
from town_sim.world.shop import Shop

logger = logging.getLogger("town_sim.world")

SHOP_STOCK_LEVEL = 40
MINE_CAPACITY = 12
FISH_CAPACITY = 15


@dataclass
class Town:
    """All shared world state, owned in one place and addressed by id."""

    registry: AgentRegistry
    relationships: RelationshipGraph
    shop: Shop
    farm: FarmPlots
    pools: dict[Location, ResourcePool] = field(default_factory=dict)
    ballot: Ballot | None = None

    @classmethod
    def build(
        cls,
        catalog: Catalog,
        sim: SimulationSettings,
        now: float = 0.0,
    ) -> "Town":
        shop = Shop(catalog)
        shop.restock(SHOP_STOCK_LEVEL)
        town = cls(
            registry=AgentRegistry(),
            relationships=RelationshipGraph(memory_limit=sim.relationship_memory_limit),
            shop=shop,
            farm=FarmPlots(),
            pools={
                Location.MINE: ResourcePool.from_weights(
                    "mine", catalog.mineral_weights, MINE_CAPACITY,
                    refresh_interval=sim.pool_refresh_interval_s, now=now,
                ),
                Location.FISHING_SPOT: ResourcePool.from_weights(
                    "fishing_spot", catalog.fish_weights, FISH_CAPACITY,
                    refresh_interval=sim.pool_refresh_interval_s, now=now,
                ),
            },
        )
        town.validate()
        return town

    def validate(self) -> None:
        """Fails fast on misconfigured pools instead of at draw time."""
        for pool in self.pools.values():
            pool.validate()

    def populate(self, names: list[str], rng: random.Random, sim: SimulationSettings) -> list[AgentState]:
        created = []
        for name in names:
            state = AgentState.create(
                name,
                rng,
                starting_money=sim.starting_money,
                min_age=sim.min_start_age,
                max_age=sim.max_start_age,
                memory_limit=sim.memory_limit,
            )
            created.append(self.registry.add(state))
        return created

    def remove_agent(self, agent_id: str) -> AgentState:
        """Administrative removal; death alone never removes a resident."""
        state = self.registry.remove(agent_id)
        self.relationships.forget_agent(agent_id)
        self.farm.clear(agent_id)
        logger.info("Resident removed: id=%s name=%s", agent_id, state.name)
        return state

    # ---- persistence contract ----

    def to_dict(self) -> dict[str, Any]:
        return {
            "agents": [s.to_dict() for s in sorted(self.registry, key=lambda s: s.agent_id)],
            "relationships": self.relationships.to_dict(),
            "shop": self.shop.to_dict(),
            "farm": self.farm.to_dict(),
            "pools": {loc.value: pool.to_dict() for loc, pool in self.pools.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], catalog: Catalog) -> "Town":
        registry = AgentRegistry()
        for raw in data.get("agents", []):
            registry.add(AgentState.from_dict(raw))
        town = cls(
            registry=registry,
            relationships=RelationshipGraph.from_dict(data.get("relationships", {})),
            shop=Shop.from_dict(data.get("shop", {}), catalog),
            farm=FarmPlots.from_dict(data.get("farm", {})),
            pools={
                Location(loc): ResourcePool.from_dict(raw, kind_type=ItemType)
                for loc, raw in data.get("pools", {}).items()
            },
        )
        town.validate()
        return town


SNAPSHOT_VERSION = 1


def world_snapshot(town: Town, now: float) -> dict[str, Any]:
    """Everything needed to rebuild the town exactly, as plain JSON data."""
    return {"version": SNAPSHOT_VERSION, "time": now, **town.to_dict()}


def restore_world(data: dict[str, Any], catalog: Catalog) -> tuple[Town, float]:
    version = int(data.get("version", SNAPSHOT_VERSION))
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version {version}")
    return Town.from_dict(data, catalog), float(data.get("time", 0.0))
