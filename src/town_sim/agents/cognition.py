from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from town_sim.agents.actions import (
    ALLOWED_ACTIONS,
    Action,
    Buy,
    DecisionRequest,
    Eat,
    Idle,
    Mine,
    Move,
    Sell,
    Talk,
)
from town_sim.agents.registry import AgentRegistry
from town_sim.agents.state import AgentState
from town_sim.config.settings import SimulationSettings
from town_sim.social.relationships import RelationshipGraph
from town_sim.utils.types import DecisionKind, ItemType, Location
from town_sim.world.catalog import Catalog
from town_sim.world.farm import FarmPlots


class RuleBasedPolicy:
    """Deterministic survival rules used whenever the provider cannot be trusted.

    Works purely from a request snapshot so it gives the same answer for
    the same inputs and never touches live state.
    """

    def __init__(self, catalog: Catalog, sim: SimulationSettings) -> None:
        self.catalog = catalog
        self.sim = sim

    def decide(self, kind: DecisionKind, snapshot: Mapping[str, Any]) -> Action:
        if kind == DecisionKind.VOTE:
            # abstain
            return Idle()
        if kind == DecisionKind.CONVERSATION_REPLY:
            partner = snapshot.get("partner_id")
            return Talk(target_id=str(partner)) if partner else Idle()

        hunger = float(snapshot.get("hunger", 100.0))
        money = int(snapshot.get("money", 0))
        location = str(snapshot.get("location", Location.HOME.value))
        inventory = self._inventory(snapshot)

        # HUNGER: eat what we have, else buy the cheapest food
        if hunger < self.sim.hungry_threshold:
            food = self._best_food(inventory)
            if food is not None:
                return Eat(item=food)
            cheapest = self.catalog.cheapest_food()
            if cheapest is not None and money >= cheapest[1]:
                if location != Location.SHOP.value:
                    return Move(destination=Location.SHOP)
                return Buy(item=cheapest[0], quantity=1)

        # POVERTY: sell goods, else go dig
        if money < self.sim.poor_threshold:
            stack = self._most_valuable_stack(inventory)
            if stack is not None:
                if location != Location.SHOP.value:
                    return Move(destination=Location.SHOP)
                return Sell(item=stack[0], quantity=stack[1])
            if location != Location.MINE.value:
                return Move(destination=Location.MINE)
            return Mine()

        return Idle()

    def _inventory(self, snapshot: Mapping[str, Any]) -> dict[ItemType, int]:
        out: dict[ItemType, int] = {}
        for name, qty in dict(snapshot.get("inventory", {})).items():
            try:
                out[ItemType(name)] = int(qty)
            except ValueError:
                continue
        return out

    def _best_food(self, inventory: dict[ItemType, int]) -> ItemType | None:
        held = [
            (self.catalog.hunger_restore[item], item.value, item)
            for item, qty in inventory.items()
            if qty > 0 and self.catalog.is_edible(item)
        ]
        if not held:
            return None
        return max(held)[2]

    def _most_valuable_stack(self, inventory: dict[ItemType, int]) -> tuple[ItemType, int] | None:
        stacks = [
            (self.catalog.shop_sell_prices[item] * qty, item.value, item, qty)
            for item, qty in inventory.items()
            if qty > 0 and self.catalog.shop_sell_prices.get(item)
        ]
        if not stacks:
            return None
        _, _, item, qty = max(stacks)
        return item, qty


class ContextBuilder:
    """Turns live world state into a bounded, immutable decision snapshot."""

    def __init__(
        self,
        registry: AgentRegistry,
        relationships: RelationshipGraph,
        catalog: Catalog,
        farm: FarmPlots | None = None,
        max_chars: int = 2000,
        max_neighbours: int = 5,
    ) -> None:
        self.logger = logging.getLogger("town_sim.cognition")
        self.registry = registry
        self.relationships = relationships
        self.catalog = catalog
        self.farm = farm
        self.max_chars = max_chars
        self.max_neighbours = max_neighbours

    def snapshot(
        self,
        state: AgentState,
        kind: DecisionKind,
        now: float,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        snap = state.snapshot()
        snap["kind"] = kind.value
        snap["time"] = round(now, 1)
        snap["allowed_actions"] = list(ALLOWED_ACTIONS[kind])
        snap["neighbours"] = self._neighbours(state, now)
        if self.farm is not None:
            plot = self.farm.get(state.agent_id)
            snap["plot"] = (
                {"crop": plot.crop.value, "ready": plot.is_ready(now)} if plot else None
            )
        snap.update(extra or {})
        return self._bound(snap)

    def render(self, request: DecisionRequest) -> str:
        """Serialized context handed to the reasoning provider."""
        snap = request.snapshot
        allowed = ", ".join(snap.get("allowed_actions", ()))
        return f"""
You are {snap.get('name')}, a resident of a small town. Decide your next step.
Return only one valid JSON object with keys:
action(one of: {allowed}),
destination(location, for move), item(item id, for eat/buy/sell/gift),
seed(item id, for plant), quantity(positive integer), target_id(resident id, for talk/gift/vote),
tone(friendly|cooperative|hostile, for talk), rationale(short sentence), emotion(one word).

Locations: {", ".join(loc.value for loc in Location)}
Decision kind: {request.kind.value}

=== STATE ===
{json.dumps(dict(snap), ensure_ascii=True, sort_keys=True)}
""".strip()

    def _neighbours(self, state: AgentState, now: float) -> list[dict[str, Any]]:
        out = []
        for other in self.registry.alive():
            if other.agent_id == state.agent_id:
                continue
            rel = self.relationships.get(state.agent_id, other.agent_id)
            out.append({
                "id": other.agent_id,
                "name": other.name,
                "here": other.location == state.location,
                "relationship": rel.classification.value if rel else "stranger",
                "last_seen": round(now - rel.last_interaction_time, 1) if rel else None,
            })
        # residents at the same place first, then by familiarity
        out.sort(key=lambda n: (not n["here"], n["relationship"] == "stranger", n["id"]))
        return out[: self.max_neighbours]

    def _bound(self, snap: dict[str, Any]) -> dict[str, Any]:
        """Drops the least essential parts until the serialized form fits."""
        def size() -> int:
            return len(json.dumps(snap, ensure_ascii=True, sort_keys=True))

        trimmed = False
        while size() > self.max_chars and snap.get("memories"):
            snap["memories"] = snap["memories"][1:]
            trimmed = True
        while size() > self.max_chars and snap.get("neighbours"):
            snap["neighbours"] = snap["neighbours"][:-1]
            trimmed = True
        if size() > self.max_chars and snap.get("inventory"):
            ranked = sorted(snap["inventory"].items(), key=lambda kv: -kv[1])
            while size() > self.max_chars and ranked:
                ranked.pop()
                snap["inventory"] = dict(ranked)
            trimmed = True
        if trimmed:
            snap["truncated"] = True
            self.logger.debug("Context trimmed agent=%s size=%d", snap.get("agent_id"), size())
        return snap
