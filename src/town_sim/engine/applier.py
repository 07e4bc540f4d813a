"""Applies validated decisions to the town.

Each handler takes every lock it needs up front (residents by id, then
the shop ledger, then the farm), checks all preconditions, and only then
mutates. A failing precondition leaves nothing half-done. Pool draws are
their own atomic check-and-decrement inside the pool.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from town_sim.agents.actions import (
    SITE_OF,
    Action,
    Buy,
    Decision,
    Eat,
    Fish,
    Gift,
    Harvest,
    Idle,
    Mine,
    Move,
    Plant,
    Sell,
    Talk,
    Vote,
)
from town_sim.agents.state import AgentState
from town_sim.engine.context import SimulationContext
from town_sim.engine.events import (
    ActionFailed,
    AgentMoved,
    DecisionApplied,
    HungerChanged,
    RelationshipUpdated,
    WorldEvent,
)
from town_sim.errors import (
    AgentNotFound,
    InsufficientFunds,
    InsufficientInventory,
    InvalidLocation,
    MalformedDecision,
    PlotOccupied,
    TownSimError,
)
from town_sim.social.relationships import Relationship, RelationshipEvent
from town_sim.world.town import Town

# game seconds a resident stays busy after a successful action
ACTION_DURATIONS_S: dict[str, float] = {
    Idle.tag: 0.0,
    Move.tag: 300.0,
    Eat.tag: 300.0,
    Buy.tag: 120.0,
    Sell.tag: 120.0,
    Mine.tag: 900.0,
    Fish.tag: 900.0,
    Plant.tag: 600.0,
    Harvest.tag: 600.0,
    Talk.tag: 300.0,
    Gift.tag: 120.0,
    Vote.tag: 60.0,
}

TONE_EVENTS: dict[str, RelationshipEvent] = {
    "friendly": RelationshipEvent.CHAT,
    "cooperative": RelationshipEvent.COOPERATION,
    "hostile": RelationshipEvent.INSULT,
}


@dataclass
class ApplyResult:
    agent_id: str
    action: str
    ok: bool
    source: str = "provider"
    error: str | None = None
    message: str = ""
    dropped: bool = False
    details: dict[str, Any] = field(default_factory=dict)


@contextmanager
def _locked(*locks) -> Iterator[None]:
    with ExitStack() as stack:
        for lock in locks:
            stack.enter_context(lock)
        yield


class ActionApplier:
    def __init__(
        self,
        town: Town,
        ctx: SimulationContext,
        durations: dict[str, float] | None = None,
    ) -> None:
        self.town = town
        self.ctx = ctx
        self.catalog = ctx.catalog
        self.durations = {**ACTION_DURATIONS_S, **(durations or {})}
        self.logger = logging.getLogger("town_sim.applier")
        self._handlers: dict[str, Callable[[AgentState, Any, list[WorldEvent]], dict[str, Any]]] = {
            Idle.tag: self._idle,
            Move.tag: self._move,
            Eat.tag: self._eat,
            Buy.tag: self._buy,
            Sell.tag: self._sell,
            Mine.tag: self._draw_from_site,
            Fish.tag: self._draw_from_site,
            Plant.tag: self._plant,
            Harvest.tag: self._harvest,
            Talk.tag: self._talk,
            Gift.tag: self._gift,
            Vote.tag: self._vote,
        }

    # ===================================================================
    # Public interface
    # ===================================================================

    def apply(self, agent_id: str, decision: Decision) -> ApplyResult:
        action = decision.action
        now = self.ctx.clock.now()
        state = self.town.registry.find(agent_id)
        if state is None or not state.is_alive:
            # resident died or was removed while the decision was in flight
            self.logger.info("Dropping decision agent=%s action=%s (no live resident)", agent_id, action.tag)
            return ApplyResult(
                agent_id, action.tag, ok=False, source=decision.source,
                error=AgentNotFound.__name__, dropped=True,
            )

        events: list[WorldEvent] = []
        with state.lock:
            state.current_action = action.tag
        try:
            self._check_site(state, action)
            details = self._handlers[action.tag](state, action, events)
        except TownSimError as exc:
            with state.lock:
                state.current_action = None
                state.busy_until = now
            self.logger.info(
                "ACT failed agent=%s action=%s error=%s", agent_id, action.tag, exc.__class__.__name__,
            )
            self.ctx.bus.publish(ActionFailed(
                time=now, agent_id=agent_id, action=action.tag,
                error=exc.__class__.__name__, message=str(exc),
            ))
            return ApplyResult(
                agent_id, action.tag, ok=False, source=decision.source,
                error=exc.__class__.__name__, message=str(exc),
            )

        duration = self.durations.get(action.tag, 0.0)
        with state.lock:
            if duration > 0:
                state.busy_until = now + duration
            else:
                state.current_action = None
                state.busy_until = now
        for event in events:
            self.ctx.bus.publish(event)
        self.ctx.bus.publish(DecisionApplied(
            time=now, agent_id=agent_id, action=action.tag,
            source=decision.source, details=details,
        ))
        self.logger.debug("ACT agent=%s action=%s details=%s", agent_id, action.tag, details)
        return ApplyResult(agent_id, action.tag, ok=True, source=decision.source, details=details)

    def finish_due(self, now: float) -> list[str]:
        """Clears ``current_action`` on residents whose action has run its course."""
        finished = []
        for state in self.town.registry:
            with state.lock:
                if state.current_action is not None and now >= state.busy_until:
                    state.current_action = None
                    finished.append(state.agent_id)
        return finished

    # ===================================================================
    # Handlers
    # ===================================================================

    def _check_site(self, state: AgentState, action: Action) -> None:
        site = SITE_OF.get(action.tag)
        if site is not None and state.location != site:
            raise InvalidLocation(site.value, state.location.value)

    def _idle(self, state: AgentState, action: Idle, events: list[WorldEvent]) -> dict[str, Any]:
        return {}

    def _move(self, state: AgentState, action: Move, events: list[WorldEvent]) -> dict[str, Any]:
        moved = state.relocate(action.destination)
        if not moved.redundant:
            events.append(AgentMoved(
                time=self.ctx.clock.now(), agent_id=state.agent_id,
                old=moved.old.value, new=moved.new.value,
            ))
        return {"from": moved.old.value, "to": moved.new.value, "redundant": moved.redundant}

    def _eat(self, state: AgentState, action: Eat, events: list[WorldEvent]) -> dict[str, Any]:
        with state.lock:
            before = state.hunger
            after = state.eat(action.item, self.catalog)
        events.append(HungerChanged(
            time=self.ctx.clock.now(), agent_id=state.agent_id, before=before, after=after,
        ))
        return {"item": action.item.value, "hunger": after}

    def _buy(self, state: AgentState, action: Buy, events: list[WorldEvent]) -> dict[str, Any]:
        shop = self.town.shop
        cost = shop.quote_buy(action.item, action.quantity)
        with _locked(state.lock, state.inventory.lock, shop.stock.lock):
            if state.money < cost:
                raise InsufficientFunds(cost, state.money)
            if not shop.stock.has(action.item, action.quantity):
                raise InsufficientInventory(action.item.value, action.quantity, shop.stock.count(action.item))
            shop.stock.remove(action.item, action.quantity)
            state.spend(cost)
            state.inventory.add(action.item, action.quantity)
        return {"item": action.item.value, "quantity": action.quantity, "cost": cost, "money": state.money}

    def _sell(self, state: AgentState, action: Sell, events: list[WorldEvent]) -> dict[str, Any]:
        shop = self.town.shop
        earning = shop.quote_sell(action.item, action.quantity)
        with _locked(state.lock, state.inventory.lock, shop.stock.lock):
            # remove() checks before it mutates, so a short stack changes nothing
            state.inventory.remove(action.item, action.quantity)
            state.earn(earning)
            shop.stock.add(action.item, action.quantity)
        return {"item": action.item.value, "quantity": action.quantity, "earned": earning, "money": state.money}

    def _draw_from_site(self, state: AgentState, action: Mine | Fish, events: list[WorldEvent]) -> dict[str, Any]:
        site = SITE_OF[action.tag]
        pool = self.town.pools.get(site)
        if pool is None:
            raise InvalidLocation(site.value, state.location.value)
        kind = pool.draw_any(self.ctx.rng)
        with state.lock:
            state.inventory.add(kind, 1)
        return {"site": pool.site, "item": kind.value}

    def _plant(self, state: AgentState, action: Plant, events: list[WorldEvent]) -> dict[str, Any]:
        crop = self.catalog.seed_to_crop.get(action.seed)
        if crop is None:
            raise MalformedDecision(f"{action.seed.value} is not a seed")
        farm = self.town.farm
        growth = self.catalog.crop_growth_s.get(crop, 3600.0)
        now = self.ctx.clock.now()
        with _locked(state.lock, state.inventory.lock, farm.lock):
            if farm.get(state.agent_id) is not None:
                raise PlotOccupied(state.agent_id)
            if not state.inventory.has(action.seed):
                raise InsufficientInventory(action.seed.value, 1, state.inventory.count(action.seed))
            plot = farm.plant(state.agent_id, crop, now, growth)
            state.inventory.remove(action.seed, 1)
        return {"crop": crop.value, "ready_at": plot.ready_at}

    def _harvest(self, state: AgentState, action: Harvest, events: list[WorldEvent]) -> dict[str, Any]:
        farm = self.town.farm
        with _locked(state.lock, farm.lock):
            plot = farm.check_harvest(state.agent_id, self.ctx.clock.now())
            amount = self.catalog.crop_yield.get(plot.crop, 1)
            state.inventory.add(plot.crop, amount)
            farm.clear(state.agent_id)
        return {"crop": plot.crop.value, "quantity": amount}

    def _talk(self, state: AgentState, action: Talk, events: list[WorldEvent]) -> dict[str, Any]:
        target = self._live_target(state, action.target_id)
        if target.location != state.location:
            raise InvalidLocation(target.location.value, state.location.value)
        now = self.ctx.clock.now()
        event = TONE_EVENTS.get(action.tone, RelationshipEvent.CHAT)
        if event == RelationshipEvent.INSULT:
            # only the insulted side changes its view
            rels = [self.town.relationships.apply_event(target.agent_id, state.agent_id, event, now=now)]
        else:
            rels = list(self.town.relationships.apply_mutual(state.agent_id, target.agent_id, event, now=now))
        target.remember(f"{state.name} talked to me ({action.tone})", 0.3, now, state.agent_id)
        state.remember(f"I talked to {target.name} ({action.tone})", 0.2, now, target.agent_id)
        events.extend(self._relationship_events(rels, event, now))
        return {"target_id": target.agent_id, "tone": action.tone, "reply_from": target.agent_id}

    def _gift(self, state: AgentState, action: Gift, events: list[WorldEvent]) -> dict[str, Any]:
        target = self._live_target(state, action.target_id)
        giver_first = state.agent_id < target.agent_id
        first, second = (state, target) if giver_first else (target, state)
        with _locked(first.lock, second.lock, first.inventory.lock, second.inventory.lock):
            state.inventory.remove(action.item, action.quantity)
            target.inventory.add(action.item, action.quantity)
        now = self.ctx.clock.now()
        rel = self.town.relationships.apply_event(
            target.agent_id, state.agent_id, RelationshipEvent.GIFT,
            magnitude=min(3.0, float(action.quantity)), now=now, note=action.item.value,
        )
        target.remember(f"{state.name} gave me {action.quantity} {action.item.value}", 0.6, now, state.agent_id)
        events.extend(self._relationship_events([rel], RelationshipEvent.GIFT, now))
        return {"target_id": target.agent_id, "item": action.item.value, "quantity": action.quantity}

    def _vote(self, state: AgentState, action: Vote, events: list[WorldEvent]) -> dict[str, Any]:
        ballot = self.town.ballot
        if ballot is None:
            raise MalformedDecision("no vote is open")
        target = self._live_target(state, action.target_id)
        if not ballot.cast(state.agent_id, target.agent_id):
            raise MalformedDecision(f"{target.agent_id} is not a candidate in {ballot.topic!r}")
        now = self.ctx.clock.now()
        rel = self.town.relationships.apply_event(
            target.agent_id, state.agent_id, RelationshipEvent.VOTE_AGAINST, now=now, note=ballot.topic,
        )
        events.extend(self._relationship_events([rel], RelationshipEvent.VOTE_AGAINST, now))
        return {"target_id": target.agent_id, "topic": ballot.topic}

    # ===================================================================
    # Helpers
    # ===================================================================

    def _live_target(self, state: AgentState, target_id: str) -> AgentState:
        if target_id == state.agent_id:
            raise MalformedDecision("resident cannot target themselves")
        target = self.town.registry.find(target_id)
        if target is None or not target.is_alive:
            raise AgentNotFound(target_id)
        return target

    def _relationship_events(
        self, rels: list[Relationship], event: RelationshipEvent, now: float
    ) -> list[WorldEvent]:
        return [
            RelationshipUpdated(
                time=now, from_id=rel.from_id, to_id=rel.to_id, event=event.value,
                trust=rel.trust, affection=rel.affection,
                classification=rel.classification.value,
            )
            for rel in rels
        ]
