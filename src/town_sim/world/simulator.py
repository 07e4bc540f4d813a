from __future__ import annotations

import logging
import time
from typing import Any

from town_sim.agents.cognition import ContextBuilder, RuleBasedPolicy
from town_sim.config.settings import AppSettings
from town_sim.engine.applier import ActionApplier
from town_sim.engine.clock import SimulationClock
from town_sim.engine.context import SimulationContext
from town_sim.engine.queue import DecisionRequestQueue
from town_sim.engine.scheduler import DecisionScheduler
from town_sim.engine.tick_engine import TickEngine, TickReport
from town_sim.engine.validator import DecisionResponseValidator
from town_sim.llm.base import ReasoningProvider
from town_sim.world.town import Town, restore_world, world_snapshot

RESIDENT_NAMES = [
    "Ada", "Bram", "Cleo", "Dario", "Edda", "Fenn", "Greta", "Hugo",
    "Ines", "Jonas", "Kira", "Lev", "Mira", "Nils", "Orla", "Pavel",
]


def resident_names(count: int) -> list[str]:
    """Distinct display names; cycles with a numeric suffix past the list."""
    out = []
    for i in range(count):
        base = RESIDENT_NAMES[i % len(RESIDENT_NAMES)]
        out.append(base if i < len(RESIDENT_NAMES) else f"{base} {i // len(RESIDENT_NAMES) + 1}")
    return out


class WorldSimulator:
    """Wires a town, its decision pipeline and the tick engine together."""

    def __init__(
        self,
        run_id: str,
        seed: int,
        settings: AppSettings,
        provider: ReasoningProvider | None,
        town: Town | None = None,
        ctx: SimulationContext | None = None,
    ) -> None:
        self.logger = logging.getLogger("town_sim.world")
        self.run_id = run_id
        self.seed = seed
        self.settings = settings
        self.provider = provider
        self.ctx = ctx or SimulationContext.seeded(
            seed, sim=settings.simulation, queue=settings.queue,
        )
        if town is None:
            town = Town.build(self.ctx.catalog, self.ctx.sim, now=self.ctx.clock.now())
            town.populate(resident_names(self.ctx.sim.agent_count), self.ctx.rng, self.ctx.sim)
        self.town = town

        policy = RuleBasedPolicy(self.ctx.catalog, self.ctx.sim)
        self.context_builder = ContextBuilder(
            town.registry,
            town.relationships,
            self.ctx.catalog,
            farm=town.farm,
            max_chars=self.ctx.queue.max_context_chars,
        )
        self.queue = DecisionRequestQueue(
            provider=provider,
            validator=DecisionResponseValidator(policy),
            render=self.context_builder.render,
            cfg=self.ctx.queue,
            clock=self.ctx.clock,
        )
        self.scheduler = DecisionScheduler(self.ctx.queue.cooldown_s, self.ctx.sim)
        self.applier = ActionApplier(town, self.ctx)
        self.engine = TickEngine(
            town, self.ctx, self.queue, self.scheduler, self.context_builder, self.applier,
        )
        self.logger.info(
            "World initialized: run_id=%s seed=%d residents=%d ticks=%d",
            run_id, seed, len(town.registry), self.ctx.sim.ticks,
        )

    @classmethod
    def from_snapshot(
        cls,
        run_id: str,
        seed: int,
        settings: AppSettings,
        provider: ReasoningProvider | None,
        data: dict[str, Any],
    ) -> "WorldSimulator":
        ctx = SimulationContext.seeded(seed, sim=settings.simulation, queue=settings.queue)
        town, now = restore_world(data, ctx.catalog)
        ctx.clock = SimulationClock(start=now)
        return cls(run_id, seed, settings, provider, town=town, ctx=ctx)

    async def run(self, ticks: int | None = None) -> list[TickReport]:
        ticks = self.ctx.sim.ticks if ticks is None else ticks
        t0 = time.perf_counter()
        reports = await self.engine.run(ticks)
        alive = len(self.town.registry.alive())
        self.logger.info(
            "Run finished: run_id=%s ticks=%d alive=%d/%d elapsed=%.1fs queue=%s",
            self.run_id, len(reports), alive, len(self.town.registry),
            time.perf_counter() - t0, self.queue.stats,
        )
        for state in sorted(self.town.registry, key=lambda s: s.name):
            self.logger.info("Resident final: %s alive=%s", state.status_line(), state.is_alive)
        return reports

    def snapshot(self) -> dict[str, Any]:
        return world_snapshot(self.town, self.ctx.clock.now())
