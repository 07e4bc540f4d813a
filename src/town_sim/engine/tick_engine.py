"""town_sim tick engine.

Each tick runs five steps:

  ADVANCE: move the clock forward by one tick of game time.
  PERIODIC: hunger/age for every living resident, pool refresh, hourly
            shop restock and relationship decay.
  SCHEDULE: pick eligible residents (most urgent first) and snapshot them.
  DECIDE: all requests go through the DecisionRequestQueue concurrently;
          the queue bounds provider calls and always yields a decision.
  ACT: decisions are applied in agent_id order, after all of them
       have been collected.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from town_sim.agents.actions import Decision, DecisionRequest
from town_sim.agents.cognition import ContextBuilder
from town_sim.engine.applier import ActionApplier, ApplyResult
from town_sim.engine.context import SimulationContext
from town_sim.engine.events import AgentDied, HungerChanged, ResourcesRefreshed
from town_sim.engine.queue import DecisionRequestQueue
from town_sim.engine.scheduler import DecisionScheduler
from town_sim.errors import DuplicateRequestError
from town_sim.social.ballot import Ballot
from town_sim.utils.types import DecisionKind
from town_sim.world.town import SHOP_STOCK_LEVEL, Town

logger = logging.getLogger("town_sim.engine")


@dataclass
class TickReport:
    tick: int
    time: float
    alive: int
    dispatched: int = 0
    applied: int = 0
    failed: int = 0
    dropped: int = 0
    deaths: list[str] = field(default_factory=list)
    sources: dict[str, int] = field(default_factory=dict)
    elapsed_ms: float = 0.0


class TickEngine:
    def __init__(
        self,
        town: Town,
        ctx: SimulationContext,
        queue: DecisionRequestQueue,
        scheduler: DecisionScheduler,
        context_builder: ContextBuilder,
        applier: ActionApplier,
    ) -> None:
        self.town = town
        self.ctx = ctx
        self.queue = queue
        self.scheduler = scheduler
        self.context_builder = context_builder
        self.applier = applier
        self.tick = 0
        self._last_time = ctx.clock.now()
        self._last_maintenance = self._last_time
        self._reply_partner: dict[str, str] = {}

    # ===================================================================
    # Public interface
    # ===================================================================

    async def run(self, ticks: int) -> list[TickReport]:
        reports: list[TickReport] = []
        await self.queue.start()
        try:
            for _ in range(ticks):
                report = await self.step()
                reports.append(report)
                if report.alive == 0:
                    logger.info("All residents are dead; stopping at tick=%d", report.tick)
                    break
        finally:
            await self.queue.close(drain=False)
        return reports

    async def step(self) -> TickReport:
        t0 = time.perf_counter()
        self.tick += 1
        now = self._advance()
        elapsed = now - self._last_time
        self._last_time = now

        deaths = self._periodic(now, elapsed)
        for agent_id in self.applier.finish_due(now):
            self.scheduler.mark_idle(agent_id)

        alive = len(self.town.registry.alive())
        report = TickReport(tick=self.tick, time=now, alive=alive, deaths=deaths)
        if self.tick % max(1, self.ctx.sim.log_tick_interval) == 1 or deaths:
            logger.info("TICK-START tick=%d time=%.0fs alive=%d", self.tick, now, alive)

        requests = self._schedule(now)
        report.dispatched = len(requests)
        if requests:
            decisions = await asyncio.gather(*(self._decide(r) for r in requests))
            for request, decision in sorted(zip(requests, decisions), key=lambda rd: rd[0].agent_id):
                self._act(request, decision, report)
            # mark_acting resets the pending kind, so replies are requested last
            for partner in self._reply_partner:
                self.scheduler.request_reply(partner)

        report.elapsed_ms = (time.perf_counter() - t0) * 1000.0
        if report.dispatched:
            logger.info(
                "TICK-DONE  tick=%d dispatched=%d applied=%d failed=%d dropped=%d sources=%s elapsed=%.0fms",
                self.tick, report.dispatched, report.applied, report.failed,
                report.dropped, report.sources, report.elapsed_ms,
            )
        return report

    def hold_vote(self, topic: str, candidates: list[str]) -> Ballot:
        """Opens a town vote; every living resident's next decision is a ballot."""
        now = self.ctx.clock.now()
        ballot = Ballot(topic, candidates, opened_at=now)
        self.town.ballot = ballot
        for state in self.town.registry.alive():
            self.scheduler.request_reply(state.agent_id, DecisionKind.VOTE)
        logger.info("VOTE open topic=%s candidates=%s", topic, candidates)
        return ballot

    def close_vote(self) -> str | None:
        ballot = self.town.ballot
        if ballot is None:
            return None
        self.town.ballot = None
        winner = ballot.winner()
        logger.info(
            "VOTE closed topic=%s voters=%d winner=%s tally=%s",
            ballot.topic, len(ballot.voters()), winner, dict(ballot.tally()),
        )
        return winner

    # ===================================================================
    # ADVANCE / PERIODIC
    # ===================================================================

    def _advance(self) -> float:
        advance = getattr(self.ctx.clock, "advance", None)
        if advance is not None:
            return advance(self.ctx.sim.tick_seconds)
        return self.ctx.clock.now()

    def _periodic(self, now: float, elapsed: float) -> list[str]:
        sim = self.ctx.sim
        bus = self.ctx.bus
        deaths: list[str] = []
        for state in self.town.registry.alive():
            update = state.advance_time(elapsed, sim.hunger_decay_per_minute, sim.seconds_per_age_year)
            if update.hunger_after != update.hunger_before:
                bus.publish(HungerChanged(
                    time=now, agent_id=state.agent_id,
                    before=update.hunger_before, after=update.hunger_after,
                ))
            if update.died:
                deaths.append(state.agent_id)
                self.queue.cancel_agent(state.agent_id)
                self.scheduler.forget(state.agent_id)
                self._reply_partner.pop(state.agent_id, None)
                bus.publish(AgentDied(time=now, agent_id=state.agent_id, cause=state.cause_of_death or "unknown"))

        for pool in self.town.pools.values():
            if pool.refresh(now):
                bus.publish(ResourcesRefreshed(
                    time=now, site=pool.site,
                    counts={getattr(k, "value", str(k)): v for k, v in pool.counts().items()},
                ))

        if now - self._last_maintenance >= sim.pool_refresh_interval_s:
            self._last_maintenance = now
            self.town.shop.restock(SHOP_STOCK_LEVEL)
            moved = self.town.relationships.decay(
                now, sim.relationship_decay_after_s, sim.relationship_decay_rate,
            )
            logger.debug("Maintenance time=%.0fs relationships_decayed=%d", now, moved)
        return deaths

    # ===================================================================
    # SCHEDULE / DECIDE
    # ===================================================================

    def _schedule(self, now: float) -> list[DecisionRequest]:
        requests: list[DecisionRequest] = []
        for state in self.scheduler.eligible(self.town.registry, now):
            kind = self.scheduler.kind_for(state)
            extra = {}
            if kind == DecisionKind.CONVERSATION_REPLY and state.agent_id in self._reply_partner:
                extra["partner_id"] = self._reply_partner.pop(state.agent_id)
            elif kind == DecisionKind.VOTE and self.town.ballot is not None:
                extra["ballot"] = {"topic": self.town.ballot.topic, "candidates": self.town.ballot.candidates}
            elif kind != DecisionKind.NEXT_ACTION:
                # nothing left to reply to
                kind = DecisionKind.NEXT_ACTION
            snapshot = self.context_builder.snapshot(state, kind, now, extra)
            request = DecisionRequest.build(
                state.agent_id, kind, self.scheduler.priority_for(state), snapshot, now,
            )
            self.scheduler.mark_dispatched(state.agent_id, now)
            requests.append(request)
        return requests

    async def _decide(self, request: DecisionRequest) -> Decision | None:
        try:
            return await self.queue.enqueue(request)
        except DuplicateRequestError:
            logger.warning("Duplicate decision request agent=%s; skipping", request.agent_id)
            return None

    # ===================================================================
    # ACT
    # ===================================================================

    def _act(self, request: DecisionRequest, decision: Decision | None, report: TickReport) -> None:
        agent_id = request.agent_id
        if decision is None:
            report.dropped += 1
            self.scheduler.mark_idle(agent_id)
            return
        report.sources[decision.source] = report.sources.get(decision.source, 0) + 1
        try:
            result = self.applier.apply(agent_id, decision)
        except Exception as exc:
            logger.error(
                "ACT error agent=%s tick=%d action=%s: %s",
                agent_id, self.tick, decision.action.tag, exc, exc_info=True,
            )
            report.failed += 1
            self.scheduler.mark_idle(agent_id)
            return
        self._after_apply(request, result, report)

    def _after_apply(self, request: DecisionRequest, result: ApplyResult, report: TickReport) -> None:
        agent_id = request.agent_id
        if result.dropped:
            report.dropped += 1
            self.scheduler.forget(agent_id)
            return
        if result.ok:
            report.applied += 1
        else:
            report.failed += 1

        self.scheduler.mark_acting(agent_id)
        state = self.town.registry.find(agent_id)
        if state is None or state.current_action is None:
            self.scheduler.mark_idle(agent_id)

        partner = result.details.get("reply_from") if result.ok else None
        # replies never trigger replies of their own
        if partner and request.kind == DecisionKind.NEXT_ACTION:
            self._reply_partner[partner] = agent_id
