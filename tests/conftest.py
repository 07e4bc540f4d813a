from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from town_sim.agents.state import AgentState
from town_sim.config.settings import DecisionQueueSettings, SimulationSettings
from town_sim.engine.context import SimulationContext
from town_sim.errors import ProviderError
from town_sim.utils.types import Location
from town_sim.world.town import Town


class ScriptedProvider:
    """Answers with a fixed string or a function of the context; can be slow or flaky."""

    def __init__(
        self,
        answer: str | Callable[[str], str] = '{"action": "idle"}',
        delay: float = 0.0,
        failures: int = 0,
    ) -> None:
        self.answer = answer
        self.delay = delay
        self.failures = failures
        self.calls = 0
        self.contexts: list[str] = []
        self.active = 0
        self.max_active = 0

    async def submit(self, context: str) -> str:
        self.calls += 1
        self.contexts.append(context)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures > 0:
                self.failures -= 1
                raise ProviderError("scripted failure")
            return self.answer(context) if callable(self.answer) else self.answer
        finally:
            self.active -= 1


class BatchingProvider(ScriptedProvider):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.batches: list[int] = []

    async def submit_batch(self, contexts: list[str]) -> list[str]:
        self.batches.append(len(contexts))
        return [await self.submit(c) for c in contexts]


def make_resident(agent_id: str, name: str | None = None, **fields) -> AgentState:
    return AgentState(agent_id=agent_id, name=name or agent_id, **fields)


@pytest.fixture
def ctx() -> SimulationContext:
    return SimulationContext.seeded(7, sim=SimulationSettings(), queue=DecisionQueueSettings())


@pytest.fixture
def town(ctx: SimulationContext) -> Town:
    return Town.build(ctx.catalog, ctx.sim)


@pytest.fixture
def pair(town: Town) -> tuple[AgentState, AgentState]:
    a = town.registry.add(make_resident("char_a", "Ada"))
    b = town.registry.add(make_resident("char_b", "Bram"))
    return a, b


@pytest.fixture
def at_shop(town: Town) -> AgentState:
    return town.registry.add(make_resident("char_s", "Cleo", location=Location.SHOP))
