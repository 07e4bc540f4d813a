from __future__ import annotations

from typing import Iterator

from town_sim.agents.state import AgentState
from town_sim.errors import AgentNotFound


class AgentRegistry:
    """Owns every resident; everything else refers to residents by id."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentState] = {}

    def add(self, state: AgentState) -> AgentState:
        if state.agent_id in self._agents:
            raise ValueError(f"duplicate agent id {state.agent_id}")
        self._agents[state.agent_id] = state
        return state

    def get(self, agent_id: str) -> AgentState:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise AgentNotFound(agent_id) from None

    def find(self, agent_id: str) -> AgentState | None:
        return self._agents.get(agent_id)

    def remove(self, agent_id: str) -> AgentState:
        try:
            return self._agents.pop(agent_id)
        except KeyError:
            raise AgentNotFound(agent_id) from None

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[AgentState]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)

    def ids(self) -> list[str]:
        return sorted(self._agents)

    def alive(self) -> list[AgentState]:
        return [s for s in self._agents.values() if s.is_alive]

    def names(self) -> dict[str, str]:
        return {agent_id: s.name for agent_id, s in self._agents.items()}
