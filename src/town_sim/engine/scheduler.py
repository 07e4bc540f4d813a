from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from town_sim.agents.registry import AgentRegistry
from town_sim.agents.state import AgentState
from town_sim.config.settings import SimulationSettings
from town_sim.utils.types import DecisionKind, Priority


class Phase(str, Enum):
    IDLE = "idle"
    AWAITING_DECISION = "awaiting_decision"
    ACTING = "acting"


@dataclass
class SchedulerEntry:
    phase: Phase = Phase.IDLE
    next_eligible: float = 0.0
    pending_kind: DecisionKind = DecisionKind.NEXT_ACTION


class DecisionScheduler:
    """Per-resident Idle → AwaitingDecision → Acting → Idle state machine.

    The cooldown starts at dispatch time, so a resident can never be
    selected again while its previous request is still outstanding.
    """

    def __init__(self, cooldown_s: float, sim: SimulationSettings) -> None:
        self.cooldown_s = cooldown_s
        self.sim = sim
        self._entries: dict[str, SchedulerEntry] = {}
        self.logger = logging.getLogger("town_sim.scheduler")

    def entry(self, agent_id: str) -> SchedulerEntry:
        return self._entries.setdefault(agent_id, SchedulerEntry())

    def phase(self, agent_id: str) -> Phase:
        return self.entry(agent_id).phase

    def is_eligible(self, state: AgentState, now: float) -> bool:
        if not state.is_alive or state.current_action is not None:
            return False
        entry = self.entry(state.agent_id)
        return entry.phase == Phase.IDLE and now >= entry.next_eligible

    def eligible(self, registry: AgentRegistry, now: float) -> list[AgentState]:
        """Eligible residents, most urgent first, then by id."""
        ready = [s for s in registry.alive() if self.is_eligible(s, now)]
        ready.sort(key=lambda s: (self.priority_for(s), s.agent_id))
        return ready

    def priority_for(self, state: AgentState) -> Priority:
        if state.hunger < self.sim.starvation_threshold:
            return Priority.STARVATION
        if self.entry(state.agent_id).pending_kind == DecisionKind.CONVERSATION_REPLY:
            return Priority.CONVERSATION
        return Priority.ROUTINE

    def kind_for(self, state: AgentState) -> DecisionKind:
        return self.entry(state.agent_id).pending_kind

    def request_reply(self, agent_id: str, kind: DecisionKind = DecisionKind.CONVERSATION_REPLY) -> None:
        """Marks that the resident's next decision should be a reply or vote."""
        self.entry(agent_id).pending_kind = kind

    def mark_dispatched(self, agent_id: str, now: float) -> None:
        entry = self.entry(agent_id)
        if entry.phase != Phase.IDLE:
            raise RuntimeError(f"agent {agent_id} dispatched while {entry.phase.value}")
        entry.phase = Phase.AWAITING_DECISION
        entry.next_eligible = now + self.cooldown_s

    def mark_acting(self, agent_id: str) -> None:
        entry = self.entry(agent_id)
        entry.phase = Phase.ACTING
        entry.pending_kind = DecisionKind.NEXT_ACTION

    def mark_idle(self, agent_id: str) -> None:
        self.entry(agent_id).phase = Phase.IDLE

    def forget(self, agent_id: str) -> None:
        self._entries.pop(agent_id, None)

    def awaiting(self) -> list[str]:
        return sorted(a for a, e in self._entries.items() if e.phase == Phase.AWAITING_DECISION)
