from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class RelationshipEvent(str, Enum):
    CHAT = "chat"
    COOPERATION = "cooperation"
    TRADE = "trade"
    GIFT = "gift"
    INSULT = "insult"
    BETRAYAL = "betrayal"
    VOTE_AGAINST = "vote_against"


class Classification(str, Enum):
    STRANGER = "stranger"
    ACQUAINTANCE = "acquaintance"
    FRIEND = "friend"
    CLOSE_FRIEND = "close_friend"
    ENEMY = "enemy"


# (trust delta, affection delta, memory importance) per unit magnitude
EVENT_DELTAS: dict[RelationshipEvent, tuple[float, float, float]] = {
    RelationshipEvent.CHAT: (0.02, 0.05, 0.2),
    RelationshipEvent.COOPERATION: (0.10, 0.04, 0.5),
    RelationshipEvent.TRADE: (0.04, 0.01, 0.3),
    RelationshipEvent.GIFT: (0.06, 0.12, 0.6),
    RelationshipEvent.INSULT: (-0.04, -0.12, 0.6),
    RelationshipEvent.BETRAYAL: (-0.45, -0.30, 1.0),
    RelationshipEvent.VOTE_AGAINST: (-0.08, -0.05, 0.7),
}


@dataclass
class InteractionMemory:
    time: float
    event: RelationshipEvent
    importance: float
    note: str = ""


@dataclass
class Relationship:
    from_id: str
    to_id: str
    trust: float = 0.0
    affection: float = 0.0
    interaction_count: int = 0
    last_interaction_time: float = 0.0
    memories: list[InteractionMemory] = field(default_factory=list)

    @property
    def classification(self) -> Classification:
        """Always derived from the axes, never stored."""
        if self.interaction_count == 0:
            return Classification.STRANGER
        if min(self.trust, self.affection) <= -0.6 or (
            self.trust <= -0.3 and self.affection <= -0.3
        ):
            return Classification.ENEMY
        score = (self.trust + self.affection) / 2.0
        if score >= 0.6:
            return Classification.CLOSE_FRIEND
        if score >= 0.3:
            return Classification.FRIEND
        return Classification.ACQUAINTANCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_id": self.from_id,
            "to_id": self.to_id,
            "trust": self.trust,
            "affection": self.affection,
            "interaction_count": self.interaction_count,
            "last_interaction_time": self.last_interaction_time,
            "memories": [
                {"time": m.time, "event": m.event.value, "importance": m.importance, "note": m.note}
                for m in self.memories
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Relationship":
        return cls(
            from_id=str(data["from_id"]),
            to_id=str(data["to_id"]),
            trust=float(data["trust"]),
            affection=float(data["affection"]),
            interaction_count=int(data["interaction_count"]),
            last_interaction_time=float(data["last_interaction_time"]),
            memories=[
                InteractionMemory(
                    time=float(m["time"]),
                    event=RelationshipEvent(m["event"]),
                    importance=float(m["importance"]),
                    note=str(m.get("note", "")),
                )
                for m in data.get("memories", [])
            ],
        )


class RelationshipGraph:
    """Directed relationship records keyed by (from_id, to_id).

    A→B and B→A are separate records; an event only ever touches the
    record of the direction it is applied to.
    """

    def __init__(self, memory_limit: int = 10) -> None:
        self.memory_limit = memory_limit
        self._edges: dict[tuple[str, str], Relationship] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger("town_sim.relationships")

    def get(self, from_id: str, to_id: str) -> Relationship | None:
        with self._lock:
            return self._edges.get((from_id, to_id))

    def classification(self, from_id: str, to_id: str) -> Classification:
        rel = self.get(from_id, to_id)
        return rel.classification if rel else Classification.STRANGER

    def neighbours(self, agent_id: str) -> list[Relationship]:
        with self._lock:
            return [rel for (a, _), rel in self._edges.items() if a == agent_id]

    def __len__(self) -> int:
        return len(self._edges)

    def apply_event(
        self,
        from_id: str,
        to_id: str,
        event: RelationshipEvent,
        magnitude: float = 1.0,
        now: float = 0.0,
        note: str = "",
    ) -> Relationship:
        if from_id == to_id:
            raise ValueError("a resident cannot have a relationship with themselves")
        if magnitude < 0:
            raise ValueError("magnitude must be non-negative")
        trust_delta, affection_delta, importance = EVENT_DELTAS[event]
        with self._lock:
            rel = self._edges.get((from_id, to_id))
            if rel is None:
                rel = Relationship(from_id=from_id, to_id=to_id)
                self._edges[(from_id, to_id)] = rel
            before = rel.classification
            rel.trust = clamp(rel.trust + trust_delta * magnitude)
            rel.affection = clamp(rel.affection + affection_delta * magnitude)
            rel.interaction_count += 1
            rel.last_interaction_time = now
            self._remember(rel, InteractionMemory(now, event, importance * magnitude, note))
            after = rel.classification
        if before != after:
            self.logger.debug(
                "Relationship reclassified: %s->%s %s -> %s",
                from_id, to_id, before.value, after.value,
            )
        return rel

    def apply_mutual(
        self,
        agent_a: str,
        agent_b: str,
        event: RelationshipEvent,
        magnitude: float = 1.0,
        now: float = 0.0,
        note: str = "",
    ) -> tuple[Relationship, Relationship]:
        """Applies a symmetric event independently from each side's perspective."""
        return (
            self.apply_event(agent_a, agent_b, event, magnitude, now, note),
            self.apply_event(agent_b, agent_a, event, magnitude, now, note),
        )

    def decay(self, now: float, inactivity: float, rate: float) -> int:
        """Pulls long-inactive relationships toward neutral. Returns how many moved."""
        moved = 0
        with self._lock:
            for rel in self._edges.values():
                if now - rel.last_interaction_time < inactivity:
                    continue
                if rel.trust == 0.0 and rel.affection == 0.0:
                    continue
                rel.trust = _toward_zero(rel.trust, rate)
                rel.affection = _toward_zero(rel.affection, rate)
                moved += 1
        return moved

    def forget_agent(self, agent_id: str) -> None:
        """Drops every record involving a resident removed from the registry."""
        with self._lock:
            for key in [k for k in self._edges if agent_id in k]:
                del self._edges[key]

    def _remember(self, rel: Relationship, memory: InteractionMemory) -> None:
        rel.memories.append(memory)
        if len(rel.memories) > self.memory_limit:
            victim = min(
                range(len(rel.memories)),
                key=lambda i: (rel.memories[i].importance, rel.memories[i].time),
            )
            del rel.memories[victim]

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "memory_limit": self.memory_limit,
                "edges": [rel.to_dict() for _, rel in sorted(self._edges.items())],
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipGraph":
        graph = cls(memory_limit=int(data.get("memory_limit", 10)))
        for raw in data.get("edges", []):
            rel = Relationship.from_dict(raw)
            graph._edges[(rel.from_id, rel.to_id)] = rel
        return graph


def _toward_zero(value: float, rate: float) -> float:
    if value > 0:
        return max(0.0, value - rate)
    return min(0.0, value + rate)
