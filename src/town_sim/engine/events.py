"""Typed world events and the publish/subscribe bus that carries them.

The core only publishes; renderers, UIs and recorders subscribe. A failing
subscriber is logged and skipped so it can never stall the tick loop.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable

logger = logging.getLogger("town_sim.events")


@dataclass(frozen=True)
class WorldEvent:
    time: float

    @property
    def kind(self) -> str:
        return type(self).__name__

    def as_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class AgentMoved(WorldEvent):
    agent_id: str
    old: str
    new: str


@dataclass(frozen=True)
class HungerChanged(WorldEvent):
    agent_id: str
    before: float
    after: float


@dataclass(frozen=True)
class AgentDied(WorldEvent):
    agent_id: str
    cause: str


@dataclass(frozen=True)
class DecisionApplied(WorldEvent):
    agent_id: str
    action: str
    source: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionFailed(WorldEvent):
    agent_id: str
    action: str
    error: str
    message: str = ""


@dataclass(frozen=True)
class RelationshipUpdated(WorldEvent):
    from_id: str
    to_id: str
    event: str
    trust: float
    affection: float
    classification: str


@dataclass(frozen=True)
class ResourcesRefreshed(WorldEvent):
    site: str
    counts: dict[str, int]


Handler = Callable[[WorldEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type | None, list[Handler]] = defaultdict(list)
        self.published = 0

    def subscribe(self, handler: Handler, kinds: Iterable[type] | None = None) -> None:
        if kinds is None:
            self._handlers[None].append(handler)
            return
        for kind in kinds:
            self._handlers[kind].append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        for handlers in self._handlers.values():
            while handler in handlers:
                handlers.remove(handler)

    def publish(self, event: WorldEvent) -> None:
        self.published += 1
        for handler in [*self._handlers.get(type(event), ()), *self._handlers.get(None, ())]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed kind=%s handler=%r", event.kind, handler)
