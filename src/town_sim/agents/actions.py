"""Closed set of actions a resident can take, plus decision request/result values.

Every action is its own frozen dataclass carrying only the fields it
needs; ``ACTION_TYPES`` maps the wire tag to the class.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union

from town_sim.utils.types import DecisionKind, ItemType, Location, Priority


@dataclass(frozen=True)
class Idle:
    tag: ClassVar[str] = "idle"


@dataclass(frozen=True)
class Move:
    destination: Location
    tag: ClassVar[str] = "move"


@dataclass(frozen=True)
class Eat:
    item: ItemType
    tag: ClassVar[str] = "eat"


@dataclass(frozen=True)
class Buy:
    item: ItemType
    quantity: int = 1
    tag: ClassVar[str] = "buy"


@dataclass(frozen=True)
class Sell:
    item: ItemType
    quantity: int = 1
    tag: ClassVar[str] = "sell"


@dataclass(frozen=True)
class Mine:
    tag: ClassVar[str] = "mine"


@dataclass(frozen=True)
class Fish:
    tag: ClassVar[str] = "fish"


@dataclass(frozen=True)
class Plant:
    seed: ItemType
    tag: ClassVar[str] = "plant"


@dataclass(frozen=True)
class Harvest:
    tag: ClassVar[str] = "harvest"


@dataclass(frozen=True)
class Talk:
    target_id: str
    tone: str = "friendly"
    tag: ClassVar[str] = "talk"


@dataclass(frozen=True)
class Gift:
    target_id: str
    item: ItemType
    quantity: int = 1
    tag: ClassVar[str] = "gift"


@dataclass(frozen=True)
class Vote:
    target_id: str
    tag: ClassVar[str] = "vote"


Action = Union[Idle, Move, Eat, Buy, Sell, Mine, Fish, Plant, Harvest, Talk, Gift, Vote]

ACTION_TYPES: dict[str, type] = {
    cls.tag: cls
    for cls in (Idle, Move, Eat, Buy, Sell, Mine, Fish, Plant, Harvest, Talk, Gift, Vote)
}

TALK_TONES = ("friendly", "cooperative", "hostile")

# actions only meaningful at a fixed site
SITE_OF: dict[str, Location] = {
    Buy.tag: Location.SHOP,
    Sell.tag: Location.SHOP,
    Mine.tag: Location.MINE,
    Fish.tag: Location.FISHING_SPOT,
    Plant.tag: Location.FARM,
    Harvest.tag: Location.FARM,
}

# which actions each decision kind may return
ALLOWED_ACTIONS: dict[DecisionKind, tuple[str, ...]] = {
    DecisionKind.NEXT_ACTION: (
        Idle.tag, Move.tag, Eat.tag, Buy.tag, Sell.tag, Mine.tag,
        Fish.tag, Plant.tag, Harvest.tag, Talk.tag, Gift.tag,
    ),
    DecisionKind.CONVERSATION_REPLY: (Talk.tag, Gift.tag, Idle.tag),
    DecisionKind.VOTE: (Vote.tag, Idle.tag),
}


_request_ids = itertools.count(1)


@dataclass(frozen=True)
class DecisionRequest:
    agent_id: str
    kind: DecisionKind
    priority: Priority
    snapshot: Mapping[str, Any]
    created_at: float
    request_id: int = field(default_factory=lambda: next(_request_ids))

    @classmethod
    def build(
        cls,
        agent_id: str,
        kind: DecisionKind,
        priority: Priority,
        snapshot: dict[str, Any],
        created_at: float,
    ) -> "DecisionRequest":
        return cls(
            agent_id=agent_id,
            kind=kind,
            priority=priority,
            snapshot=MappingProxyType(dict(snapshot)),
            created_at=created_at,
        )


@dataclass(frozen=True)
class Decision:
    action: Action
    rationale: str = ""
    emotion: str | None = None
    source: str = "provider"
    """One of provider, cache, fallback."""
    fallback_reason: str = ""

    @property
    def used_fallback(self) -> bool:
        return self.source == "fallback"
