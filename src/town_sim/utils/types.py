from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


class Location(str, Enum):
    HOME = "home"
    SHOP = "shop"
    FARM = "farm"
    FISHING_SPOT = "fishing_spot"
    MINE = "mine"
    HALL = "hall"
    STREET = "street"


class ItemType(str, Enum):
    # crops
    CROP_WHEAT = "crop_wheat"
    CROP_RICE = "crop_rice"
    CROP_CARROT = "crop_carrot"
    CROP_BEET = "crop_beet"
    # seeds
    SEED_WHEAT = "seed_wheat"
    SEED_RICE = "seed_rice"
    SEED_CARROT = "seed_carrot"
    SEED_BEET = "seed_beet"
    # fish
    FISH_COMMON = "fish_common"
    FISH_RARE = "fish_rare"
    FISH_SILVER = "fish_silver"
    FISH_GOLDEN = "fish_golden"
    FISH_LEGENDARY = "fish_legendary"
    # minerals
    MINERAL_COPPER = "mineral_copper"
    MINERAL_IRON = "mineral_iron"
    MINERAL_SILVER = "mineral_silver"
    MINERAL_GOLD = "mineral_gold"


class DecisionKind(str, Enum):
    NEXT_ACTION = "next_action"
    CONVERSATION_REPLY = "conversation_reply"
    VOTE = "vote"


class Priority(IntEnum):
    """Lower value dispatches first."""

    STARVATION = 0
    CONVERSATION = 1
    ROUTINE = 2


@dataclass
class MemoryRecord:
    text: str
    importance: float
    time: float
    source_agent: str | None = None


@dataclass
class EventRecord:
    run_id: str
    time: float
    kind: str
    agent_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)


def parse_item(raw: Any) -> ItemType | None:
    try:
        return ItemType(str(raw).strip().lower())
    except ValueError:
        return None


def parse_location(raw: Any) -> Location | None:
    try:
        return Location(str(raw).strip().lower())
    except ValueError:
        return None
