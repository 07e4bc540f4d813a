from __future__ import annotations

import random
from dataclasses import dataclass, field

from town_sim.config.settings import DecisionQueueSettings, SimulationSettings
from town_sim.engine.clock import Clock, SimulationClock
from town_sim.engine.events import EventBus
from town_sim.world.catalog import DEFAULT_CATALOG, Catalog


@dataclass
class SimulationContext:
    """Everything a component needs from its surroundings, passed explicitly.

    Two contexts never share state, so independent towns can run side by
    side in one process.
    """

    sim: SimulationSettings = field(default_factory=SimulationSettings)
    queue: DecisionQueueSettings = field(default_factory=DecisionQueueSettings)
    clock: Clock = field(default_factory=SimulationClock)
    bus: EventBus = field(default_factory=EventBus)
    rng: random.Random = field(default_factory=random.Random)
    catalog: Catalog = field(default_factory=lambda: DEFAULT_CATALOG)

    @classmethod
    def seeded(cls, seed: int, **kwargs) -> "SimulationContext":
        return cls(rng=random.Random(seed), **kwargs)
