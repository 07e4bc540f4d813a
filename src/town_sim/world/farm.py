from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from town_sim.errors import NothingToHarvest, PlotOccupied
from town_sim.utils.types import ItemType


@dataclass
class Plot:
    crop: ItemType
    planted_at: float
    ready_at: float

    def is_ready(self, now: float) -> bool:
        return now >= self.ready_at


class FarmPlots:
    """One plot per resident; crops ripen on game time."""

    def __init__(self) -> None:
        self._plots: dict[str, Plot] = {}
        self.lock = threading.RLock()

    def get(self, agent_id: str) -> Plot | None:
        with self.lock:
            return self._plots.get(agent_id)

    def plant(self, agent_id: str, crop: ItemType, now: float, growth_s: float) -> Plot:
        with self.lock:
            if agent_id in self._plots:
                raise PlotOccupied(agent_id)
            plot = Plot(crop=crop, planted_at=now, ready_at=now + growth_s)
            self._plots[agent_id] = plot
            return plot

    def check_harvest(self, agent_id: str, now: float) -> Plot:
        with self.lock:
            plot = self._plots.get(agent_id)
            if plot is None or not plot.is_ready(now):
                raise NothingToHarvest(f"nothing ready to harvest agent_id={agent_id}")
            return plot

    def clear(self, agent_id: str) -> Plot | None:
        with self.lock:
            return self._plots.pop(agent_id, None)

    def to_dict(self) -> dict[str, Any]:
        with self.lock:
            return {
                agent_id: {"crop": p.crop.value, "planted_at": p.planted_at, "ready_at": p.ready_at}
                for agent_id, p in sorted(self._plots.items())
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FarmPlots":
        farm = cls()
        for agent_id, raw in data.items():
            farm._plots[agent_id] = Plot(
                crop=ItemType(raw["crop"]),
                planted_at=float(raw["planted_at"]),
                ready_at=float(raw["ready_at"]),
            )
        return farm
