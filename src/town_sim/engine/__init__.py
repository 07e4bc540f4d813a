"""town_sim engine: clock, scheduling, decision queue and the tick loop.

  ADVANCE / PERIODIC: game time moves on; hunger, pools and upkeep follow.
  SCHEDULE / DECIDE: eligible residents are dispatched concurrently through the queue.
  ACT: decisions are applied to the world in a deterministic order.
"""
from town_sim.engine.tick_engine import TickEngine, TickReport

__all__ = ["TickEngine", "TickReport"]
