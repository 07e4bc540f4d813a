from __future__ import annotations

import logging
from typing import Iterable

from town_sim.engine.events import EventBus, HungerChanged, WorldEvent
from town_sim.utils.types import EventRecord

logger = logging.getLogger("town_sim.recorder")

# per-tick hunger decay would swamp the ledger
DEFAULT_SKIP: tuple[type, ...] = (HungerChanged,)


class EventRecorder:
    """Bus subscriber that buffers world events and flushes them to a sink.

    ``sink`` is anything with ``append_events(list[EventRecord])``; the
    run keeps the buffer in memory when no database is configured.
    """

    def __init__(
        self,
        run_id: str,
        sink=None,
        flush_every: int = 50,
        skip: Iterable[type] = DEFAULT_SKIP,
    ) -> None:
        self.run_id = run_id
        self.sink = sink
        self.flush_every = flush_every
        self.skip = tuple(skip)
        self.records: list[EventRecord] = []
        self._pending: list[EventRecord] = []

    def attach(self, bus: EventBus) -> "EventRecorder":
        bus.subscribe(self.handle)
        return self

    def handle(self, event: WorldEvent) -> None:
        if isinstance(event, self.skip):
            return
        payload = event.as_dict()
        record = EventRecord(
            run_id=self.run_id,
            time=float(payload.pop("time")),
            kind=str(payload.pop("kind")),
            agent_id=payload.pop("agent_id", None),
            payload=payload,
        )
        self.records.append(record)
        if self.sink is not None:
            self._pending.append(record)
            if len(self._pending) >= self.flush_every:
                self.flush()

    def flush(self) -> int:
        if self.sink is None or not self._pending:
            return 0
        batch, self._pending = self._pending, []
        self.sink.append_events(batch)
        logger.debug("Flushed events run_id=%s count=%d", self.run_id, len(batch))
        return len(batch)

    def counts(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for record in self.records:
            out[record.kind] = out.get(record.kind, 0) + 1
        return out
