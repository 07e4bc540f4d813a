from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any, Iterable

from town_sim.config.settings import AppSettings
from town_sim.db.connection import DBClient
from town_sim.db.recorder import EventRecorder
from town_sim.db.repository import LedgerRepository
from town_sim.engine.tick_engine import TickReport
from town_sim.llm.ollama_adapter import OllamaProvider
from town_sim.metrics.engine import MetricsEngine
from town_sim.world.simulator import WorldSimulator


class ExperimentRunner:
    """Runs one simulated town per seed and writes per-run artifacts.

    PostgreSQL is optional: with ``DB_ENABLED`` off, events stay in memory
    and only the files under ``output_dir`` are written.
    """

    def __init__(self, settings: AppSettings) -> None:
        self.logger = logging.getLogger("town_sim.runner")
        self.settings = settings
        self.db: DBClient | None = None
        self.repo: LedgerRepository | None = None
        if settings.db.enabled:
            self.db = DBClient(settings.db)
            self.db.connect()
            self.repo = LedgerRepository(self.db)
            self.repo.ensure_schema()
        self.metrics_engine = MetricsEngine()

    def run_many(self, seeds: Iterable[int]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        seeds_list = list(seeds)
        self.logger.info("Starting batch execution: run_count=%d", len(seeds_list))
        batch_start = time.perf_counter()
        for idx, seed in enumerate(seeds_list, start=1):
            self.logger.info("Run queued: index=%d/%d seed=%d", idx, len(seeds_list), seed)
            rows.append(self.run_one(seed))
        metrics_path = self.metrics_engine.write_metrics_csv(
            self.settings.output_dir, rows, filename="metrics.csv"
        )
        self.logger.info(
            "Batch completed in %.2fs. Aggregate metrics at %s",
            time.perf_counter() - batch_start,
            metrics_path,
        )
        return rows

    def run_one(self, seed: int) -> dict[str, Any]:
        run_id = self._run_id(seed)
        run_start = time.perf_counter()
        self.logger.info("Starting run: %s", run_id)
        if self.repo is not None:
            self.repo.create_run(
                run_id=run_id,
                seed=seed,
                agents=self.settings.simulation.agent_count,
                ticks=self.settings.simulation.ticks,
                model=self.settings.ollama.llm_model if self.settings.ollama.enabled else "rules",
            )

        reports, sim, recorder = asyncio.run(self._simulate(run_id, seed))
        recorder.flush()
        snapshot = sim.snapshot()
        if self.repo is not None:
            self.repo.save_snapshot(run_id, snapshot["time"], snapshot)
            events = self.repo.get_events_for_run(run_id)
        else:
            events = [
                {"time": r.time, "kind": r.kind, "agent_id": r.agent_id, "payload": r.payload}
                for r in recorder.records
            ]

        run_metrics = self.metrics_engine.compute(events, sim.town, reports)
        self.logger.info("Metrics computed for run: %s -> %s", run_id, run_metrics)
        self._write_run_artifacts(run_id, events, snapshot, reports, run_metrics)
        self.logger.info("Completed run: %s in %.2fs", run_id, time.perf_counter() - run_start)
        return {"run_id": run_id, "seed": seed, **run_metrics}

    def close(self) -> None:
        if self.db is not None:
            self.db.close()

    async def _simulate(self, run_id: str, seed: int) -> tuple[list[TickReport], WorldSimulator, EventRecorder]:
        if not self.settings.ollama.enabled:
            sim = WorldSimulator(run_id, seed, self.settings, provider=None)
            recorder = EventRecorder(run_id, sink=self.repo).attach(sim.ctx.bus)
            return await sim.run(), sim, recorder

        provider = OllamaProvider(self.settings.ollama, max_connections=self.settings.queue.max_concurrent)
        if not provider.ping():
            self.logger.warning("Ollama unavailable; decisions will use the rule-based fallback")
        async with provider:
            sim = WorldSimulator(run_id, seed, self.settings, provider=provider)
            recorder = EventRecorder(run_id, sink=self.repo).attach(sim.ctx.bus)
            reports = await sim.run()
        self.logger.info("Provider calls run_id=%s calls=%d", run_id, provider.calls)
        return reports, sim, recorder

    def _write_run_artifacts(
        self,
        run_id: str,
        events: list[dict[str, Any]],
        snapshot: dict[str, Any],
        reports: list[TickReport],
        run_metrics: dict[str, float],
    ) -> None:
        run_dir = self.settings.output_dir / run_id
        write = self.metrics_engine.write_json
        write(run_dir / "events.json", events)
        write(run_dir / "world.json", snapshot)
        write(run_dir / "ticks.json", [asdict(r) for r in reports])
        write(run_dir / "action_mix.json", self.metrics_engine.action_mix(events))
        write(run_dir / "metrics.json", run_metrics)

    def _run_id(self, seed: int) -> str:
        ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        return f"{ts}_town_seed{seed}"


def parse_seed_list(raw: str) -> list[int]:
    out: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        out.append(int(part))
    return out
