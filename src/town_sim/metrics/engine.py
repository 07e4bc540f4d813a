from __future__ import annotations

import csv
import json
from collections import Counter, defaultdict
from pathlib import Path
from statistics import mean
from typing import Any, Iterable

from town_sim.agents.actions import ACTION_TYPES
from town_sim.engine.tick_engine import TickReport
from town_sim.social.relationships import Classification
from town_sim.world.town import Town


class MetricsEngine:
    """Per-run summary numbers computed from recorded events and final state.

    ``events`` use the shape returned by ``LedgerRepository.get_events_for_run``
    (``time``, ``kind``, ``agent_id``, ``payload``), so the same code works on
    an in-memory run and on one read back from PostgreSQL.
    """

    def compute(
        self,
        events: list[dict[str, Any]],
        town: Town,
        reports: list[TickReport] | None = None,
    ) -> dict[str, float]:
        reports = reports or []
        residents = list(town.registry)
        alive = [s for s in residents if s.is_alive]

        applied = [e for e in events if e["kind"] == "DecisionApplied"]
        failed = [e for e in events if e["kind"] == "ActionFailed"]
        decisions = len(applied) + len(failed)

        sources: Counter = Counter()
        for report in reports:
            sources.update(report.sources)
        total_sources = sum(sources.values())

        money = [s.money for s in residents]
        out = {
            "residents": float(len(residents)),
            "survival_rate": len(alive) / max(1, len(residents)),
            "deaths": float(sum(1 for e in events if e["kind"] == "AgentDied")),
            "mean_hunger_alive": mean(s.hunger for s in alive) if alive else 0.0,
            "mean_money": mean(money) if money else 0.0,
            "money_gini": self._gini(money),
            "inventory_units": float(sum(s.inventory.total_count() for s in residents)),
            "decisions": float(decisions),
            "action_failure_rate": len(failed) / max(1, decisions),
            "fallback_rate": sources.get("fallback", 0) / max(1, total_sources),
            "cache_hit_rate": sources.get("cache", 0) / max(1, total_sources),
            "moves": float(sum(1 for e in events if e["kind"] == "AgentMoved")),
            "trade_volume": float(self._trade_volume(applied)),
            "action_diversity": self._action_diversity(applied),
            "mean_tick_ms": mean(r.elapsed_ms for r in reports) if reports else 0.0,
        }
        out.update(self._social_structure(town))
        return {k: round(float(v), 4) for k, v in out.items()}

    def action_mix(self, events: Iterable[dict[str, Any]]) -> dict[str, int]:
        mix: dict[str, int] = defaultdict(int)
        for e in events:
            if e["kind"] == "DecisionApplied":
                mix[e["payload"].get("action", "?")] += 1
        return dict(sorted(mix.items()))

    def write_metrics_csv(
        self,
        output_dir: Path,
        rows: list[dict[str, Any]],
        filename: str = "metrics.csv",
    ) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / filename
        if not rows:
            return path
        keys = list(rows[0].keys())
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=keys)
            writer.writeheader()
            writer.writerows(rows)
        return path

    def write_json(self, path: Path, data: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=True), encoding="utf-8")
        return path

    # ==================================================================

    def _gini(self, values: list[int]) -> float:
        """0 means everyone holds the same amount of money."""
        if not values or sum(values) == 0:
            return 0.0
        ordered = sorted(values)
        n = len(ordered)
        weighted = sum((i + 1) * v for i, v in enumerate(ordered))
        return (2.0 * weighted) / (n * sum(ordered)) - (n + 1.0) / n

    def _trade_volume(self, applied: list[dict[str, Any]]) -> int:
        total = 0
        for e in applied:
            details = e["payload"].get("details", {})
            total += int(details.get("cost", 0)) + int(details.get("earned", 0))
        return total

    def _action_diversity(self, applied: list[dict[str, Any]]) -> float:
        """Fraction of the action vocabulary residents actually used, 0..1."""
        kinds = {e["payload"].get("action") for e in applied}
        return len(kinds) / len(ACTION_TYPES)

    def _social_structure(self, town: Town) -> dict[str, float]:
        edges = town.relationships.to_dict()["edges"]
        classes: Counter = Counter()
        for raw in edges:
            rel = town.relationships.get(raw["from_id"], raw["to_id"])
            if rel is not None:
                classes[rel.classification] += 1
        return {
            "relationships": float(len(edges)),
            "mean_trust": mean(e["trust"] for e in edges) if edges else 0.0,
            "mean_affection": mean(e["affection"] for e in edges) if edges else 0.0,
            "friendships": float(classes[Classification.FRIEND] + classes[Classification.CLOSE_FRIEND]),
            "enmities": float(classes[Classification.ENEMY]),
        }
