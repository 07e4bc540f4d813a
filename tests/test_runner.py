import csv
import json
from dataclasses import replace

from test_tick_engine import make_settings

from town_sim.experiments.runner import ExperimentRunner, parse_seed_list


def test_parse_seed_list():
    assert parse_seed_list("11, 42,,97 ") == [11, 42, 97]


def test_rules_only_batch_writes_artifacts(tmp_path):
    settings = replace(make_settings(agents=2, ticks=4), output_dir=tmp_path)
    runner = ExperimentRunner(settings)
    rows = runner.run_many([1, 2])
    runner.close()

    assert [r["seed"] for r in rows] == [1, 2]
    assert all(r["survival_rate"] == 1.0 for r in rows)
    assert all(r["fallback_rate"] == 1.0 for r in rows)
    with (tmp_path / "metrics.csv").open(encoding="utf-8") as f:
        assert len(list(csv.DictReader(f))) == 2

    run_dir = tmp_path / rows[0]["run_id"]
    for name in ("events.json", "world.json", "ticks.json", "action_mix.json", "metrics.json"):
        assert (run_dir / name).exists()
    world = json.loads((run_dir / "world.json").read_text(encoding="utf-8"))
    assert world["time"] == 240.0
    assert len(world["agents"]) == 2
