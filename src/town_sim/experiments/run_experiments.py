from __future__ import annotations

import logging
import os

from town_sim.config.settings import AppSettings
from town_sim.experiments.runner import ExperimentRunner, parse_seed_list


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger = logging.getLogger("town_sim.entrypoint")

    settings = AppSettings.from_env()
    settings.output_dir.mkdir(parents=True, exist_ok=True)

    seeds = parse_seed_list(os.getenv("EXPERIMENT_SEEDS", "11,42,97"))
    logger.info(
        "Loaded experiment plan: seeds=%s residents=%d ticks=%d llm=%s",
        seeds,
        settings.simulation.agent_count,
        settings.simulation.ticks,
        settings.ollama.llm_model if settings.ollama.enabled else "disabled",
    )

    runner = ExperimentRunner(settings)
    try:
        runner.run_many(seeds)
    finally:
        runner.close()


if __name__ == "__main__":
    main()
