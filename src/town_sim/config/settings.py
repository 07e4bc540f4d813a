from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class DBSettings:
    host: str
    port: int
    name: str
    user: str
    password: str
    enabled: bool = False

    @property
    def dsn(self) -> str:
        return (
            f"dbname={self.name} user={self.user} password={self.password} "
            f"host={self.host} port={self.port}"
        )


@dataclass(frozen=True)
class OllamaSettings:
    host: str
    llm_model: str
    llm_temperature: float = 0.4
    timeout_seconds: int = 60
    max_retries: int = 2
    retry_backoff_seconds: float = 1.5
    enabled: bool = True
    """When false every decision comes from the rule-based policy."""


@dataclass(frozen=True)
class SimulationSettings:
    """Game-time quantities are in game seconds."""

    agent_count: int = 8
    ticks: int = 600
    tick_seconds: float = 60.0
    starting_money: int = 100
    hunger_decay_per_minute: float = 0.5
    seconds_per_age_year: float = 3600.0
    min_start_age: float = 18.0
    max_start_age: float = 25.0
    memory_limit: int = 20
    relationship_memory_limit: int = 10
    hungry_threshold: float = 40.0
    starvation_threshold: float = 15.0
    poor_threshold: int = 30
    pool_refresh_interval_s: float = 3600.0
    relationship_decay_after_s: float = 6 * 3600.0
    relationship_decay_rate: float = 0.05
    log_tick_interval: int = 10


@dataclass(frozen=True)
class DecisionQueueSettings:
    """Controls the async decision pipeline."""

    max_concurrent: int = 6
    """Upper bound on simultaneously in-flight provider calls."""
    per_request_timeout_s: float = 25.0
    """Wall-clock timeout per provider call; exceeding it counts as a provider failure."""
    max_retries: int = 1
    """Extra provider attempts before the rule-based fallback fires."""
    retry_backoff_s: float = 0.5
    cooldown_s: float = 120.0
    """Game seconds between two decisions of the same resident."""
    cache_ttl_s: float = 300.0
    """Game seconds a cached provider decision stays valid."""
    cache_hunger_bucket: float = 10.0
    cache_money_bucket: int = 25
    batch_size: int = 1
    """Max same-kind requests sent in one provider call when batching is supported."""
    max_context_chars: int = 2000
    """Upper bound on the serialized decision context."""


@dataclass(frozen=True)
class AppSettings:
    db: DBSettings
    ollama: OllamaSettings
    simulation: SimulationSettings
    queue: DecisionQueueSettings
    output_dir: Path

    @staticmethod
    def from_env() -> "AppSettings":
        return AppSettings(
            db=DBSettings(
                host=os.getenv("DB_HOST", "localhost"),
                port=int(os.getenv("DB_PORT", "5432")),
                name=os.getenv("DB_NAME", "town"),
                user=os.getenv("DB_USER", "town_user"),
                password=os.getenv("DB_PASSWORD", "town_pass"),
                enabled=os.getenv("DB_ENABLED", "0").lower() in {"1", "true", "yes"},
            ),
            ollama=OllamaSettings(
                host=os.getenv("OLLAMA_HOST", "http://localhost:11434"),
                llm_model=os.getenv("LLM_MODEL", "qwen2.5:1.5b"),
                llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.4")),
                timeout_seconds=int(os.getenv("OLLAMA_TIMEOUT_SECONDS", "60")),
                max_retries=int(os.getenv("OLLAMA_MAX_RETRIES", "2")),
                retry_backoff_seconds=float(
                    os.getenv("OLLAMA_RETRY_BACKOFF_SECONDS", "1.5")
                ),
                enabled=os.getenv("LLM_ENABLED", "1").lower() in {"1", "true", "yes"},
            ),
            simulation=SimulationSettings(
                agent_count=int(os.getenv("AGENT_COUNT", "8")),
                ticks=int(os.getenv("TICKS", "600")),
                tick_seconds=float(os.getenv("TICK_SECONDS", "60")),
                starting_money=int(os.getenv("STARTING_MONEY", "100")),
                hunger_decay_per_minute=float(
                    os.getenv("HUNGER_DECAY_PER_MINUTE", "0.5")
                ),
                seconds_per_age_year=float(
                    os.getenv("SECONDS_PER_AGE_YEAR", "3600")
                ),
                hungry_threshold=float(os.getenv("HUNGRY_THRESHOLD", "40")),
                starvation_threshold=float(os.getenv("STARVATION_THRESHOLD", "15")),
                poor_threshold=int(os.getenv("POOR_THRESHOLD", "30")),
                pool_refresh_interval_s=float(
                    os.getenv("POOL_REFRESH_INTERVAL_S", "3600")
                ),
                log_tick_interval=int(os.getenv("LOG_TICK_INTERVAL", "10")),
            ),
            queue=DecisionQueueSettings(
                max_concurrent=int(os.getenv("MAX_CONCURRENT_LLM", "6")),
                per_request_timeout_s=float(
                    os.getenv("DECISION_REQUEST_TIMEOUT_S", "25.0")
                ),
                max_retries=int(os.getenv("DECISION_MAX_RETRIES", "1")),
                retry_backoff_s=float(os.getenv("DECISION_RETRY_BACKOFF_S", "0.5")),
                cooldown_s=float(os.getenv("DECISION_COOLDOWN_S", "120")),
                cache_ttl_s=float(os.getenv("DECISION_CACHE_TTL_S", "300")),
                batch_size=int(os.getenv("DECISION_BATCH_SIZE", "1")),
                max_context_chars=int(os.getenv("DECISION_MAX_CONTEXT_CHARS", "2000")),
            ),
            output_dir=Path(os.getenv("OUTPUT_DIR", "outputs")),
        )
