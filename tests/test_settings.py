from pathlib import Path

from town_sim.config.settings import AppSettings


def test_defaults(monkeypatch):
    for name in ("DB_ENABLED", "LLM_ENABLED", "AGENT_COUNT", "MAX_CONCURRENT_LLM", "OUTPUT_DIR"):
        monkeypatch.delenv(name, raising=False)
    settings = AppSettings.from_env()
    assert settings.db.enabled is False
    assert settings.ollama.enabled is True
    assert settings.simulation.agent_count == 8
    assert settings.queue.max_concurrent == 6
    assert settings.output_dir == Path("outputs")


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DB_ENABLED", "true")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("LLM_ENABLED", "0")
    monkeypatch.setenv("AGENT_COUNT", "12")
    monkeypatch.setenv("TICK_SECONDS", "30")
    monkeypatch.setenv("MAX_CONCURRENT_LLM", "2")
    monkeypatch.setenv("DECISION_CACHE_TTL_S", "0")
    settings = AppSettings.from_env()
    assert settings.db.enabled is True
    assert "port=6543" in settings.db.dsn
    assert settings.ollama.enabled is False
    assert settings.simulation.agent_count == 12
    assert settings.simulation.tick_seconds == 30.0
    assert settings.queue.max_concurrent == 2
    assert settings.queue.cache_ttl_s == 0.0
