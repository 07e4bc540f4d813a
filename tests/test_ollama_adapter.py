import asyncio

import pytest
import requests

from town_sim.config.settings import OllamaSettings
from town_sim.errors import ProviderError, ProviderTimeout
from town_sim.llm import ollama_adapter
from town_sim.llm.ollama_adapter import OllamaProvider

SETTINGS = OllamaSettings(
    host="http://ollama:11434",
    llm_model="qwen2.5:1.5b",
    max_retries=2,
    retry_backoff_seconds=0.0,
)


class FakeResponse:
    def __init__(self, data, status_error=None):
        self._data = data
        self._status_error = status_error

    def raise_for_status(self):
        if self._status_error is not None:
            raise self._status_error

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


def patch_post(monkeypatch, *outcomes):
    calls = []
    queue = list(outcomes)

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(ollama_adapter.requests, "post", fake_post)
    return calls


def test_submit_returns_stripped_response(monkeypatch):
    calls = patch_post(monkeypatch, FakeResponse({"response": '  {"action": "idle"}\n'}))
    provider = OllamaProvider(SETTINGS)
    assert asyncio.run(provider.submit("context")) == '{"action": "idle"}'
    url, payload, timeout = calls[0]
    assert url == "http://ollama:11434/api/generate"
    assert payload["model"] == "qwen2.5:1.5b"
    assert payload["format"] == "json"
    assert payload["stream"] is False
    assert timeout == SETTINGS.timeout_seconds
    assert provider.calls == 1


def test_timeout_is_not_retried(monkeypatch):
    calls = patch_post(monkeypatch, requests.exceptions.ReadTimeout("slow"))
    with pytest.raises(ProviderTimeout):
        OllamaProvider(SETTINGS)._sync_generate("context")
    assert len(calls) == 1


def test_connection_errors_are_retried_then_reported(monkeypatch):
    calls = patch_post(monkeypatch, requests.exceptions.ConnectionError("refused"))
    with pytest.raises(ProviderError) as info:
        OllamaProvider(SETTINGS)._sync_generate("context")
    assert not isinstance(info.value, ProviderTimeout)
    assert len(calls) == SETTINGS.max_retries + 1


def test_recovers_after_a_dropped_connection(monkeypatch):
    calls = patch_post(
        monkeypatch,
        requests.exceptions.ConnectionError("reset"),
        FakeResponse({"response": "ok"}),
    )
    assert OllamaProvider(SETTINGS)._sync_generate("context") == "ok"
    assert len(calls) == 2


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse({}, status_error=requests.exceptions.HTTPError("500")),
        FakeResponse(ValueError("not json")),
    ],
)
def test_bad_responses_become_provider_errors(monkeypatch, response):
    patch_post(monkeypatch, response)
    with pytest.raises(ProviderError):
        OllamaProvider(SETTINGS)._sync_generate("context")


def test_ping_checks_the_configured_model(monkeypatch):
    models = {"models": [{"name": "llama3:8b"}]}
    monkeypatch.setattr(ollama_adapter.requests, "get", lambda url, timeout=None: FakeResponse(models))
    assert OllamaProvider(SETTINGS).ping() is False

    models["models"].append({"name": "qwen2.5:1.5b"})
    assert OllamaProvider(SETTINGS).ping() is True


def test_ping_when_server_is_down(monkeypatch):
    def refuse(url, timeout=None):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(ollama_adapter.requests, "get", refuse)
    assert OllamaProvider(SETTINGS).ping() is False


class FakeSessionResponse:
    def __init__(self, data):
        self._data = data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def raise_for_status(self):
        pass

    async def json(self, content_type=None):
        return self._data


class FakeSession:
    def __init__(self, data):
        self._data = data
        self.posts = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return FakeSessionResponse(self._data)

    async def close(self):
        self.closed = True


def test_open_session_is_used_instead_of_requests(monkeypatch):
    requests_calls = patch_post(monkeypatch, FakeResponse({"response": "unused"}))
    session = FakeSession({"response": ' {"action": "mine"} '})
    provider = OllamaProvider(SETTINGS)
    provider._session = session

    async def run():
        answer = await provider.submit("context")
        await provider.close()
        return answer

    assert asyncio.run(run()) == '{"action": "mine"}'
    assert session.posts[0][0] == "http://ollama:11434/api/generate"
    assert session.posts[0][1]["prompt"] == "context"
    assert requests_calls == []
    assert session.closed is True
