from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import aiohttp
import requests

from town_sim.config.settings import OllamaSettings
from town_sim.errors import ProviderError, ProviderTimeout


class OllamaProvider:
    """Reasoning provider backed by an Ollama server's /api/generate.

    Without an open session, calls go through ``requests`` on a shared
    thread pool so the event loop stays free. Inside ``async with`` an
    aiohttp session is used instead.
    """

    # Shared thread pool; sync requests run here so the async loop stays free
    _thread_pool = ThreadPoolExecutor(max_workers=10, thread_name_prefix="ollama")

    def __init__(self, settings: OllamaSettings, max_connections: int = 6) -> None:
        self._settings = settings
        self._max_connections = max_connections
        self._session: aiohttp.ClientSession | None = None
        self._logger = logging.getLogger("town_sim.ollama")
        self.calls = 0

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "OllamaProvider":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            # force_close: Ollama drops idle keep-alive connections under load
            connector = aiohttp.TCPConnector(limit=self._max_connections, force_close=True)
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"Connection": "close"},
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self._settings.llm_model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {"temperature": self._settings.llm_temperature},
        }

    def _post_with_retry(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with retries on connection errors; timeouts are not retried here."""
        url = f"{self._settings.host}{endpoint}"
        attempts = self._settings.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = requests.post(url, json=payload, timeout=self._settings.timeout_seconds)
                response.raise_for_status()
                return response.json()
            except requests.exceptions.Timeout as exc:
                raise ProviderTimeout("LLM timeout") from exc
            except requests.exceptions.ConnectionError as exc:
                if attempt >= attempts:
                    raise ProviderError(f"Ollama unreachable at {url}") from exc
                self._logger.warning(
                    "Ollama request retrying endpoint=%s attempt=%d/%d error=%s",
                    endpoint, attempt, attempts, exc.__class__.__name__,
                )
                time.sleep(self._settings.retry_backoff_seconds * attempt)
            except requests.exceptions.RequestException as exc:
                raise ProviderError(f"LLM request failed: {exc.__class__.__name__}") from exc
            except ValueError as exc:
                raise ProviderError("LLM returned non-JSON body") from exc
        raise ProviderError(f"Ollama request failed for {endpoint}")

    def _sync_generate(self, prompt: str) -> str:
        """Blocking HTTP call to Ollama via requests."""
        t0 = time.perf_counter()
        self._logger.debug("OLLAMA request  model=%s prompt_len=%d", self._settings.llm_model, len(prompt))
        try:
            data = self._post_with_retry("/api/generate", self._payload(prompt))
        except ProviderError:
            self._logger.warning("OLLAMA failed after %.0fs", time.perf_counter() - t0)
            raise
        text = str(data.get("response", "")).strip()
        self._logger.debug(
            "OLLAMA response latency=%.0fms tokens~%d",
            (time.perf_counter() - t0) * 1000.0, len(text) // 4,
        )
        return text

    async def _session_generate(self, session: aiohttp.ClientSession, prompt: str) -> str:
        url = f"{self._settings.host}/api/generate"
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        try:
            async with session.post(url, json=self._payload(prompt), timeout=timeout) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout("LLM timeout") from exc
        except aiohttp.ClientError as exc:
            raise ProviderError(f"LLM request failed: {exc.__class__.__name__}") from exc
        except ValueError as exc:
            raise ProviderError("LLM returned non-JSON body") from exc
        return str(data.get("response", "")).strip()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, context: str) -> str:
        self.calls += 1
        session = self._session
        if session is not None:
            return await self._session_generate(session, context)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._thread_pool, self._sync_generate, context)

    def ping(self) -> bool:
        """True when the server answers and has the configured model."""
        try:
            resp = requests.get(f"{self._settings.host}/api/tags", timeout=5)
            resp.raise_for_status()
            models = {m.get("name") for m in resp.json().get("models", [])}
        except (requests.exceptions.RequestException, ValueError) as exc:
            self._logger.warning("Ollama not reachable host=%s error=%s",
                                 self._settings.host, exc.__class__.__name__)
            return False
        if self._settings.llm_model not in models:
            self._logger.warning("Ollama model missing model=%s available=%s",
                                 self._settings.llm_model, sorted(m for m in models if m))
            return False
        return True
