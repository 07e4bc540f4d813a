"""Priority-ordered, concurrency-bounded dispatcher of decision requests.

``max_concurrent`` worker tasks each hold at most one provider call, so
no more than that many calls are ever in flight. Workers always take the
most urgent pending request (FIFO within a priority tier). Provider
failures, timeouts and malformed answers all end in a valid Decision via
the validator's rule-based fallback; nothing here raises past
``enqueue`` except a duplicate request for the same resident.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable

from town_sim.agents.actions import Decision, DecisionRequest
from town_sim.config.settings import DecisionQueueSettings
from town_sim.engine.clock import Clock
from town_sim.engine.validator import DecisionResponseValidator
from town_sim.errors import DuplicateRequestError, ProviderError, ProviderTimeout
from town_sim.llm.base import BatchReasoningProvider, ReasoningProvider

logger = logging.getLogger("town_sim.queue")

CacheKey = tuple[str, int, int, str]


@dataclass
class QueueStats:
    enqueued: int = 0
    provider_calls: int = 0
    provider_failures: int = 0
    fallbacks: int = 0
    cache_hits: int = 0
    cancelled: int = 0
    in_flight: int = 0
    max_in_flight: int = 0


@dataclass
class _Entry:
    request: DecisionRequest
    future: asyncio.Future
    state: str = "pending"
    enqueued_at: float = field(default_factory=time.perf_counter)


class DecisionRequestQueue:
    def __init__(
        self,
        provider: ReasoningProvider | None,
        validator: DecisionResponseValidator,
        render: Callable[[DecisionRequest], str],
        cfg: DecisionQueueSettings,
        clock: Clock,
    ) -> None:
        self.provider = provider
        self.validator = validator
        self.render = render
        self.cfg = cfg
        self.clock = clock
        self.stats = QueueStats()
        self._heap: list[tuple[int, int, _Entry]] = []
        self._seq = itertools.count()
        self._agents: dict[str, _Entry] = {}
        self._cache: dict[CacheKey, tuple[float, Decision]] = {}
        self._cond: asyncio.Condition | None = None
        self._workers: list[asyncio.Task] = []
        self._closed = False

    # ===================================================================
    # Lifecycle
    # ===================================================================

    async def start(self) -> asyncio.Condition:
        if self._workers and self._cond is not None:
            return self._cond
        self._closed = False
        cond = self._cond = asyncio.Condition()
        self._workers = [
            asyncio.create_task(self._worker(i, cond), name=f"decision_worker_{i}")
            for i in range(max(1, self.cfg.max_concurrent))
        ]
        logger.info("Decision queue started workers=%d", len(self._workers))
        return cond

    async def close(self, drain: bool = True) -> None:
        """Stops the workers. Without ``drain`` pending requests get the fallback."""
        if not self._workers or self._cond is None:
            return
        async with self._cond:
            self._closed = True
            if not drain:
                while self._heap:
                    _, _, entry = heapq.heappop(self._heap)
                    self._resolve(entry, self._fallback(entry.request, "queue_closed"))
            self._cond.notify_all()
        await asyncio.gather(*self._workers)
        self._workers = []
        logger.info("Decision queue closed stats=%s", self.stats)

    async def __aenter__(self) -> "DecisionRequestQueue":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ===================================================================
    # Public interface
    # ===================================================================

    async def enqueue(self, request: DecisionRequest) -> Decision | None:
        """Resolves to a Decision, or None if the request was cancelled."""
        if request.agent_id in self._agents:
            raise DuplicateRequestError(request.agent_id)
        self.stats.enqueued += 1

        cached = self._cache_lookup(request)
        if cached is not None:
            self.stats.cache_hits += 1
            logger.debug("Cache hit agent=%s kind=%s", request.agent_id, request.kind.value)
            return cached

        cond = await self.start()
        entry = _Entry(request, asyncio.get_running_loop().create_future())
        self._agents[request.agent_id] = entry
        async with cond:
            heapq.heappush(self._heap, (int(request.priority), next(self._seq), entry))
            cond.notify()
        try:
            return await entry.future
        except asyncio.CancelledError:
            if entry.state == "pending" and self._agents.get(request.agent_id) is entry:
                del self._agents[request.agent_id]
            raise

    def cancel_agent(self, agent_id: str) -> bool:
        """Drops the resident's outstanding request; its awaiter receives None.

        An already dispatched call keeps its slot until the provider answers,
        and that answer is discarded.
        """
        entry = self._agents.get(agent_id)
        if entry is None:
            return False
        if entry.state == "pending":
            del self._agents[agent_id]
        entry.state = "cancelled" if entry.state == "pending" else "cancelled_in_flight"
        if not entry.future.done():
            entry.future.set_result(None)
        self.stats.cancelled += 1
        logger.info("Decision request cancelled agent=%s", agent_id)
        return True

    def in_flight(self, agent_id: str) -> int:
        entry = self._agents.get(agent_id)
        return 1 if entry is not None and entry.state in {"in_flight", "cancelled_in_flight"} else 0

    def outstanding(self, agent_id: str) -> bool:
        return agent_id in self._agents

    # ===================================================================
    # Worker
    # ===================================================================

    async def _worker(self, idx: int, cond: asyncio.Condition) -> None:
        while True:
            async with cond:
                await cond.wait_for(lambda: bool(self._heap) or self._closed)
                if not self._heap:
                    return
                batch = self._pop_batch()
            if not batch:
                continue
            for entry in batch:
                entry.state = "in_flight"
            self.stats.in_flight += 1
            self.stats.max_in_flight = max(self.stats.max_in_flight, self.stats.in_flight)
            try:
                decisions = await self._dispatch(batch)
            finally:
                self.stats.in_flight -= 1
                for entry in batch:
                    if self._agents.get(entry.request.agent_id) is entry:
                        del self._agents[entry.request.agent_id]
            for entry, decision in zip(batch, decisions):
                if entry.state == "cancelled_in_flight":
                    logger.debug("Discarding answer for cancelled agent=%s", entry.request.agent_id)
                    continue
                self._resolve(entry, decision)

    def _pop_batch(self) -> list[_Entry]:
        batch: list[_Entry] = []
        limit = self.cfg.batch_size if isinstance(self.provider, BatchReasoningProvider) else 1
        while self._heap and len(batch) < max(1, limit):
            if batch and self._heap[0][2].request.kind != batch[0].request.kind:
                break
            _, _, entry = heapq.heappop(self._heap)
            if entry.state != "pending" or entry.future.done():
                continue
            batch.append(entry)
        return batch

    async def _dispatch(self, batch: list[_Entry]) -> list[Decision]:
        if self.provider is None:
            # heuristic-only run
            return [self._fallback(e.request, "heuristic_only") for e in batch]
        contexts = [self.render(e.request) for e in batch]
        attempts = max(1, self.cfg.max_retries + 1)
        reason = ""
        for attempt in range(1, attempts + 1):
            t0 = time.perf_counter()
            try:
                self.stats.provider_calls += 1
                raws = await asyncio.wait_for(
                    self._call_provider(contexts), timeout=self.cfg.per_request_timeout_s
                )
                if len(raws) != len(batch):
                    raise ProviderError(f"batch answer size {len(raws)} != {len(batch)}")
                logger.debug(
                    "Provider answered batch=%d latency=%.0fms",
                    len(batch), (time.perf_counter() - t0) * 1000.0,
                )
                break
            except asyncio.TimeoutError:
                reason = ProviderTimeout.__name__
            except ProviderError as exc:
                reason = f"{type(exc).__name__}:{exc}"
            except Exception as exc:
                reason = f"{ProviderError.__name__}:{exc.__class__.__name__}"
            self.stats.provider_failures += 1
            logger.warning(
                "Provider call failed agents=%s attempt=%d/%d reason=%s",
                [e.request.agent_id for e in batch], attempt, attempts, reason,
            )
            if attempt < attempts:
                await asyncio.sleep(self.cfg.retry_backoff_s * attempt)
        else:
            return [self._fallback(e.request, reason) for e in batch]
        # malformed answers go straight to the fallback, never back to the provider
        return [self._accept(raw, e) for raw, e in zip(raws, batch)]

    async def _call_provider(self, contexts: list[str]) -> list[str]:
        if len(contexts) > 1 and isinstance(self.provider, BatchReasoningProvider):
            return list(await self.provider.submit_batch(contexts))
        return [await self.provider.submit(contexts[0])]

    def _accept(self, raw: str, entry: _Entry) -> Decision:
        decision = self.validator.validate(raw, entry.request)
        if decision.used_fallback:
            self.stats.fallbacks += 1
        elif entry.state != "cancelled_in_flight":
            self._cache_store(entry.request, decision)
        return decision

    def _fallback(self, request: DecisionRequest, reason: str) -> Decision:
        self.stats.fallbacks += 1
        return self.validator.fallback(request, reason)

    @staticmethod
    def _resolve(entry: _Entry, decision: Decision) -> None:
        entry.state = "done"
        if not entry.future.done():
            entry.future.set_result(decision)

    # ===================================================================
    # Cache
    # ===================================================================

    def cache_key(self, request: DecisionRequest) -> CacheKey:
        snap = request.snapshot
        hunger_bucket = int(float(snap.get("hunger", 0.0)) // max(self.cfg.cache_hunger_bucket, 1e-9))
        money_bucket = int(int(snap.get("money", 0)) // max(self.cfg.cache_money_bucket, 1))
        return (request.agent_id, hunger_bucket, money_bucket, request.kind.value)

    def _cache_lookup(self, request: DecisionRequest) -> Decision | None:
        if self.cfg.cache_ttl_s <= 0:
            return None
        key = self.cache_key(request)
        hit = self._cache.get(key)
        if hit is None:
            return None
        stored_at, decision = hit
        if self.clock.now() - stored_at > self.cfg.cache_ttl_s:
            del self._cache[key]
            return None
        return replace(decision, source="cache")

    def _cache_store(self, request: DecisionRequest, decision: Decision) -> None:
        if self.cfg.cache_ttl_s <= 0:
            return
        self._cache[self.cache_key(request)] = (self.clock.now(), decision)
