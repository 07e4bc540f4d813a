from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class ReasoningProvider(Protocol):
    """Opaque, unreliable, rate-limited text-in/text-out decision source."""

    async def submit(self, context: str) -> str:
        ...


@runtime_checkable
class BatchReasoningProvider(ReasoningProvider, Protocol):
    async def submit_batch(self, contexts: Sequence[str]) -> list[str]:
        ...
