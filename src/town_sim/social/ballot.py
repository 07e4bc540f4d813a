from __future__ import annotations

import threading
from collections import Counter


class Ballot:
    """One open town vote (hall meetings, game rounds). One vote per resident."""

    def __init__(self, topic: str, candidates: list[str], opened_at: float) -> None:
        self.topic = topic
        self.candidates = list(candidates)
        self.opened_at = opened_at
        self._votes: dict[str, str] = {}
        self._lock = threading.Lock()

    def cast(self, voter_id: str, target_id: str) -> bool:
        """Records or replaces the voter's choice. False if target is not a candidate."""
        if target_id not in self.candidates:
            return False
        with self._lock:
            self._votes[voter_id] = target_id
        return True

    def tally(self) -> Counter:
        with self._lock:
            return Counter(self._votes.values())

    def winner(self) -> str | None:
        """Most votes; ties broken by candidate order. None if nobody voted."""
        counts = self.tally()
        if not counts:
            return None
        best = max(counts.values())
        return next(c for c in self.candidates if counts.get(c) == best)

    def voters(self) -> list[str]:
        with self._lock:
            return sorted(self._votes)
