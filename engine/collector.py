from __future__ import annotations
import threading

from schemas.models import ProbeOutcome
from .errors import DuplicateIndexError


class ResultCollector:
    """Write-once table of outcomes keyed by target index.

    Outcomes arrive in completion order from several worker threads;
    snapshot() always hands them back in input order.
    """

    def __init__(self, total: int | None = None):
        self.total = total
        self._outcomes: dict[int, ProbeOutcome] = {}
        self._lock = threading.Lock()

    def record(self, outcome: ProbeOutcome) -> None:
        index = outcome.index
        if index < 0 or (self.total is not None and index >= self.total):
            raise ValueError(f"target index {index} out of range (total={self.total})")
        with self._lock:
            if index in self._outcomes:
                raise DuplicateIndexError(index)
            self._outcomes[index] = outcome

    def snapshot(self) -> list[ProbeOutcome]:
        with self._lock:
            items = list(self._outcomes.items())
        return [o for _, o in sorted(items, key=lambda kv: kv[0])]

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def __contains__(self, index: int) -> bool:
        with self._lock:
            return index in self._outcomes
