"""Process-wide holder for the most recently fetched exchange rate.

Construct one RateCache at startup and inject it into the RateProvider.
The cache keeps a single snapshot slot; ``put`` replaces the snapshot
object as a whole under a lock, so a reader sees either the old snapshot
or the new one, never a mix.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from equity_metrics.models import ExchangeRateSnapshot

DEFAULT_TTL = 1800    # 30 minutes


class RateCache:
    """Single-slot, TTL-aware exchange rate cache."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._snapshot: ExchangeRateSnapshot | None = None
        self._lock = threading.Lock()

    def is_fresh(self, snapshot: ExchangeRateSnapshot) -> bool:
        return (self.clock() - snapshot.observed_at) < self.ttl_seconds

    def get(self, allow_stale: bool = False) -> ExchangeRateSnapshot | None:
        """Return the cached snapshot.

        Only fresh snapshots are returned unless ``allow_stale`` is set,
        in which case any snapshot ever stored is returned (best effort).
        """
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            return None
        if allow_stale or self.is_fresh(snapshot):
            return snapshot
        return None

    def put(self, snapshot: ExchangeRateSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None
