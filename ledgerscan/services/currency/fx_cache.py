import threading
import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger

DEFAULT_TTL_SECONDS = 12 * 60 * 60


@dataclass(frozen=True)
class _Entry:
    rates: dict[str, float]
    stored_at: float


class FxRateCache:
    """
    Rate tables keyed by base currency, each valid for ``ttl_seconds``.

    Shared by concurrent pipeline runs; a lock guards the map. Two runs that
    refresh the same base at once both write a valid table and the last write
    wins. Expired entries are evicted when read.

    Args:
        ttl_seconds: Entry lifetime
        clock: Monotonic seconds source, injectable for tests
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, base: str) -> dict[str, float] | None:
        base = base.upper()
        with self._lock:
            entry = self._entries.get(base)
            if entry is None:
                return None
            if self.clock() - entry.stored_at > self.ttl_seconds:
                del self._entries[base]
                logger.debug("FX cache entry expired", base=base)
                return None
            return dict(entry.rates)

    def set(self, base: str, rates: dict[str, float]) -> None:
        base = base.upper()
        with self._lock:
            self._entries[base] = _Entry(rates=dict(rates), stored_at=self.clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        """Entry count and age in seconds per base currency"""
        now = self.clock()
        with self._lock:
            return {
                "entries": len(self._entries),
                "ttl_seconds": self.ttl_seconds,
                "ages": {base: now - entry.stored_at for base, entry in self._entries.items()},
            }
