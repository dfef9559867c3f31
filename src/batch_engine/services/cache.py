"""In-memory TTL caches for geocoding and routing lookups.

Values are re-derivable from their external source, so nothing survives a
process restart. Instances are built explicitly and handed to the resolver
and provider that use them.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Thread-safe key/value store with per-entry expiry."""

    def __init__(
        self,
        name: str,
        default_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache '{self.name}' swept {len(expired)} expired entries")
        return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }


@dataclass(slots=True)
class CacheRegistry:
    """The caches one orchestrator owns."""

    geocode: TTLCache
    matrix: TTLCache

    @classmethod
    def create(
        cls,
        *,
        geocode_ttl_seconds: float = 3600.0,
        matrix_ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CacheRegistry":
        return cls(
            geocode=TTLCache("geocode", geocode_ttl_seconds, clock=clock),
            matrix=TTLCache("matrix", matrix_ttl_seconds, clock=clock),
        )

    def cleanup(self) -> int:
        return self.geocode.cleanup() + self.matrix.cleanup()

    def clear(self) -> None:
        self.geocode.clear()
        self.matrix.clear()

    def stats(self) -> dict[str, dict[str, Any]]:
        return {"geocode": self.geocode.stats(), "matrix": self.matrix.stats()}
