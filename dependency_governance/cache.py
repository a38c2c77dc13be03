"""
Thread-safe TTL cache for registry metadata.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from .models import Metadata
from .time_utils import utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    """Cache performance counters."""

    hits: int = 0
    misses: int = 0
    size: int = 0


def cache_key(name: str, version: str) -> str:
    return f"{name}@{version}"


class TTLCache:
    """In-memory ``name@version`` cache with per-entry expiry.

    The lock only covers dictionary lookups and inserts; callers perform
    network I/O outside of it.
    """

    def __init__(self, ttl: timedelta, clock: Callable[[], datetime] = utcnow) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Metadata, datetime]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Metadata]:
        """Return the stored metadata, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() < entry[1]:
                self._hits += 1
                meta = entry[0]
            else:
                self._misses += 1
                meta = None
        if meta is None:
            logger.debug("Cache miss: %s", key)
            return None
        logger.debug("Cache hit: %s", key)
        return meta

    def put(self, key: str, meta: Metadata) -> None:
        expiry = self._clock() + self.ttl
        with self._lock:
            self._entries[key] = (meta, expiry)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))
