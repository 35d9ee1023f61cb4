"""
Content-addressed result cache.

Entries live in a dict keyed by `CacheKey`; a separate list sorted by
(cached_at, sequence) is the eviction index, so "oldest first" never depends
on dict insertion order. All operations are synchronous, which makes each one
atomic with respect to the event loop.
"""

from __future__ import annotations

import asyncio
import bisect
import hashlib
import itertools
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from uisnap.models import CacheEntry, ComponentConfig
from uisnap.validation import normalize_url

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 1024 * 1024 * 1024
DEFAULT_TTL_S = 24 * 60 * 60


@dataclass(frozen=True)
class CacheKey:
    normalized_url: str
    config: str

    @classmethod
    def build(cls, url: str, config: ComponentConfig) -> "CacheKey":
        return cls(normalize_url(url), config.canonical())

    @property
    def digest(self) -> str:
        raw = f"{self.normalized_url}\n{self.config}".encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    def __str__(self) -> str:
        return self.digest


class CacheStore:
    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self.max_bytes = max_bytes
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._index: list[tuple[float, int, CacheKey]] = []
        self._index_pos: dict[CacheKey, tuple[float, int, CacheKey]] = {}
        self._seq = itertools.count()
        self._size = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def key(self, url: str, config: ComponentConfig) -> CacheKey:
        return CacheKey.build(url, config)

    # -- reads ---------------------------------------------------------------

    def get(self, url: str, config: ComponentConfig) -> Optional[CacheEntry]:
        key = self.key(url, config)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._expired(entry):
            self._remove(key)
            self.misses += 1
            logger.debug("Cache entry expired key=%s", key.digest[:12])
            return None
        self.hits += 1
        return entry

    def has(self, url: str, config: ComponentConfig) -> bool:
        entry = self._entries.get(self.key(url, config))
        return entry is not None and not self._expired(entry)

    # -- writes --------------------------------------------------------------

    def set(self, url: str, config: ComponentConfig, entry: CacheEntry) -> Optional[CacheEntry]:
        """Store `entry` stamped with now. Returns the stored entry, or None when
        the entry alone exceeds the size budget."""
        key = self.key(url, config)
        size = entry.encoded_size()
        if size > self.max_bytes:
            logger.warning("Cache entry too large to store size=%d max=%d", size, self.max_bytes)
            return None

        if key in self._entries:
            self._remove(key)

        while self._entries and self._size + size > self.max_bytes:
            _, _, oldest = self._index[0]
            self._remove(oldest)
            self.evictions += 1
            logger.info("Evicted cache entry key=%s", oldest.digest[:12])

        stored = entry.model_copy(update={"cached_at": self._clock(), "size_bytes": size})
        self._entries[key] = stored
        marker = (stored.cached_at, next(self._seq), key)
        bisect.insort(self._index, marker)
        self._index_pos[key] = marker
        self._size += size
        logger.debug("Cached key=%s size=%d total=%d", key.digest[:12], size, self._size)
        return stored

    def delete(self, url: str, config: ComponentConfig) -> bool:
        key = self.key(url, config)
        if key not in self._entries:
            return False
        self._remove(key)
        return True

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._index.clear()
        self._index_pos.clear()
        self._size = 0
        logger.info("Cache cleared entries=%d", count)
        return count

    def purge_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.info("Purged expired cache entries count=%d", len(expired))
        return len(expired)

    async def run_maintenance(self, interval_s: float):
        while True:
            await asyncio.sleep(interval_s)
            self.purge_expired()

    # -- stats ---------------------------------------------------------------

    @property
    def size_bytes(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        lookups = self.hits + self.misses
        oldest = newest = None
        if self._index:
            oldest = datetime.fromtimestamp(self._index[0][0], tz=timezone.utc)
            newest = datetime.fromtimestamp(self._index[-1][0], tz=timezone.utc)
        return {
            "entries": len(self._entries),
            "size": self._size,
            "maxSize": self.max_bytes,
            "hitRate": self.hits / lookups if lookups else 0.0,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "oldestEntry": oldest,
            "newestEntry": newest,
        }

    # -- internals -----------------------------------------------------------

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.cached_at >= self.ttl_s

    def _remove(self, key: CacheKey):
        entry = self._entries.pop(key)
        marker = self._index_pos.pop(key)
        pos = bisect.bisect_left(self._index, marker)
        del self._index[pos]
        self._size -= entry.size_bytes
