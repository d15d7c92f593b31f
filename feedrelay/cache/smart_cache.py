"""Smart cache for parsed feeds: TTL freshness, stale-while-revalidate and LRU eviction.

Entries are keyed by feed URL. An entry is *fresh* while its age is within
the TTL and *stale* while its age is past the TTL but within the SWR window;
both are returned by ``get``. Past the SWR window an entry is expired and
purged on access or by the periodic ``cleanup`` sweep.

Every mutation persists a snapshot to the key-value store::

    {"version": "1.0.0", "timestamp": <epochMillis>,
     "entries": [[feedUrl, {"articles": [...], "timestamp": <epochMillis>,
                            "title": str, "accessCount": int,
                            "lastAccessed": <epochMillis>}], ...]}

Snapshot load and persist failures are logged and swallowed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from feedrelay.models.feeds import Article
from feedrelay.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "smart-feed-cache"
SNAPSHOT_VERSION = "1.0.0"

DEFAULT_TTL_SECONDS = 10 * 60
DEFAULT_SWR_SECONDS = 2 * 60 * 60
DEFAULT_MAX_ENTRIES = 100
DEFAULT_CLEANUP_INTERVAL_SECONDS = 5 * 60


@dataclass
class CacheEntry:
    feed_url: str
    articles: tuple[Article, ...]
    title: str
    created_at: float
    last_accessed_at: float
    access_count: int = 1
    access_seq: int = 0

    def to_snapshot(self) -> dict:
        return {
            "articles": [article.to_dict() for article in self.articles],
            "timestamp": int(round(self.created_at * 1000)),
            "title": self.title,
            "accessCount": self.access_count,
            "lastAccessed": int(round(self.last_accessed_at * 1000)),
        }

    @classmethod
    def from_snapshot(cls, feed_url: str, data: dict) -> CacheEntry:
        return cls(
            feed_url=feed_url,
            articles=tuple(Article.from_dict(a) for a in data.get("articles") or []),
            title=str(data.get("title") or ""),
            created_at=float(data["timestamp"]) / 1000,
            last_accessed_at=float(data.get("lastAccessed", data["timestamp"])) / 1000,
            access_count=int(data.get("accessCount", 1)),
        )


@dataclass(frozen=True)
class CacheHit:
    """What ``get`` hands back: the cached feed plus its freshness."""

    articles: tuple[Article, ...]
    title: str
    age_seconds: float
    is_stale: bool


class SmartCache:
    """In-memory feed cache with optional persistence.

    Args:
        store: Key-value store for snapshots; ``None`` disables persistence.
        ttl_seconds: Age up to which an entry is fresh.
        swr_seconds: Age up to which an entry may still be served stale.
        max_entries: Entry count that triggers LRU eviction on insert.
        cleanup_interval_seconds: Period of the background cleanup sweep.
        clock: Wall-clock time source (epoch seconds).
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        swr_seconds: float = DEFAULT_SWR_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._swr_seconds = max(swr_seconds, ttl_seconds)
        self._max_entries = max_entries
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0
        self._evictions = 0
        self._access_seq = 0
        self._cleanup_task: asyncio.Task[None] | None = None
        self._load_snapshot()

    # ------------------------------------------------------------------
    # Freshness helpers
    # ------------------------------------------------------------------

    def _age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.created_at

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._age(entry) > self._swr_seconds

    def is_fresh(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._age(entry) <= self._ttl_seconds

    def is_stale(self, key: str) -> bool:
        """Past TTL but still inside the stale-while-revalidate window."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        age = self._age(entry)
        return self._ttl_seconds < age <= self._swr_seconds

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> CacheHit | None:
        """Fresh or stale entry for ``key``; expired entries are purged and miss."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        age = self._age(entry)
        if age > self._swr_seconds:
            del self._entries[key]
            self._misses += 1
            self._persist()
            return None

        entry.access_count += 1
        entry.last_accessed_at = self._clock()
        entry.access_seq = self._next_seq()
        stale = age > self._ttl_seconds
        if stale:
            self._stale_hits += 1
        else:
            self._hits += 1
        return CacheHit(articles=entry.articles, title=entry.title, age_seconds=age, is_stale=stale)

    def get_stale(self, key: str) -> CacheHit | None:
        """Any non-expired entry, without touching access or hit statistics."""
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry):
            return None
        age = self._age(entry)
        return CacheHit(
            articles=entry.articles,
            title=entry.title,
            age_seconds=age,
            is_stale=age > self._ttl_seconds,
        )

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_expired(entry)

    def keys(self) -> list[str]:
        return list(self._entries)

    def get_metadata(self, key: str) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return {
            "feed_url": entry.feed_url,
            "title": entry.title,
            "article_count": len(entry.articles),
            "created_at": entry.created_at,
            "last_accessed_at": entry.last_accessed_at,
            "access_count": entry.access_count,
            "age_seconds": self._age(entry),
            "is_fresh": self.is_fresh(key),
            "is_stale": self.is_stale(key),
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, articles: Iterable[Article], title: str = "") -> None:
        """Insert or fully replace the entry for ``key``.

        Inserting a new key at capacity first evicts the entry that was
        least recently read or written.
        """
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_lru()

        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            feed_url=key,
            articles=tuple(articles),
            title=title,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
            access_seq=self._next_seq(),
        )
        self._persist()

    def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._persist()
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._hits = self._stale_hits = self._misses = self._evictions = 0
        if self._store is not None:
            try:
                self._store.delete(STORAGE_KEY)
            except OSError as exc:
                logger.warning("Failed to delete cache snapshot: %s", exc)

    def cleanup(self) -> int:
        """Purge entries past the SWR window. Returns the number removed."""
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Cache cleanup removed %d expired entries", len(expired))
            self._persist()
        return len(expired)

    def _next_seq(self) -> int:
        self._access_seq += 1
        return self._access_seq

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        victim = min(self._entries.values(), key=lambda e: e.access_seq)
        del self._entries[victim.feed_url]
        self._evictions += 1
        logger.debug("Evicted LRU cache entry: %s", victim.feed_url, extra={"feed_url": victim.feed_url})

    # ------------------------------------------------------------------
    # Background cleanup
    # ------------------------------------------------------------------

    async def cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval_seconds)
            self.cleanup()

    def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self.cleanup_loop())

    async def shutdown(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "version": SNAPSHOT_VERSION,
            "timestamp": int(round(self._clock() * 1000)),
            "entries": [[key, entry.to_snapshot()] for key, entry in self._entries.items()],
        }

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.set(STORAGE_KEY, self.snapshot())
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to persist cache snapshot: %s", exc)

    def _load_snapshot(self) -> None:
        if self._store is None:
            return
        try:
            raw = self._store.get(STORAGE_KEY)
            if raw is None:
                return
            if not isinstance(raw, dict) or not isinstance(raw.get("entries"), list):
                raise ValueError("snapshot has no entries list")
            loaded: dict[str, CacheEntry] = {}
            for item in raw["entries"]:
                if not (isinstance(item, (list, tuple)) and len(item) == 2):
                    raise ValueError("snapshot entry is not a [key, entry] pair")
                key, data = item
                if not isinstance(key, str) or not isinstance(data, dict):
                    raise ValueError(f"malformed snapshot entry for {key!r}")
                entry = CacheEntry.from_snapshot(key, data)
                if not self._is_expired(entry):
                    loaded[key] = entry
        except (ValueError, KeyError, TypeError, AttributeError, json.JSONDecodeError) as exc:
            logger.warning("Discarding corrupt cache snapshot: %s", exc)
            try:
                self._store.delete(STORAGE_KEY)
            except OSError:
                logger.warning("Failed to delete corrupt cache snapshot")
            return
        except OSError as exc:
            logger.warning("Failed to read cache snapshot: %s", exc)
            return

        # rebuild recency order from lastAccessed; ties keep snapshot order
        for entry in sorted(loaded.values(), key=lambda e: e.last_accessed_at):
            entry.access_seq = self._next_seq()
        self._entries = loaded
        logger.info("Loaded %d cache entries from snapshot", len(loaded))

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        entries = list(self._entries.values())
        article_count = sum(len(e.articles) for e in entries)
        lookups = self._hits + self._stale_hits + self._misses
        return {
            "entries": len(entries),
            "max_entries": self._max_entries,
            "articles": article_count,
            "estimated_bytes": len(json.dumps([e.to_snapshot() for e in entries])) if entries else 0,
            "hits": self._hits,
            "stale_hits": self._stale_hits,
            "misses": self._misses,
            "hit_rate": ((self._hits + self._stale_hits) / lookups) if lookups else 0.0,
            "evictions": self._evictions,
            "oldest_entry_at": min((e.created_at for e in entries), default=None),
            "newest_entry_at": max((e.created_at for e in entries), default=None),
        }
