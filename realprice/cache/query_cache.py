"""Keyed in-memory read-through cache with request coalescing.

Features:
- Per-collection freshness windows (default 5 minutes)
- One underlying fetch per key no matter how many callers wait on it
- Stale-while-revalidate: optionally return stale data and refresh in the
  background
- Invalidation by key or key prefix, cascading to dependent keys
- Direct seeding with mutation results
- Generation counters so a fetch dispatched before an invalidation or a
  seed never overwrites newer state

Lookups and fetch registration happen synchronously before the first await,
so two coroutines of one event loop cannot both dispatch a fetch for the
same key.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from realprice import metrics
from realprice.cache.keys import collection_of, key_matches
from realprice.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    """State of one cache key."""

    value: Any = None
    has_value: bool = False
    updated_at: float = 0.0
    last_access: float = 0.0
    invalidated: bool = False
    generation: int = 0
    error: Optional[BaseException] = None
    fetch_count: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    coalesced: int = 0
    fetches: int = 0
    errors: int = 0
    discarded: int = 0


class QueryCache:
    """
    Read-through cache addressed by composite string keys.

    Instances are created explicitly and passed to whoever needs them.
    """

    def __init__(
        self,
        default_stale_seconds: Optional[float] = None,
        gc_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_stale_seconds = (
            default_stale_seconds
            if default_stale_seconds is not None
            else settings.cache_stale_seconds
        )
        self.gc_seconds = gc_seconds if gc_seconds is not None else settings.cache_gc_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._stale_overrides: dict[str, float] = {}
        self._dependents: dict[str, set[str]] = {}
        self.stats = CacheStats()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_stale_time(self, collection: str, seconds: float) -> None:
        """Override the freshness window for every key of a collection."""
        self._stale_overrides[collection] = seconds

    def stale_time_for(self, key: str) -> float:
        return self._stale_overrides.get(collection_of(key), self.default_stale_seconds)

    def add_dependency(self, dependent: str, depends_on: Iterable[str]) -> None:
        """
        Declare that `dependent` is derived from other keys.

        Invalidating any of `depends_on` also invalidates `dependent`.
        """
        for upstream in depends_on:
            self._dependents.setdefault(upstream, set()).add(dependent)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _is_fresh(self, entry: CacheEntry, key: str, stale_seconds: Optional[float]) -> bool:
        if not entry.has_value or entry.invalidated:
            return False
        window = stale_seconds if stale_seconds is not None else self.stale_time_for(key)
        return self._clock() - entry.updated_at < window

    def is_fresh(self, key: str, stale_seconds: Optional[float] = None) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry, key, stale_seconds)

    def peek(self, key: str) -> Any:
        """Cached value (fresh or stale) without fetching, or None."""
        entry = self._entries.get(key)
        return entry.value if entry and entry.has_value else None

    def last_error(self, key: str) -> Optional[BaseException]:
        """Error of the most recent failed fetch for key, cleared by the next success."""
        entry = self._entries.get(key)
        return entry.error if entry else None

    async def get(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        stale_seconds: Optional[float] = None,
        background_refresh: bool = False,
    ) -> T:
        """
        Return the value for key, fetching on miss.

        Args:
            key: Cache key
            fetcher: Zero-argument coroutine function producing the value
            stale_seconds: Freshness window override for this call
            background_refresh: When the entry is stale but holds a value,
                return it immediately and refresh in the background

        Returns:
            Cached or freshly fetched value

        Raises:
            Whatever the fetcher raises, for every caller waiting on it
        """
        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None:
            entry.last_access = now
            if self._is_fresh(entry, key, stale_seconds):
                self.stats.hits += 1
                metrics.record_cache_lookup(key, "hit")
                return entry.value
            if entry.has_value and background_refresh:
                self.stats.stale_hits += 1
                metrics.record_cache_lookup(key, "stale")
                task = self._dispatch(key, fetcher)
                task.add_done_callback(self._consume_background_error)
                return entry.value

        task = self._dispatch(key, fetcher)
        # Shield: a cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    def _dispatch(self, key: str, fetcher: Fetcher) -> asyncio.Task:
        existing = self._inflight.get(key)
        if existing is not None:
            self.stats.coalesced += 1
            metrics.record_cache_lookup(key, "coalesced")
            return existing

        self.stats.misses += 1
        metrics.record_cache_lookup(key, "miss")
        entry = self._entries.setdefault(key, CacheEntry(last_access=self._clock()))
        task = asyncio.ensure_future(self._run_fetch(key, fetcher, entry, entry.generation))
        self._inflight[key] = task
        metrics.cache_entries.set(len(self._entries))
        return task

    async def _run_fetch(
        self, key: str, fetcher: Fetcher, entry: CacheEntry, generation: int
    ) -> Any:
        this_task = asyncio.current_task()
        self.stats.fetches += 1
        try:
            value = await fetcher()
        except Exception as e:
            self.stats.errors += 1
            metrics.record_cache_fetch(key, False)
            if self._is_current(key, entry, generation):
                entry.error = e
            logger.warning(f"Fetch for {key} failed: {e}")
            raise
        finally:
            if self._inflight.get(key) is this_task:
                del self._inflight[key]

        metrics.record_cache_fetch(key, True)
        if not self._is_current(key, entry, generation):
            # Invalidated, seeded or removed while in flight; callers still get the value
            self.stats.discarded += 1
            logger.debug(f"Discarding superseded fetch result for {key}")
            return value

        entry.value = value
        entry.has_value = True
        entry.updated_at = self._clock()
        entry.invalidated = False
        entry.error = None
        entry.fetch_count += 1
        return value

    def _is_current(self, key: str, entry: CacheEntry, generation: int) -> bool:
        return self._entries.get(key) is entry and entry.generation == generation

    @staticmethod
    def _consume_background_error(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Background refresh failed: {task.exception()}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any) -> None:
        """Seed key with a mutation result, fresh as of now."""
        entry = self._entries.setdefault(key, CacheEntry())
        entry.generation += 1
        entry.value = value
        entry.has_value = True
        entry.updated_at = self._clock()
        entry.last_access = entry.updated_at
        entry.invalidated = False
        entry.error = None
        self._inflight.pop(key, None)
        metrics.cache_entries.set(len(self._entries))

    def update(self, key: str, updater: Callable[[Any], Any]) -> bool:
        """
        Patch a cached value in place of a round-trip.

        Returns:
            True if the key held a value to patch
        """
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return False
        self.set(key, updater(entry.value))
        return True

    def invalidate(self, prefix: str) -> int:
        """
        Force the next get of every matching key (and its dependents) to refetch.

        Stale values stay readable through peek() and background refresh.
        Fetches already in flight finish but do not repopulate the entry.

        Args:
            prefix: Exact key, or a collection prefix matching all its keys

        Returns:
            Number of entries invalidated
        """
        pending = [prefix]
        seen: set[str] = set()
        count = 0
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            for key in [k for k in self._entries if key_matches(k, current)]:
                entry = self._entries[key]
                entry.invalidated = True
                entry.generation += 1
                self._inflight.pop(key, None)
                metrics.record_cache_invalidation(key)
                count += 1
            for upstream, dependents in self._dependents.items():
                if key_matches(upstream, current) or key_matches(current, upstream):
                    pending.extend(dependents)
        if count:
            logger.debug(f"Invalidated {count} cache entries for {prefix}")
        return count

    def remove(self, prefix: str) -> int:
        """
        Drop every matching entry entirely (value included).

        Fetches already in flight finish but do not repopulate the entry.
        """
        keys = [k for k in self._entries if key_matches(k, prefix)]
        for key in keys:
            del self._entries[key]
            self._inflight.pop(key, None)
        metrics.cache_entries.set(len(self._entries))
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()
        metrics.cache_entries.set(0)

    def collect_garbage(self) -> int:
        """Drop entries nobody has read for gc_seconds."""
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if key not in self._inflight and now - entry.last_access >= self.gc_seconds
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Collected {len(expired)} unused cache entries")
        metrics.cache_entries.set(len(self._entries))
        return len(expired)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self.stats.hits,
            "stale_hits": self.stats.stale_hits,
            "misses": self.stats.misses,
            "coalesced": self.stats.coalesced,
            "fetches": self.stats.fetches,
            "errors": self.stats.errors,
            "discarded": self.stats.discarded,
        }
