"""Tests for the query cache."""

import asyncio

import pytest

from realprice.cache.keys import (
    ACTIVE_ADVERTISEMENTS,
    ADVERTISEMENTS,
    PREFERRED_LOCATION,
    STORE_MAP,
    USER_STORE,
    query_key,
)


class CountingFetcher:
    """Fetcher that counts calls and can be held open."""

    def __init__(self, value="v"):
        self.value = value
        self.calls = 0
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


def test_query_key():
    assert query_key(USER_STORE, "u1") == "userStore:u1"
    assert query_key(ADVERTISEMENTS) == "advertisements"
    assert query_key("storeAdvertisements", None) == "storeAdvertisements:~"


@pytest.mark.asyncio
async def test_concurrent_gets_share_one_fetch(cache):
    fetcher = CountingFetcher([1, 2])
    fetcher.release.clear()

    tasks = [asyncio.create_task(cache.get("k", fetcher)) for _ in range(5)]
    await asyncio.sleep(0)
    fetcher.release.set()
    results = await asyncio.gather(*tasks)

    assert fetcher.calls == 1
    assert all(result == [1, 2] for result in results)
    assert cache.get_cache_stats()["coalesced"] == 4


@pytest.mark.asyncio
async def test_fresh_hit_then_refetch_after_window(cache, clock):
    fetcher = CountingFetcher()
    await cache.get("k", fetcher)
    clock.advance(seconds=299)
    await cache.get("k", fetcher)
    assert fetcher.calls == 1

    clock.advance(seconds=2)
    await cache.get("k", fetcher)
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_collection_stale_override(cache, clock):
    cache.set_stale_time(STORE_MAP, 900)
    fetcher = CountingFetcher()
    await cache.get(STORE_MAP, fetcher)
    clock.advance(seconds=600)
    await cache.get(STORE_MAP, fetcher)
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(cache):
    fetcher = CountingFetcher()
    await cache.get(query_key(USER_STORE, "u1"), fetcher)
    await cache.get(query_key(USER_STORE, "u2"), fetcher)

    assert cache.invalidate(USER_STORE) == 2
    assert cache.peek(query_key(USER_STORE, "u1")) == "v"

    await cache.get(query_key(USER_STORE, "u1"), fetcher)
    assert fetcher.calls == 3


@pytest.mark.asyncio
async def test_set_seeds_without_fetch(cache):
    fetcher = CountingFetcher()
    cache.set("k", "seeded")
    assert await cache.get("k", fetcher) == "seeded"
    assert fetcher.calls == 0


@pytest.mark.asyncio
async def test_fetch_started_before_invalidate_does_not_overwrite(cache):
    slow = CountingFetcher("old")
    slow.release.clear()
    first = asyncio.create_task(cache.get("k", slow))
    await asyncio.sleep(0)

    cache.set("k", "new")
    slow.release.set()

    assert await first == "old"
    assert cache.peek("k") == "new"


@pytest.mark.asyncio
async def test_fetch_in_flight_during_remove_does_not_repopulate(cache):
    key = query_key(PREFERRED_LOCATION, "u1")
    slow = CountingFetcher("old-user-data")
    slow.release.clear()
    pending = asyncio.create_task(cache.get(key, slow))
    await asyncio.sleep(0)

    cache.remove(key)
    slow.release.set()

    assert await pending == "old-user-data"
    assert key not in cache.keys()
    assert cache.peek(key) is None
    assert cache.get_cache_stats()["discarded"] == 1


@pytest.mark.asyncio
async def test_fetch_in_flight_during_clear_does_not_repopulate(cache):
    slow = CountingFetcher("old")
    slow.release.clear()
    pending = asyncio.create_task(cache.get("k", slow))
    await asyncio.sleep(0)

    cache.clear()
    slow.release.set()

    assert await pending == "old"
    assert cache.keys() == []


@pytest.mark.asyncio
async def test_refetch_after_remove_wins_over_older_fetch(cache):
    old = CountingFetcher("old")
    old.release.clear()
    first = asyncio.create_task(cache.get("k", old))
    await asyncio.sleep(0)

    cache.remove("k")
    new = CountingFetcher("new")
    new.release.clear()
    second = asyncio.create_task(cache.get("k", new))
    await asyncio.sleep(0)

    old.release.set()
    assert await first == "old"
    assert cache.peek("k") is None

    new.release.set()
    assert await second == "new"
    assert cache.peek("k") == "new"


@pytest.mark.asyncio
async def test_errors_propagate_to_all_waiters_and_are_not_cached(cache):
    failing = CountingFetcher(RuntimeError("boom"))
    failing.release.clear()
    tasks = [asyncio.create_task(cache.get("k", failing)) for _ in range(2)]
    await asyncio.sleep(0)
    failing.release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, RuntimeError) for r in results)
    assert failing.calls == 1
    assert isinstance(cache.last_error("k"), RuntimeError)

    ok = CountingFetcher("fine")
    assert await cache.get("k", ok) == "fine"
    assert cache.last_error("k") is None


@pytest.mark.asyncio
async def test_background_refresh_returns_stale_value(cache, clock):
    await cache.get("k", CountingFetcher("old"))
    clock.advance(seconds=301)

    refresher = CountingFetcher("new")
    assert await cache.get("k", refresher, background_refresh=True) == "old"
    for _ in range(3):
        await asyncio.sleep(0)

    assert refresher.calls == 1
    assert cache.peek("k") == "new"


@pytest.mark.asyncio
async def test_invalidate_cascades_to_dependents(cache):
    cache.add_dependency(ACTIVE_ADVERTISEMENTS, [ADVERTISEMENTS, STORE_MAP])
    cache.set(ADVERTISEMENTS, [])
    cache.set(ACTIVE_ADVERTISEMENTS, [])
    cache.set(STORE_MAP, {})

    cache.invalidate(STORE_MAP)

    assert not cache.is_fresh(STORE_MAP)
    assert not cache.is_fresh(ACTIVE_ADVERTISEMENTS)
    assert cache.is_fresh(ADVERTISEMENTS)


@pytest.mark.asyncio
async def test_update_and_remove(cache):
    assert cache.update("k", lambda v: v + [1]) is False
    cache.set("k", [0])
    assert cache.update("k", lambda v: v + [1]) is True
    assert cache.peek("k") == [0, 1]

    cache.set(query_key(USER_STORE, "u1"), "s")
    assert cache.remove(query_key(USER_STORE, "u1")) == 1
    assert cache.peek(query_key(USER_STORE, "u1")) is None


@pytest.mark.asyncio
async def test_garbage_collection_drops_unused_entries(cache, clock):
    cache.set("a", 1)
    clock.advance(seconds=1000)
    cache.set("b", 2)
    clock.advance(seconds=900)

    assert cache.collect_garbage() == 1
    assert cache.keys() == ["b"]
