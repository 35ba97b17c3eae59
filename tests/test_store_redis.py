"""Tests for the Redis document store (skipped without a Redis server)."""

import secrets

import pytest
import pytest_asyncio
import redis.asyncio as redis

from realprice.config import settings
from realprice.store import SERVER_TIMESTAMP
from realprice.store.redis_store import RedisDocumentStore

REDIS_URL = "redis://localhost:6379/15"


async def _redis_available() -> bool:
    try:
        client = redis.from_url(REDIS_URL, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture
async def redis_store():
    if not await _redis_available():
        pytest.skip("Redis not available")
    prefix = f"{settings.redis_key_prefix}-test-{secrets.token_hex(4)}"
    store = RedisDocumentStore(redis_url=REDIS_URL, key_prefix=prefix)
    yield store
    client = redis.from_url(REDIS_URL, decode_responses=True)
    keys = [key async for key in client.scan_iter(f"{prefix}:*")]
    if keys:
        await client.delete(*keys)
    await client.aclose()
    await store.close()


@pytest.mark.asyncio
async def test_set_and_get_nested(redis_store):
    await redis_store.set("stores/s1", {"name": "A", "ownerId": "u1", "latitude": 1.5})
    assert await redis_store.get("stores/s1/name") == "A"
    assert (await redis_store.get("stores"))["s1"]["latitude"] == 1.5
    assert await redis_store.get("stores/missing") is None


@pytest.mark.asyncio
async def test_multi_path_update(redis_store):
    await redis_store.set("advertisements/a1", {"name": "X", "price": 10, "archived": False})
    await redis_store.update({
        "priceHistory/a1": {"productName": "X", "archivedAt": SERVER_TIMESTAMP},
        "advertisements/a1/archived": True,
    })

    assert await redis_store.get("advertisements/a1/archived") is True
    archived_at = await redis_store.get("priceHistory/a1/archivedAt")
    assert isinstance(archived_at, int) and archived_at > 0


@pytest.mark.asyncio
async def test_query_equal(redis_store):
    await redis_store.set("stores/s1", {"ownerId": "u1"})
    await redis_store.set("stores/s2", {"ownerId": "u2"})
    assert list(await redis_store.query_equal("stores", "ownerId", "u1")) == ["s1"]
