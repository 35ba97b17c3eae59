"""Shared fixtures."""

import pytest

from realprice.cache.query_cache import QueryCache
from realprice.db.models import MS_PER_DAY
from realprice.store.memory import InMemoryDocumentStore
from realprice.sync.session import MarketplaceSession

NOW_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced clock usable as both an epoch-ms and a monotonic clock."""

    def __init__(self, start_ms: int = NOW_MS):
        self.ms = start_ms

    def __call__(self) -> int:
        return self.ms

    def seconds(self) -> float:
        return self.ms / 1000

    def advance(self, seconds: float = 0, ms: int = 0) -> None:
        self.ms += int(seconds * 1000) + ms


def ad_doc(store_id: str = "s1", name: str = "Milk", price: float = 10.0, **overrides) -> dict:
    """Stored advertisement document, valid for one day from NOW_MS."""
    doc = {
        "storeId": store_id,
        "name": name,
        "description": "",
        "price": price,
        "category": "Groceries",
        "createdAt": NOW_MS - MS_PER_DAY,
        "validUntil": NOW_MS + MS_PER_DAY,
    }
    doc.update(overrides)
    return doc


def store_doc(owner_id: str = "u1", name: str = "Corner Market", **overrides) -> dict:
    doc = {
        "ownerId": owner_id,
        "name": name,
        "address": "1 Main Street",
        "city": "Springfield",
        "state": "SP",
        "zipCode": "01000-000",
        "email": "shop@example.com",
        "phone": "5511999990000",
        "category": "groceries",
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def cache(clock):
    return QueryCache(default_stale_seconds=300, gc_seconds=1800, clock=clock.seconds)


@pytest.fixture
def session(store, cache, clock):
    return MarketplaceSession(store, cache=cache, clock=clock)
