"""Tests for the marketplace session."""

from unittest.mock import AsyncMock

import pytest

from realprice.cache.keys import PREFERRED_LOCATION, USER_STORE, query_key
from realprice.db.models import MS_PER_DAY, PreferredLocation, SuggestionStatus
from realprice.db.mutations import ImmutableRecordError
from realprice.db.schemas import (
    AdvertisementCreate,
    AdvertisementUpdate,
    CanonicalProductCreate,
    StoreCreate,
    StoreUpdate,
)
from realprice.normalize.catalog import CatalogOutcome
from realprice.sync.session import MarketplaceSession, NotSignedInError, User
from realprice.views.geo import Coordinate
from realprice.views.offers import SortOrder

from conftest import NOW_MS, ad_doc, store_doc

OWNER = User(uid="u1", email="owner@example.com")
ADMIN = User(uid="admin", is_admin=True)


def store_form(**overrides) -> StoreCreate:
    data = {
        "name": "Corner Market",
        "address": "1 Main Street",
        "city": "Springfield",
        "state": "SP",
        "zip_code": "01000-000",
        "email": "shop@example.com",
        "phone": "5511999990000",
        "category": "groceries",
        "latitude": 0.0,
        "longitude": 0.0,
    }
    data.update(overrides)
    return StoreCreate(**data)


@pytest.mark.asyncio
async def test_offers_sorted_by_distance_with_unknown_last(store, session):
    await store.set("stores/near", store_doc(latitude=0.0, longitude=0.1))
    await store.set("stores/far", store_doc(latitude=0.0, longitude=1.0))
    await store.set("stores/nowhere", store_doc())
    await store.set("advertisements/a", ad_doc(store_id="nowhere"))
    await store.set("advertisements/b", ad_doc(store_id="far"))
    await store.set("advertisements/c", ad_doc(store_id="near"))
    await store.set("advertisements/old", ad_doc(store_id="near", validUntil=NOW_MS - 1))

    offers = await session.offers(origin=Coordinate(0, 0))

    assert [o.id for o in offers] == ["c", "b", "a"]
    assert offers[-1].distance is None


@pytest.mark.asyncio
async def test_offers_drop_ads_that_expire_while_cached(store, session, clock):
    await store.set("stores/s1", store_doc())
    await store.set("advertisements/a", ad_doc(validUntil=NOW_MS + 1000))
    assert len(await session.offers()) == 1

    clock.advance(seconds=2)

    assert await session.offers() == []


@pytest.mark.asyncio
async def test_empty_search_suggests_product(store, session):
    await store.set("stores/s1", store_doc())
    await store.set("advertisements/a", ad_doc(name="Milk"))
    session.set_user(OWNER)

    assert await session.offers(search="Widget123") == []

    suggestions = await session.suggested_products()
    assert len(suggestions) == 1
    assert suggestions[0].normalized_name == "widget123"
    assert suggestions[0].source.value == "search-bar"
    assert suggestions[0].user_id == "u1"


@pytest.mark.asyncio
async def test_search_with_results_does_not_suggest(store, session):
    await store.set("stores/s1", store_doc())
    await store.set("advertisements/a", ad_doc(name="Milk"))

    assert len(await session.offers(search="milk")) == 1
    assert await store.get_children("suggestedNewProducts") == {}


@pytest.mark.asyncio
async def test_user_switch_drops_user_scoped_entries(session, cache):
    session.set_user(OWNER)
    assert await session.user_store() is None
    assert cache.peek(query_key(USER_STORE, "u1")) is None
    cache.set(query_key(PREFERRED_LOCATION, "u1"), "cached")

    session.set_user(User(uid="u2"))

    assert query_key(PREFERRED_LOCATION, "u1") not in cache.keys()
    assert query_key(USER_STORE, "u1") not in cache.keys()


@pytest.mark.asyncio
async def test_sign_out_calls_auth_provider(store, cache, clock):
    auth = AsyncMock()
    session = MarketplaceSession(store, cache=cache, clock=clock, auth=auth)
    session.set_user(OWNER)

    await session.sign_out()

    auth.sign_out.assert_awaited_once()
    assert session.user is None


@pytest.mark.asyncio
async def test_register_store_seeds_cache(store, session):
    session.set_user(OWNER)
    await session.store_map()

    created = await session.register_store(store_form())

    reads = store.read_count
    assert (await session.user_store()).id == created.id
    assert created.id in await session.store_map()
    assert store.read_count == reads


@pytest.mark.asyncio
async def test_update_store_refreshes_joined_name(store, session):
    session.set_user(OWNER)
    await session.register_store(store_form())
    await session.create_advertisement(AdvertisementCreate(name="Milk", price=4.5, category="Groceries"))
    assert (await session.offers())[0].store_name == "Corner Market"

    await session.update_store(StoreUpdate(name="Market Two"))

    assert (await session.offers())[0].store_name == "Market Two"


@pytest.mark.asyncio
async def test_create_advertisement_visible_without_refetch(store, session, clock):
    session.set_user(OWNER)
    await session.register_store(store_form())
    assert await session.offers() == []
    reads = store.read_count

    ad = await session.create_advertisement(
        AdvertisementCreate(name="Fresh Milk", price=4.5, category="Groceries", validity_days=3)
    )

    assert ad.valid_until == clock() + 3 * MS_PER_DAY
    assert [o.id for o in await session.offers()] == [ad.id]
    assert store.read_count == reads
    listings = await session.store_listings()
    assert [a.id for a in listings.active] == [ad.id]


@pytest.mark.asyncio
async def test_create_advertisement_requires_store(session):
    session.set_user(OWNER)
    with pytest.raises(LookupError):
        await session.create_advertisement(AdvertisementCreate(name="Milk", price=1, category="Groceries"))


@pytest.mark.asyncio
async def test_archived_advertisement_is_immutable(store, session):
    session.set_user(OWNER)
    await store.set("advertisements/a", ad_doc(archived=True))

    with pytest.raises(ImmutableRecordError):
        await session.update_advertisement("a", AdvertisementUpdate(price=2))


@pytest.mark.asyncio
async def test_update_advertisement_price(store, session):
    session.set_user(OWNER)
    await session.register_store(store_form())
    ad = await session.create_advertisement(AdvertisementCreate(name="Milk", price=4.5, category="Groceries"))

    await session.update_advertisement(ad.id, AdvertisementUpdate(price=3.99))

    assert (await session.offers(order=SortOrder.PRICE))[0].price == 3.99
    assert await store.get(f"advertisements/{ad.id}/price") == 3.99


@pytest.mark.asyncio
async def test_preferred_location_round_trip(store, session):
    session.set_user(OWNER)
    location = PreferredLocation(address="Av. Paulista", latitude=-23.56, longitude=-46.65)

    await session.save_preferred_location(location)

    assert await session.preferred_location() == location
    resolved = await session.resolve_location(request_live=False)
    assert resolved.origin == Coordinate(-23.56, -46.65)


@pytest.mark.asyncio
async def test_mutations_require_sign_in(session):
    with pytest.raises(NotSignedInError):
        await session.register_store(store_form())


@pytest.mark.asyncio
async def test_admin_promotes_suggestion_group(store, session):
    session.set_user(OWNER)
    await session.offers(search="Widget123")
    await session.offers(search="  widget123 ")
    await session.offers(search="Gadget")

    with pytest.raises(NotSignedInError):
        await session.admin_suggestions()

    session.set_user(ADMIN)
    view = await session.admin_suggestions()
    assert [g.normalized_name for g in view.groups] == ["widget123", "gadget"]
    assert view.groups[0].count == 2

    product = await session.promote_suggestion(
        view.groups[0].suggestion_ids[0],
        CanonicalProductCreate(name="Widget123", category="Electronics"),
    )

    assert (await session.find_in_catalog("WIDGET123")).product.id == product.id
    view = await session.admin_suggestions()
    assert [s.normalized_name for s in view.pending] == ["gadget"]
    assert {s.status for s in view.reviewed} == {SuggestionStatus.ADDED_TO_CATALOG}

    stored = await store.get_children("suggestedNewProducts")
    assert sorted(doc["status"] for doc in stored.values()) == [
        "added-to-catalog", "added-to-catalog", "pending",
    ]

    check = await session.check_and_suggest("widget123", source=view.pending[0].source)
    assert check.outcome == CatalogOutcome.IN_CATALOG


@pytest.mark.asyncio
async def test_dismiss_suggestion(store, session):
    session.set_user(ADMIN)
    await session.offers(search="Gadget")
    pending = (await session.admin_suggestions()).pending

    await session.dismiss_suggestion(pending[0].id)

    view = await session.admin_suggestions()
    assert view.pending == []
    assert view.reviewed[0].status == SuggestionStatus.REJECTED
    assert await store.get(f"suggestedNewProducts/{pending[0].id}/status") == "rejected"


@pytest.mark.asyncio
async def test_price_history_views(store, session, clock):
    await store.set("stores/s1", store_doc())
    await store.set("advertisements/a", ad_doc(name="Milk", price=5, validUntil=NOW_MS - 10))
    await session.offers()
    await store.set("advertisements/b", ad_doc(name="Milk", price=4, validUntil=NOW_MS + 10))
    clock.advance(seconds=1)

    await session.run_archival()

    assert await session.monitored_products() == ["Milk"]
    series = await session.product_price_series("Milk")
    assert [p.price for p in series] == [5, 4]
    summary = await session.product_price_summary("Milk")
    assert summary.min_price == 4
    assert summary.latest_price == 4
