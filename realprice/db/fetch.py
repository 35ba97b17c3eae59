"""Read-only fetchers mapping stored documents into typed records.

Missing data resolves to an empty list or None. Only connectivity failures
(StoreConnectionError) propagate; documents that fail to decode are skipped
and logged so one malformed row cannot blank a whole view.
"""

import logging
from typing import Optional, Type, TypeVar

from realprice.db.models import (
    ADVERTISEMENTS,
    CANONICAL_PRODUCTS,
    PRICE_HISTORY,
    STORES,
    SUGGESTED_NEW_PRODUCTS,
    USER_SETTINGS,
    Advertisement,
    CanonicalProduct,
    Document,
    DocumentDecodeError,
    PreferredLocation,
    PriceHistoryEntry,
    Store,
    SuggestedNewProduct,
    decode_document,
)
from realprice.store.base import DocumentStore, join_path

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT", bound=Document)


def decode_collection(model: Type[DocT], collection: str, raw_docs: dict) -> list[DocT]:
    """Decode a key -> document map, skipping undecodable documents."""
    records = []
    for key, raw in raw_docs.items():
        try:
            records.append(decode_document(model, collection, key, raw))
        except DocumentDecodeError as e:
            logger.warning(f"Skipping malformed document: {e}")
    return records


async def _fetch_all(store: DocumentStore, model: Type[DocT], collection: str) -> list[DocT]:
    raw_docs = await store.get_children(collection)
    return decode_collection(model, collection, raw_docs)


async def fetch_advertisements(store: DocumentStore) -> list[Advertisement]:
    """Fetch every advertisement, archived and expired ones included."""
    return await _fetch_all(store, Advertisement, ADVERTISEMENTS)


async def fetch_store_advertisements(store: DocumentStore, store_id: str) -> list[Advertisement]:
    """Fetch the advertisements of one store."""
    raw_docs = await store.query_equal(ADVERTISEMENTS, "storeId", store_id)
    return decode_collection(Advertisement, ADVERTISEMENTS, raw_docs)


async def fetch_stores(store: DocumentStore) -> list[Store]:
    return await _fetch_all(store, Store, STORES)


async def fetch_store_map(store: DocumentStore) -> dict[str, Store]:
    """Fetch stores keyed by id, for joins."""
    return {s.id: s for s in await fetch_stores(store)}


async def fetch_user_store(store: DocumentStore, user_id: Optional[str]) -> Optional[Store]:
    """
    Fetch the store owned by a user.

    One store per owner is assumed; when several match, the first key wins.
    """
    if not user_id:
        return None
    raw_docs = await store.query_equal(STORES, "ownerId", user_id)
    stores = decode_collection(Store, STORES, dict(sorted(raw_docs.items())))
    if len(stores) > 1:
        logger.warning(f"User {user_id} owns {len(stores)} stores; using {stores[0].id}")
    return stores[0] if stores else None


async def fetch_price_history(store: DocumentStore) -> list[PriceHistoryEntry]:
    return await _fetch_all(store, PriceHistoryEntry, PRICE_HISTORY)


async def fetch_canonical_products(store: DocumentStore) -> list[CanonicalProduct]:
    return await _fetch_all(store, CanonicalProduct, CANONICAL_PRODUCTS)


async def fetch_canonical_by_normalized_name(
    store: DocumentStore, normalized_name: str
) -> list[CanonicalProduct]:
    """Fetch catalog entries whose stored normalizedName equals the key."""
    raw_docs = await store.query_equal(CANONICAL_PRODUCTS, "normalizedName", normalized_name)
    return decode_collection(CanonicalProduct, CANONICAL_PRODUCTS, raw_docs)


async def fetch_suggested_products(store: DocumentStore) -> list[SuggestedNewProduct]:
    return await _fetch_all(store, SuggestedNewProduct, SUGGESTED_NEW_PRODUCTS)


async def fetch_preferred_location(
    store: DocumentStore, user_id: Optional[str]
) -> Optional[PreferredLocation]:
    """Fetch a user's preferred location, or None."""
    if not user_id:
        return None
    path = join_path(USER_SETTINGS, user_id, "preferredLocation")
    raw = await store.get(path)
    if raw is None:
        return None
    try:
        return decode_document(PreferredLocation, USER_SETTINGS, user_id, raw)
    except DocumentDecodeError as e:
        logger.warning(f"Ignoring malformed preferred location: {e}")
        return None
