"""Query cache key construction."""

from typing import Optional

# Collections
ADVERTISEMENTS = "advertisements"  # raw snapshot, archived and expired included
ACTIVE_ADVERTISEMENTS = "activeAdvertisements"
STORE_MAP = "storeMap"
STORE_ADVERTISEMENTS = "storeAdvertisements"
USER_STORE = "userStore"
PREFERRED_LOCATION = "preferredLocation"
PRICE_HISTORY = "priceHistory"
CANONICAL_PRODUCTS = "canonicalProducts"
SUGGESTED_PRODUCTS = "suggestedProducts"

# Keys parameterized by the signed-in user
USER_SCOPED = (USER_STORE, PREFERRED_LOCATION)

SEPARATOR = ":"
NONE_PARAM = "~"


def query_key(collection: str, *params: Optional[object]) -> str:
    """
    Build a cache key from a collection and scalar parameters.

    query_key("userStore", "u1") -> "userStore:u1"
    """
    if not params:
        return collection
    parts = [NONE_PARAM if p is None else str(p) for p in params]
    return SEPARATOR.join([collection, *parts])


def key_matches(key: str, prefix: str) -> bool:
    """True when key equals prefix or is one of its parameterized children."""
    return key == prefix or key.startswith(prefix + SEPARATOR)


def collection_of(key: str) -> str:
    return key.split(SEPARATOR, 1)[0]
