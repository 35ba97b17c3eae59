"""Offer views: join, distance, filtering and sorting."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional

from realprice.config import settings
from realprice.db.models import Advertisement, Store
from realprice.normalize.text import ai_hint_from_name
from realprice.views.categories import category_name
from realprice.views.geo import Coordinate, haversine_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Offer:
    """An active advertisement as displayed to shoppers."""

    id: str
    product_name: str
    product_image: str
    data_ai_hint: str
    price: float
    store_id: str
    store_name: str
    distance: Optional[float]  # km; None when either coordinate is missing
    category: str
    description: str
    valid_until: int


class SortOrder(str, Enum):
    DISTANCE = "distance"
    PRICE = "price"


def unknown_store_label(store_id: str) -> str:
    """Label used when an advertisement references a store we cannot resolve."""
    return f"Store {store_id[:6]}..."


def build_offer(
    ad: Advertisement,
    stores_by_id: Mapping[str, Store],
    origin: Optional[Coordinate] = None,
) -> Offer:
    """
    Join an advertisement with its store.

    Distance is computed only when both the origin and the store
    coordinates are known.
    """
    store = stores_by_id.get(ad.store_id)
    distance = None
    if origin is not None and store is not None and store.has_coordinates:
        distance = haversine_km(origin, Coordinate(store.latitude, store.longitude))

    return Offer(
        id=ad.id,
        product_name=ad.name,
        product_image=ad.image_url or settings.placeholder_image_url,
        data_ai_hint=ad.data_ai_hint or ai_hint_from_name(ad.name),
        price=ad.price,
        store_id=ad.store_id,
        store_name=store.name if store else unknown_store_label(ad.store_id),
        distance=distance,
        category=ad.category,
        description=ad.description,
        valid_until=ad.valid_until,
    )


def build_offers(
    ads: Iterable[Advertisement],
    stores_by_id: Mapping[str, Store],
    origin: Optional[Coordinate] = None,
) -> list[Offer]:
    """Build offers for a set of active advertisements."""
    return [build_offer(ad, stores_by_id, origin) for ad in ads]


def filter_by_category(offers: Iterable[Offer], category: Optional[str]) -> list[Offer]:
    """Keep offers whose category equals the display name exactly (case-sensitive)."""
    if not category:
        return list(offers)
    return [offer for offer in offers if offer.category == category]


def search_offers(offers: Iterable[Offer], term: Optional[str]) -> list[Offer]:
    """Case-insensitive substring match on product name OR store name OR category."""
    if not term:
        return list(offers)
    needle = term.lower()
    return [
        offer
        for offer in offers
        if needle in offer.product_name.lower()
        or needle in offer.store_name.lower()
        or needle in offer.category.lower()
    ]


def _distance_key(offer: Offer) -> tuple[bool, float]:
    # Unknown distances sort after every known one and tie with each other
    if offer.distance is None:
        return (True, 0.0)
    return (False, offer.distance)


def sort_offers(offers: Iterable[Offer], order: SortOrder = SortOrder.DISTANCE) -> list[Offer]:
    """Stable sort by distance (nulls last) or by price, ascending."""
    if order == SortOrder.PRICE:
        return sorted(offers, key=lambda offer: offer.price)
    return sorted(offers, key=_distance_key)


def select_offers(
    offers: Iterable[Offer],
    category_id: Optional[str] = None,
    search: Optional[str] = None,
    order: SortOrder = SortOrder.DISTANCE,
) -> list[Offer]:
    """
    Apply the home-page pipeline: category, then search, then sort.

    Args:
        offers: Offers to select from
        category_id: Category id from the category filter; resolved to its
                     display name. An unknown id matches nothing.
        search: Free-text search term
        order: Sort order

    Returns:
        Selected and sorted offers
    """
    selected = list(offers)
    if category_id:
        name = category_name(category_id)
        if name is None:
            logger.debug(f"Unknown category id {category_id!r}; no offers match")
            return []
        selected = filter_by_category(selected, name)
    selected = search_offers(selected, search)
    return sort_offers(selected, order)
