"""Catalog membership checks and suggestion queueing."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from realprice import metrics
from realprice.db import fetch
from realprice.db.models import CanonicalProduct, SuggestedNewProduct, SuggestionSource
from realprice.db.mutations import create_suggestion
from realprice.normalize.text import normalize_name
from realprice.notify.notifications import NotificationCenter
from realprice.store.base import DocumentStore, StoreError
from realprice.utils.clock import now_ms as wall_clock_ms
from realprice.views.catalog import find_in_catalog

logger = logging.getLogger(__name__)


class CatalogOutcome(str, Enum):
    IN_CATALOG = "in-catalog"
    SUGGESTED = "suggested"
    NEUTRAL = "neutral"  # nothing to check, or the store failed


@dataclass
class CatalogCheck:
    outcome: CatalogOutcome
    normalized_name: str
    product: Optional[CanonicalProduct] = None
    suggestion: Optional[SuggestedNewProduct] = None

    @property
    def in_catalog(self) -> bool:
        return self.outcome == CatalogOutcome.IN_CATALOG


async def check_and_suggest(
    store: DocumentStore,
    product_name: str,
    source: SuggestionSource,
    lang: Optional[str] = None,
    user_id: Optional[str] = None,
    notifications: Optional[NotificationCenter] = None,
    now_ms: Optional[int] = None,
) -> CatalogCheck:
    """
    Check a product name against the catalog, queueing it for review if missing.

    Every entry point (image analysis, empty search) goes through here.
    Store failures never escape: they are logged, reported as a non-fatal
    notification and turned into a NEUTRAL result.

    Args:
        store: Document store
        product_name: Name as the user or the AI produced it
        source: Where the name came from
        lang: UI language of the caller
        user_id: Signed-in user, if any
        notifications: Where to report failures
        now_ms: Suggestion timestamp (defaults to the wall clock)

    Returns:
        CatalogCheck with the outcome and the matched product or new suggestion
    """
    normalized = normalize_name(product_name or "")
    if not normalized:
        return CatalogCheck(CatalogOutcome.NEUTRAL, normalized)

    try:
        match = find_in_catalog(normalized, await fetch.fetch_canonical_products(store))
        if match.in_catalog:
            metrics.record_catalog_check(source.value, CatalogOutcome.IN_CATALOG.value)
            logger.debug(f"{product_name!r} is in the catalog")
            return CatalogCheck(CatalogOutcome.IN_CATALOG, normalized, product=match.product)

        suggestion = await create_suggestion(
            store,
            product_name,
            source,
            now_ms if now_ms is not None else wall_clock_ms(),
            lang=lang,
            user_id=user_id,
        )
    except StoreError as e:
        metrics.record_catalog_check(source.value, CatalogOutcome.NEUTRAL.value)
        logger.error(f"Catalog check for {product_name!r} failed: {e}")
        if notifications is not None:
            notifications.error(
                "Catalog check failed",
                f"Could not check {product_name!r} against the catalog.",
            )
        return CatalogCheck(CatalogOutcome.NEUTRAL, normalized)

    metrics.record_catalog_check(source.value, CatalogOutcome.SUGGESTED.value)
    logger.info(f"Suggested {product_name!r} for the catalog (source: {source.value})")
    return CatalogCheck(CatalogOutcome.SUGGESTED, normalized, suggestion=suggestion)


def filter_related_products(
    names: Iterable[str], catalog: Iterable[CanonicalProduct]
) -> list[str]:
    """
    Prefer catalog-grounded related products.

    Keeps names whose normalized form matches a catalog entry. When none do,
    returns the unfiltered list so a non-empty AI answer is never hidden.
    """
    names = list(names)
    catalog_keys = {normalize_name(product.normalized_name) for product in catalog}
    grounded = [name for name in names if normalize_name(name) in catalog_keys]
    return grounded if grounded else names
