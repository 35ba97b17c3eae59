"""Marketplace session: cached reads and cache-aware mutations.

A session binds one document store, one QueryCache and the current identity.
Reads go through the cache; every mutation either seeds the cache with its
result or invalidates what it made stale.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from realprice.ai.analysis import (
    AnalysisResult,
    ImageAnalysisFlow,
    ProductIdentifier,
    RelatedProductSuggester,
)
from realprice.cache.keys import (
    ACTIVE_ADVERTISEMENTS,
    ADVERTISEMENTS,
    CANONICAL_PRODUCTS,
    PREFERRED_LOCATION,
    PRICE_HISTORY,
    STORE_ADVERTISEMENTS,
    STORE_MAP,
    SUGGESTED_PRODUCTS,
    USER_SCOPED,
    USER_STORE,
    query_key,
)
from realprice.cache.query_cache import QueryCache
from realprice.config import settings
from realprice.db import fetch, mutations
from realprice.db.models import (
    STORES,
    SUGGESTED_NEW_PRODUCTS,
    Advertisement,
    CanonicalProduct,
    PreferredLocation,
    PriceHistoryEntry,
    Store,
    SuggestedNewProduct,
    SuggestionSource,
    SuggestionStatus,
)
from realprice.db.mutations import RecordNotFoundError
from realprice.db.schemas import (
    AdvertisementCreate,
    AdvertisementUpdate,
    CanonicalProductCreate,
    StoreCreate,
    StoreUpdate,
)
from realprice.logging_config import get_logger
from realprice.location.geolocation import LocationResolver, ResolvedLocation
from realprice.normalize.catalog import CatalogCheck, CatalogOutcome, check_and_suggest
from realprice.notify.notifications import NotificationCenter
from realprice.store.base import DocumentStore
from realprice.sync.active_offers import ActiveOffersQuery
from realprice.utils.clock import Clock, now_ms
from realprice.views import history
from realprice.views.catalog import CatalogMatch, find_in_catalog
from realprice.views.geo import Coordinate
from realprice.views.listings import (
    StoreListings,
    SuggestionGroup,
    group_pending_suggestions,
    partition_suggestions,
    split_store_listings,
)
from realprice.views.offers import Offer, SortOrder, build_offers, select_offers


@dataclass(frozen=True)
class User:
    uid: str
    email: Optional[str] = None
    is_admin: bool = False


class AuthProvider(Protocol):
    async def sign_out(self) -> None:
        ...


class NotSignedInError(PermissionError):
    """Raised when an operation needs a signed-in user."""

    pass


@dataclass
class AdminSuggestions:
    pending: list[SuggestedNewProduct]
    reviewed: list[SuggestedNewProduct]
    groups: list[SuggestionGroup]


def configure_cache(cache: QueryCache) -> QueryCache:
    """Apply marketplace freshness windows to a cache."""
    cache.set_stale_time(STORE_MAP, settings.store_lookup_stale_seconds)
    cache.set_stale_time(USER_STORE, settings.store_lookup_stale_seconds)
    return cache


def _replace_by_id(items: list, record) -> list:
    return [record if item.id == record.id else item for item in items]


class MarketplaceSession:
    """
    Entry point for everything a marketplace client reads or writes.

    Example:
        session = MarketplaceSession(store)
        session.set_user(User(uid="u1"))
        offers = await session.offers(search="milk", origin=Coordinate(-23.5, -46.6))
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[QueryCache] = None,
        notifications: Optional[NotificationCenter] = None,
        clock: Clock = now_ms,
        auth: Optional[AuthProvider] = None,
        location_resolver: Optional[LocationResolver] = None,
    ):
        self.store = store
        self.cache = configure_cache(cache or QueryCache())
        self.notifications = notifications or NotificationCenter()
        self.clock = clock
        self.auth = auth
        self.location_resolver = location_resolver or LocationResolver()
        self.active = ActiveOffersQuery(store, self.cache, clock=clock)
        self._user: Optional[User] = None
        self._log = get_logger(__name__, user_id=None)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def user(self) -> Optional[User]:
        return self._user

    def set_user(self, user: Optional[User]) -> None:
        """Switch identity, dropping the previous user's cached entries."""
        previous = self._user
        if previous is not None and (user is None or user.uid != previous.uid):
            for collection in USER_SCOPED:
                self.cache.remove(query_key(collection, previous.uid))
            self._log.info(f"Cleared cached data of user {previous.uid}")
        self._user = user
        self._log = get_logger(__name__, user_id=user.uid if user else None)

    async def sign_out(self) -> None:
        if self.auth is not None:
            await self.auth.sign_out()
        self.set_user(None)

    def _require_user(self) -> User:
        if self._user is None:
            raise NotSignedInError("Sign in required")
        return self._user

    def _require_admin(self) -> User:
        user = self._require_user()
        if not user.is_admin:
            raise NotSignedInError("Administrator access required")
        return user

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def store_map(self) -> dict[str, Store]:
        return await self.active.store_map()

    async def active_advertisements(self, background_refresh: bool = False) -> list[Advertisement]:
        """Active advertisements, re-checked against the clock at read time."""
        ads = await self.active.materialize(background_refresh=background_refresh)
        now = self.clock()
        return [ad for ad in ads if ad.is_active(now)]

    async def offers(
        self,
        category_id: Optional[str] = None,
        search: Optional[str] = None,
        order: SortOrder = SortOrder.DISTANCE,
        origin: Optional[Coordinate] = None,
        lang: Optional[str] = None,
    ) -> list[Offer]:
        """
        Home-page offers.

        A search that matches nothing is queued for catalog review.
        """
        ads = await self.active_advertisements()
        stores_by_id = await self.store_map()
        selected = select_offers(
            build_offers(ads, stores_by_id, origin),
            category_id=category_id,
            search=search,
            order=order,
        )
        if search and search.strip() and not selected:
            await self.check_and_suggest(search, SuggestionSource.SEARCH_BAR, lang=lang)
        return selected

    async def resolve_location(self, request_live: bool = True) -> ResolvedLocation:
        return await self.location_resolver.resolve(
            await self.preferred_location(), request_live=request_live
        )

    async def user_store(self) -> Optional[Store]:
        if self._user is None:
            return None
        uid = self._user.uid
        return await self.cache.get(
            query_key(USER_STORE, uid), lambda: fetch.fetch_user_store(self.store, uid)
        )

    async def preferred_location(self) -> Optional[PreferredLocation]:
        if self._user is None:
            return None
        uid = self._user.uid
        return await self.cache.get(
            query_key(PREFERRED_LOCATION, uid),
            lambda: fetch.fetch_preferred_location(self.store, uid),
        )

    async def store_advertisements(self, store_id: str) -> list[Advertisement]:
        return await self.cache.get(
            query_key(STORE_ADVERTISEMENTS, store_id),
            lambda: fetch.fetch_store_advertisements(self.store, store_id),
        )

    async def store_listings(self) -> Optional[StoreListings]:
        """The signed-in owner's listings, or None if they have no store."""
        owned = await self.user_store()
        if owned is None:
            return None
        return split_store_listings(await self.store_advertisements(owned.id), self.clock())

    async def price_history(self) -> list[PriceHistoryEntry]:
        entries = await self.cache.get(PRICE_HISTORY, lambda: fetch.fetch_price_history(self.store))
        return history.dedupe_history(entries)

    async def monitored_products(self) -> list[str]:
        return history.distinct_product_names(await self.price_history())

    async def product_price_series(self, product_name: str) -> list[history.PricePoint]:
        return history.price_series(await self.price_history(), product_name)

    async def product_price_summary(self, product_name: str) -> Optional[history.PriceSummary]:
        return history.summarize(await self.price_history(), product_name)

    async def canonical_products(self) -> list[CanonicalProduct]:
        return await self.cache.get(
            CANONICAL_PRODUCTS, lambda: fetch.fetch_canonical_products(self.store)
        )

    async def find_in_catalog(self, product_name: str) -> CatalogMatch:
        return find_in_catalog(product_name, await self.canonical_products())

    async def suggested_products(self) -> list[SuggestedNewProduct]:
        return await self.cache.get(
            SUGGESTED_PRODUCTS, lambda: fetch.fetch_suggested_products(self.store)
        )

    async def admin_suggestions(self) -> AdminSuggestions:
        self._require_admin()
        suggestions = await self.suggested_products()
        pending, reviewed = partition_suggestions(suggestions)
        return AdminSuggestions(pending, reviewed, group_pending_suggestions(suggestions))

    # ------------------------------------------------------------------
    # Suggestions and AI flows
    # ------------------------------------------------------------------

    async def check_and_suggest(
        self, product_name: str, source: SuggestionSource, lang: Optional[str] = None
    ) -> CatalogCheck:
        result = await check_and_suggest(
            self.store,
            product_name,
            source,
            lang=lang,
            user_id=self._user.uid if self._user else None,
            notifications=self.notifications,
            now_ms=self.clock(),
        )
        if result.outcome == CatalogOutcome.SUGGESTED:
            self.cache.update(SUGGESTED_PRODUCTS, lambda items: [*items, result.suggestion])
        return result

    def image_analysis(
        self, identifier: ProductIdentifier, suggester: RelatedProductSuggester
    ) -> ImageAnalysisFlow:
        return ImageAnalysisFlow(
            self.store,
            identifier,
            suggester,
            notifications=self.notifications,
            catalog_loader=self.canonical_products,
        )

    async def analyze_image(
        self,
        image_bytes: bytes,
        identifier: ProductIdentifier,
        suggester: RelatedProductSuggester,
        mime_type: str = "image/jpeg",
        lang: Optional[str] = None,
    ) -> AnalysisResult:
        result = await self.image_analysis(identifier, suggester).analyze(
            image_bytes,
            mime_type=mime_type,
            lang=lang,
            user_id=self._user.uid if self._user else None,
        )
        check = result.catalog_check
        if check is not None and check.outcome == CatalogOutcome.SUGGESTED:
            self.cache.update(SUGGESTED_PRODUCTS, lambda items: [*items, check.suggestion])
        return result

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _patch_advertisement(self, ad: Advertisement, append: bool) -> None:
        def patch(items: list[Advertisement]) -> list[Advertisement]:
            return [*items, ad] if append else _replace_by_id(items, ad)

        self.cache.update(ADVERTISEMENTS, patch)
        self.cache.update(query_key(STORE_ADVERTISEMENTS, ad.store_id), patch)
        if append:
            self.cache.update(ACTIVE_ADVERTISEMENTS, patch)
        else:
            # An edit can move the ad in or out of the active set
            self.cache.update(
                ACTIVE_ADVERTISEMENTS,
                lambda items: [
                    *[item for item in items if item.id != ad.id],
                    *([ad] if ad.is_active(self.clock()) else []),
                ],
            )

    async def _owned_store(self) -> Store:
        owned = await self.user_store()
        if owned is None:
            raise RecordNotFoundError(STORES, f"owner:{self._require_user().uid}")
        return owned

    async def create_advertisement(self, data: AdvertisementCreate) -> Advertisement:
        owned = await self._owned_store()
        ad = await mutations.create_advertisement(self.store, owned.id, data, self.clock())
        self._patch_advertisement(ad, append=True)
        self._log.info(f"Published advertisement {ad.id} for store {owned.id}")
        return ad

    async def update_advertisement(
        self, advertisement_id: str, changes: AdvertisementUpdate
    ) -> Advertisement:
        self._require_user()
        ad = await mutations.update_advertisement(
            self.store, advertisement_id, changes, self.clock()
        )
        self._patch_advertisement(ad, append=False)
        return ad

    def _seed_store(self, uid: str, record: Store) -> None:
        self.cache.set(query_key(USER_STORE, uid), record)

        def patch(stores_by_id: dict[str, Store]) -> dict[str, Store]:
            return {**stores_by_id, record.id: record}

        self.cache.update(STORE_MAP, patch)

    async def register_store(self, data: StoreCreate) -> Store:
        user = self._require_user()
        record = await mutations.register_store(self.store, user.uid, data)
        self._log.info(f"Registered store {record.id}")
        self._seed_store(user.uid, record)
        return record

    async def update_store(self, changes: StoreUpdate) -> Store:
        user = self._require_user()
        owned = await self._owned_store()
        record = await mutations.update_store(self.store, owned.id, changes)
        self._seed_store(user.uid, record)
        return record

    async def save_preferred_location(self, location: PreferredLocation) -> PreferredLocation:
        user = self._require_user()
        saved = await mutations.save_preferred_location(self.store, user.uid, location)
        self.cache.set(query_key(PREFERRED_LOCATION, user.uid), saved)
        return saved

    async def create_canonical_product(self, data: CanonicalProductCreate) -> CanonicalProduct:
        self._require_admin()
        product = await mutations.create_canonical_product(self.store, data)
        self.cache.update(CANONICAL_PRODUCTS, lambda items: [*items, product])
        return product

    def _patch_suggestion_status(self, ids: set[str], status: SuggestionStatus) -> None:
        def patch(items: list[SuggestedNewProduct]) -> list[SuggestedNewProduct]:
            return [
                item.model_copy(update={"status": status}) if item.id in ids else item
                for item in items
            ]

        self.cache.update(SUGGESTED_PRODUCTS, patch)

    async def _find_suggestion(self, suggestion_id: str) -> tuple[SuggestedNewProduct, list]:
        suggestions = await self.suggested_products()
        for suggestion in suggestions:
            if suggestion.id == suggestion_id:
                return suggestion, suggestions
        raise RecordNotFoundError(SUGGESTED_NEW_PRODUCTS, suggestion_id)

    async def promote_suggestion(
        self, suggestion_id: str, data: CanonicalProductCreate
    ) -> CanonicalProduct:
        """Add a suggested name to the catalog and close every matching pending suggestion."""
        self._require_admin()
        suggestion, suggestions = await self._find_suggestion(suggestion_id)
        product, promoted = await mutations.promote_suggestion(
            self.store, suggestion, data, suggestions
        )
        self.cache.update(CANONICAL_PRODUCTS, lambda items: [*items, product])
        self._patch_suggestion_status(set(promoted), SuggestionStatus.ADDED_TO_CATALOG)
        self._log.info(f"Promoted suggestion {suggestion_id} as {product.name!r}")
        return product

    async def update_suggestion_status(self, suggestion_id: str, status: SuggestionStatus) -> None:
        self._require_admin()
        await mutations.update_suggestion_status(self.store, suggestion_id, status)
        self._patch_suggestion_status({suggestion_id}, status)

    async def dismiss_suggestion(self, suggestion_id: str) -> None:
        self._require_admin()
        await mutations.dismiss_suggestion(self.store, suggestion_id)
        self._patch_suggestion_status({suggestion_id}, SuggestionStatus.REJECTED)

    async def run_archival(self) -> list[Advertisement]:
        """Reconcile against freshly fetched data and republish the active view."""
        return await self.active.refresh()

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.get_cache_stats()

    def clear(self) -> None:
        """Drop every cached entry."""
        self.cache.clear()
