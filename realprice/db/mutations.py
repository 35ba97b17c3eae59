"""Writes against the document store."""

import logging
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from realprice.config import settings
from realprice.db.models import (
    ADVERTISEMENTS,
    CANONICAL_PRODUCTS,
    MS_PER_DAY,
    STORES,
    SUGGESTED_NEW_PRODUCTS,
    USER_SETTINGS,
    Advertisement,
    CanonicalProduct,
    PreferredLocation,
    Store,
    SuggestedNewProduct,
    SuggestionSource,
    SuggestionStatus,
    decode_document,
)
from realprice.db.schemas import (
    AdvertisementCreate,
    AdvertisementUpdate,
    CanonicalProductCreate,
    StoreCreate,
    StoreUpdate,
)
from realprice.normalize.text import normalize_name
from realprice.store.base import DocumentStore, join_path

logger = logging.getLogger(__name__)


class ListingValidationError(ValueError):
    """Raised when mutation input breaks an invariant."""

    pass


class RecordNotFoundError(LookupError):
    """Raised when a mutation targets a missing document."""

    def __init__(self, collection: str, key: str):
        self.collection = collection
        self.key = key
        super().__init__(f"{collection}/{key} not found")


class ImmutableRecordError(Exception):
    """Raised when a mutation targets an archived advertisement."""

    def __init__(self, advertisement_id: str):
        self.advertisement_id = advertisement_id
        super().__init__(f"Advertisement {advertisement_id} is archived and cannot change")


def _apply_changes(model, current, fields: dict[str, Any]):
    """
    Merge changes into a record and validate the result.

    None clears a field that has a default. A required field cannot be cleared.

    Raises:
        ListingValidationError: If the merged record is invalid
    """
    data = current.model_dump()
    for name, value in fields.items():
        info = model.model_fields[name]
        if value is None and not info.is_required():
            data[name] = info.get_default(call_default_factory=True)
        else:
            data[name] = value
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ListingValidationError(f"Invalid {model.__name__} change: {e}") from e


def _check_validity_days(days: int) -> None:
    if not 1 <= days <= settings.max_validity_days:
        raise ListingValidationError(
            f"Validity must be between 1 and {settings.max_validity_days} days, got {days}"
        )


async def _read(store: DocumentStore, model, collection: str, key: str):
    raw = await store.get(join_path(collection, key))
    if raw is None:
        raise RecordNotFoundError(collection, key)
    return decode_document(model, collection, key, raw)


async def create_advertisement(
    store: DocumentStore,
    store_id: str,
    data: AdvertisementCreate,
    now_ms: int,
) -> Advertisement:
    """
    Publish a listing valid for `data.validity_days` days from now.

    Optional image URL and stock are only written when present.
    """
    _check_validity_days(data.validity_days)

    key = store.push_key(ADVERTISEMENTS)
    ad = Advertisement(
        id=key,
        store_id=store_id,
        name=data.name,
        description=data.description or "",
        price=data.price,
        category=data.category,
        image_url=data.image_url or None,
        stock=data.stock,
        created_at=now_ms,
        valid_until=now_ms + data.validity_days * MS_PER_DAY,
        data_ai_hint=data.data_ai_hint,
    )
    await store.set(join_path(ADVERTISEMENTS, key), ad.to_document())
    logger.info(f"Created advertisement {key} for store {store_id}")
    return ad


async def update_advertisement(
    store: DocumentStore,
    advertisement_id: str,
    changes: AdvertisementUpdate,
    now_ms: int,
) -> Advertisement:
    """
    Apply changes to an unarchived advertisement.

    A new validity restarts the listing window from now.

    Raises:
        RecordNotFoundError: If the advertisement does not exist
        ImmutableRecordError: If the advertisement is archived
        ListingValidationError: If the change would leave the listing invalid
    """
    ad = await _read(store, Advertisement, ADVERTISEMENTS, advertisement_id)
    if ad.archived:
        raise ImmutableRecordError(advertisement_id)

    fields: dict[str, Any] = changes.model_dump(exclude_unset=True, exclude={"validity_days"})
    if changes.validity_days is not None:
        _check_validity_days(changes.validity_days)
        fields["valid_until"] = now_ms + changes.validity_days * MS_PER_DAY

    updated = _apply_changes(Advertisement, ad, fields)
    stored = updated.to_document()
    updates = {}
    for name in fields:
        alias = Advertisement.model_fields[name].alias or name
        updates[join_path(ADVERTISEMENTS, advertisement_id, alias)] = stored.get(alias)
    if updates:
        await store.update(updates)
    return updated


async def register_store(store: DocumentStore, owner_id: str, data: StoreCreate) -> Store:
    key = store.push_key(STORES)
    record = Store(id=key, owner_id=owner_id, **data.model_dump())
    await store.set(join_path(STORES, key), record.to_document())
    logger.info(f"Registered store {key} for owner {owner_id}")
    return record


async def update_store(store: DocumentStore, store_id: str, changes: StoreUpdate) -> Store:
    """
    Apply changes to a store. Unset fields are left untouched.

    Raises:
        RecordNotFoundError: If the store does not exist
        ListingValidationError: If the change would leave the store invalid
    """
    current = await _read(store, Store, STORES, store_id)
    fields = changes.model_dump(exclude_unset=True)
    updated = _apply_changes(Store, current, fields)
    stored = updated.to_document()
    updates = {}
    for name in fields:
        alias = Store.model_fields[name].alias or name
        updates[join_path(STORES, store_id, alias)] = stored.get(alias)
    if updates:
        await store.update(updates)
    return updated


async def save_preferred_location(
    store: DocumentStore, user_id: str, location: PreferredLocation
) -> PreferredLocation:
    await store.set(
        join_path(USER_SETTINGS, user_id, "preferredLocation"),
        location.model_dump(),
    )
    return location


def _canonical_from(key: str, data: CanonicalProductCreate) -> CanonicalProduct:
    return CanonicalProduct(
        id=key,
        name=data.name,
        normalized_name=normalize_name(data.name),
        category=data.category,
        description=data.description or "",
        default_image_url=data.default_image_url or "",
    )


async def create_canonical_product(
    store: DocumentStore, data: CanonicalProductCreate
) -> CanonicalProduct:
    key = store.push_key(CANONICAL_PRODUCTS)
    product = _canonical_from(key, data)
    await store.set(join_path(CANONICAL_PRODUCTS, key), product.to_document())
    logger.info(f"Added {product.name!r} to the catalog")
    return product


async def create_suggestion(
    store: DocumentStore,
    product_name: str,
    source: SuggestionSource,
    now_ms: int,
    lang: Optional[str] = None,
    user_id: Optional[str] = None,
) -> SuggestedNewProduct:
    """Queue a product name for catalog review."""
    key = store.push_key(SUGGESTED_NEW_PRODUCTS)
    suggestion = SuggestedNewProduct(
        id=key,
        product_name=product_name.strip(),
        normalized_name=normalize_name(product_name),
        source=source,
        timestamp=now_ms,
        status=SuggestionStatus.PENDING,
        lang=lang,
        user_id=user_id,
    )
    await store.set(join_path(SUGGESTED_NEW_PRODUCTS, key), suggestion.to_document())
    return suggestion


async def update_suggestion_status(
    store: DocumentStore, suggestion_id: str, status: SuggestionStatus
) -> None:
    await store.set(join_path(SUGGESTED_NEW_PRODUCTS, suggestion_id, "status"), status.value)


async def promote_suggestion(
    store: DocumentStore,
    suggestion: SuggestedNewProduct,
    data: CanonicalProductCreate,
    suggestions: Iterable[SuggestedNewProduct] = (),
) -> tuple[CanonicalProduct, list[str]]:
    """
    Add a suggestion to the catalog.

    Creates the CanonicalProduct and marks the suggestion, plus every other
    pending suggestion with the same normalized name, as added-to-catalog in
    one atomic multi-path update.

    Returns:
        (new catalog entry, ids of suggestions marked added-to-catalog)
    """
    key = store.push_key(CANONICAL_PRODUCTS)
    product = _canonical_from(key, data)

    promoted = [suggestion.id]
    for other in suggestions:
        if (
            other.id != suggestion.id
            and other.status == SuggestionStatus.PENDING
            and other.normalized_name == suggestion.normalized_name
        ):
            promoted.append(other.id)

    updates: dict[str, Any] = {join_path(CANONICAL_PRODUCTS, key): product.to_document()}
    for suggestion_id in promoted:
        updates[join_path(SUGGESTED_NEW_PRODUCTS, suggestion_id, "status")] = (
            SuggestionStatus.ADDED_TO_CATALOG.value
        )
    await store.update(updates)
    logger.info(f"Promoted {product.name!r} to the catalog ({len(promoted)} suggestion(s))")
    return product, promoted


async def dismiss_suggestion(store: DocumentStore, suggestion_id: str) -> None:
    await update_suggestion_status(store, suggestion_id, SuggestionStatus.REJECTED)
    logger.info(f"Dismissed suggestion {suggestion_id}")
