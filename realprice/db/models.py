"""Typed entities decoded from the document store."""

from enum import Enum
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from realprice.normalize.text import normalize_name

# Collections
STORES = "stores"
ADVERTISEMENTS = "advertisements"
PRICE_HISTORY = "priceHistory"
CANONICAL_PRODUCTS = "canonicalProducts"
SUGGESTED_NEW_PRODUCTS = "suggestedNewProducts"
USER_SETTINGS = "userSettings"

MS_PER_DAY = 24 * 60 * 60 * 1000


class DocumentDecodeError(Exception):
    """Raised when a stored document does not match its entity schema."""

    def __init__(self, collection: str, key: str, errors: list[dict[str, Any]] | str):
        self.collection = collection
        self.key = key
        self.errors = errors
        super().__init__(f"Cannot decode {collection}/{key}: {errors}")


class Document(BaseModel):
    """Base class for stored entities. `id` is the store key, never a stored field."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""

    def to_document(self) -> dict[str, Any]:
        """Serialize into the stored (camelCase, id-less) form."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True, mode="json")


class Advertisement(Document):
    """A store's time-limited product listing."""

    store_id: str = Field(alias="storeId")
    name: str
    description: str = ""
    price: float = Field(gt=0)
    category: str
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    stock: Optional[int] = Field(default=None, ge=0)
    created_at: int = Field(alias="createdAt")
    valid_until: int = Field(alias="validUntil")
    archived: bool = False
    data_ai_hint: Optional[str] = Field(default=None, alias="dataAiHint")

    def is_expired(self, now_ms: int) -> bool:
        return self.valid_until < now_ms

    def is_active(self, now_ms: int) -> bool:
        return not self.archived and not self.is_expired(now_ms)


class PriceHistoryEntry(Document):
    """Append-only ledger row written when an advertisement is archived."""

    advertisement_id: str = Field(alias="advertisementId")
    product_id: Optional[str] = Field(default=None, alias="productId")
    product_name: str = Field(alias="productName")
    price: float
    store_id: str = Field(alias="storeId")
    store_name: str = Field(alias="storeName")
    archived_at: int = Field(alias="archivedAt")
    original_valid_until: int = Field(alias="originalValidUntil")
    category: str


class Store(Document):
    """A registered store. Exactly one owner."""

    owner_id: str = Field(alias="ownerId")
    name: str
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field(default="", alias="zipCode")
    email: str = ""
    phone: str = ""
    category: str = ""
    description: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class CanonicalProduct(Document):
    """Curated catalog entry."""

    name: str
    normalized_name: str = Field(default="", alias="normalizedName")
    category: str
    description: Optional[str] = None
    default_image_url: Optional[str] = Field(default=None, alias="defaultImageUrl")

    @model_validator(mode="after")
    def _derive_normalized_name(self):
        # Older catalog rows were written without normalizedName
        if not self.normalized_name:
            self.normalized_name = normalize_name(self.name)
        return self


class SuggestionSource(str, Enum):
    IMAGE_ANALYSIS = "image-analysis"
    SEARCH_BAR = "search-bar"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ADDED_TO_CATALOG = "added-to-catalog"
    REJECTED = "rejected"


class SuggestedNewProduct(Document):
    """A product name seen by users but missing from the catalog."""

    product_name: str = Field(alias="productName")
    normalized_name: str = Field(default="", alias="normalizedName")
    source: SuggestionSource
    timestamp: int
    status: SuggestionStatus = SuggestionStatus.PENDING
    lang: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")

    @model_validator(mode="after")
    def _derive_normalized_name(self):
        if not self.normalized_name:
            self.normalized_name = normalize_name(self.product_name)
        return self


class PreferredLocation(BaseModel):
    """A user's fallback origin for distance computation."""

    model_config = ConfigDict(extra="ignore")

    address: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


DocT = TypeVar("DocT", bound=BaseModel)


def decode_document(model: Type[DocT], collection: str, key: str, raw: Any) -> DocT:
    """
    Validate a raw stored value into a typed entity.

    Args:
        model: Entity class
        collection: Collection the value was read from
        key: Store key (becomes `id` for Document subclasses)
        raw: Raw stored value

    Returns:
        Decoded entity

    Raises:
        DocumentDecodeError: If the value is not a map or fails validation
    """
    if not isinstance(raw, dict):
        raise DocumentDecodeError(collection, key, f"expected a map, got {type(raw).__name__}")
    data = dict(raw)
    if issubclass(model, Document):
        data["id"] = key
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DocumentDecodeError(
            collection,
            key,
            [{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()],
        ) from e
