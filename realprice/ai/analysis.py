"""Image analysis and related-product suggestion flows."""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from realprice import metrics
from realprice.ai.llm_service import LLMService
from realprice.ai.prompts import ProductIdentificationPrompt, RelatedProductsPrompt
from realprice.config import settings
from realprice.db import fetch
from realprice.db.models import CanonicalProduct, SuggestionSource
from realprice.normalize.catalog import CatalogCheck, check_and_suggest, filter_related_products
from realprice.notify.notifications import NotificationCenter
from realprice.store.base import DocumentStore, StoreError

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """Raised when an AI collaborator fails. Recoverable; not retried."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


def _as_ai_error(operation: str, error: Exception) -> AIServiceError:
    if isinstance(error, AIServiceError):
        return error
    return AIServiceError(operation, f"{type(error).__name__}: {error}")


class ProductIdentifier(Protocol):
    async def identify(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        ...


class RelatedProductSuggester(Protocol):
    async def related_products(self, product_name: str, catalog_names: list[str]) -> list[str]:
        ...


class OpenAIProductAdvisor:
    """ProductIdentifier and RelatedProductSuggester backed by OpenAI."""

    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or LLMService()

    async def identify(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        """
        Identify the main product in a photo.

        Raises:
            AIServiceError: If the call fails or the answer is empty
        """
        prompt = ProductIdentificationPrompt()
        try:
            result = await self.llm.call_vision_structured(
                prompt.to_prompt(),
                image_bytes,
                prompt.get_response_schema(),
                mime_type=mime_type,
                system_prompt=prompt.get_system_prompt(),
            )
        except Exception as e:
            metrics.record_ai_call("identify", False)
            raise AIServiceError("identify", str(e)) from e

        name = str(result.get("productIdentification") or "").strip()
        if not name:
            metrics.record_ai_call("identify", False)
            raise AIServiceError("identify", "no product identified")
        metrics.record_ai_call("identify", True)
        return name

    async def related_products(self, product_name: str, catalog_names: list[str]) -> list[str]:
        """
        Suggest commercially related product names.

        Raises:
            AIServiceError: If the call fails or the answer is malformed
        """
        prompt = RelatedProductsPrompt(
            product_name=product_name,
            catalog_names=catalog_names,
            limit=settings.related_products_limit,
        )
        try:
            result = await self.llm.call_llm_structured(
                prompt.to_prompt(),
                prompt.get_response_schema(),
                system_prompt=prompt.get_system_prompt(),
            )
        except Exception as e:
            metrics.record_ai_call("related_products", False)
            raise AIServiceError("related_products", str(e)) from e

        names = result.get("relatedProductNames")
        if not isinstance(names, list):
            metrics.record_ai_call("related_products", False)
            raise AIServiceError("related_products", "relatedProductNames missing")
        metrics.record_ai_call("related_products", True)
        cleaned = [str(name).strip() for name in names if str(name).strip()]
        return cleaned[: settings.related_products_limit]


@dataclass
class AnalysisResult:
    """Outcome of analysing one image."""

    product_identification: Optional[str] = None
    catalog_check: Optional[CatalogCheck] = None
    related_products: list[str] = field(default_factory=list)
    error: Optional[str] = None
    related_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


CatalogLoader = Callable[[], Awaitable[list[CanonicalProduct]]]


class ImageAnalysisFlow:
    """
    Identify a photographed product, queue it for the catalog if missing,
    and suggest related products grounded in the catalog.
    """

    def __init__(
        self,
        store: DocumentStore,
        identifier: ProductIdentifier,
        suggester: RelatedProductSuggester,
        notifications: Optional[NotificationCenter] = None,
        catalog_loader: Optional[CatalogLoader] = None,
    ):
        self.store = store
        self.identifier = identifier
        self.suggester = suggester
        self.notifications = notifications
        self._catalog_loader = catalog_loader

    async def _load_catalog(self) -> list[CanonicalProduct]:
        try:
            if self._catalog_loader is not None:
                return await self._catalog_loader()
            return await fetch.fetch_canonical_products(self.store)
        except StoreError as e:
            logger.warning(f"Catalog unavailable for related products: {e}")
            return []

    def _report(self, title: str, error: Exception) -> None:
        if self.notifications is not None:
            self.notifications.error(title, str(error))

    async def analyze(
        self,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
        lang: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Run the full analysis. AI failures end up in the result, never raised.

        Collaborators should raise AIServiceError; any other exception they
        raise is wrapped into one here.
        """
        try:
            name = await self.identifier.identify(image_bytes, mime_type)
        except Exception as exc:
            e = _as_ai_error("identify", exc)
            logger.warning(f"Image identification failed: {e}")
            self._report("Image analysis failed", e)
            return AnalysisResult(error=str(e))

        result = AnalysisResult(product_identification=name)
        result.catalog_check = await check_and_suggest(
            self.store,
            name,
            SuggestionSource.IMAGE_ANALYSIS,
            lang=lang,
            user_id=user_id,
            notifications=self.notifications,
        )

        catalog = await self._load_catalog()
        try:
            raw = await self.suggester.related_products(name, [p.name for p in catalog])
        except Exception as exc:
            e = _as_ai_error("related_products", exc)
            logger.warning(f"Related products for {name!r} failed: {e}")
            self._report("Related products unavailable", e)
            result.related_error = str(e)
            return result

        result.related_products = filter_related_products(raw, catalog)
        return result
