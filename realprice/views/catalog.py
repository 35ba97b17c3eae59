"""Catalog membership checks."""

from dataclasses import dataclass
from typing import Iterable, Optional

from realprice.db.models import CanonicalProduct
from realprice.normalize.text import normalize_name


@dataclass(frozen=True)
class CatalogMatch:
    """Result of a catalog membership check."""

    in_catalog: bool
    product: Optional[CanonicalProduct] = None

    @property
    def category(self) -> Optional[str]:
        """Category of the matched product, for context-aware prompts."""
        return self.product.category if self.product else None


def find_in_catalog(name: str, catalog: Iterable[CanonicalProduct]) -> CatalogMatch:
    """
    Check whether a product name is in the catalog.

    Linear scan comparing normalized names; exact match only.
    """
    key = normalize_name(name)
    if not key:
        return CatalogMatch(in_catalog=False)
    for product in catalog:
        if normalize_name(product.normalized_name) == key:
            return CatalogMatch(in_catalog=True, product=product)
    return CatalogMatch(in_catalog=False)


def is_in_catalog(name: str, catalog: Iterable[CanonicalProduct]) -> bool:
    return find_in_catalog(name, catalog).in_catalog
