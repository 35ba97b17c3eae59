"""Product categories shown by the category filter."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProductCategory:
    id: str
    name: str


PRODUCT_CATEGORIES: tuple[ProductCategory, ...] = (
    ProductCategory("electronics", "Electronics"),
    ProductCategory("clothing", "Clothing"),
    ProductCategory("home-kitchen", "Home & Kitchen"),
    ProductCategory("books", "Books"),
    ProductCategory("groceries", "Groceries"),
    ProductCategory("other", "Other"),
)


def category_name(category_id: str) -> Optional[str]:
    """Display name for a category id, or None when unknown."""
    for category in PRODUCT_CATEGORIES:
        if category.id == category_id:
            return category.name
    return None
