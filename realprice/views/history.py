"""Price-history views over the archival ledger."""

from dataclasses import dataclass
from typing import Iterable, Optional

from realprice.db.models import PriceHistoryEntry


@dataclass(frozen=True)
class PricePoint:
    archived_at: int
    price: float
    store_name: str


@dataclass(frozen=True)
class PriceSummary:
    """Aggregate of one product's archived prices."""

    product_name: str
    count: int
    min_price: float
    max_price: float
    latest_price: float
    first_archived_at: int
    last_archived_at: int


def dedupe_history(entries: Iterable[PriceHistoryEntry]) -> list[PriceHistoryEntry]:
    """
    Collapse rows that archive the same advertisement.

    Two sessions racing to archive one advertisement can each write a row
    under the "fresh" key policy. The earliest archivedAt wins; key order
    breaks ties.
    """
    kept: dict[str, PriceHistoryEntry] = {}
    for entry in entries:
        current = kept.get(entry.advertisement_id)
        if current is None or (entry.archived_at, entry.id) < (current.archived_at, current.id):
            kept[entry.advertisement_id] = entry
    return list(kept.values())


def distinct_product_names(entries: Iterable[PriceHistoryEntry]) -> list[str]:
    """Sorted product names present in the ledger."""
    return sorted({entry.product_name for entry in entries})


def product_history(entries: Iterable[PriceHistoryEntry], product_name: str) -> list[PriceHistoryEntry]:
    """One product's ledger rows, oldest first."""
    rows = [entry for entry in dedupe_history(entries) if entry.product_name == product_name]
    return sorted(rows, key=lambda entry: (entry.archived_at, entry.id))


def price_series(entries: Iterable[PriceHistoryEntry], product_name: str) -> list[PricePoint]:
    """Chart points for one product."""
    return [
        PricePoint(archived_at=entry.archived_at, price=entry.price, store_name=entry.store_name)
        for entry in product_history(entries, product_name)
    ]


def summarize(entries: Iterable[PriceHistoryEntry], product_name: str) -> Optional[PriceSummary]:
    rows = product_history(entries, product_name)
    if not rows:
        return None
    prices = [row.price for row in rows]
    return PriceSummary(
        product_name=product_name,
        count=len(rows),
        min_price=min(prices),
        max_price=max(prices),
        latest_price=rows[-1].price,
        first_archived_at=rows[0].archived_at,
        last_archived_at=rows[-1].archived_at,
    )
