"""Tests for price-history and admin views."""

from realprice.db.models import PriceHistoryEntry, SuggestedNewProduct, SuggestionStatus
from realprice.views.history import (
    dedupe_history,
    distinct_product_names,
    price_series,
    summarize,
)
from realprice.views.listings import group_pending_suggestions, partition_suggestions

from conftest import NOW_MS


def entry(key, ad_id, name="Milk", price=1.0, archived_at=NOW_MS):
    return PriceHistoryEntry(
        id=key,
        advertisement_id=ad_id,
        product_name=name,
        price=price,
        store_id="s1",
        store_name="Shop",
        archived_at=archived_at,
        original_valid_until=archived_at - 1,
        category="Groceries",
    )


def suggestion(key, name, ts, status=SuggestionStatus.PENDING, source="search-bar"):
    return SuggestedNewProduct(id=key, product_name=name, source=source, timestamp=ts, status=status)


def test_dedupe_keeps_earliest_row():
    rows = [entry("h2", "a", archived_at=NOW_MS + 5), entry("h1", "a"), entry("h3", "b")]
    kept = {row.id for row in dedupe_history(rows)}
    assert kept == {"h1", "h3"}


def test_distinct_names_sorted():
    rows = [entry("1", "a", name="Milk"), entry("2", "b", name="Bread"), entry("3", "c", name="Milk")]
    assert distinct_product_names(rows) == ["Bread", "Milk"]


def test_series_sorted_by_archival_time():
    rows = [
        entry("1", "a", price=3, archived_at=NOW_MS + 20),
        entry("2", "b", price=1, archived_at=NOW_MS),
        entry("3", "c", price=2, archived_at=NOW_MS + 10),
        entry("4", "d", name="Bread", price=9),
    ]
    assert [p.price for p in price_series(rows, "Milk")] == [1, 2, 3]


def test_summary():
    rows = [entry("1", "a", price=3, archived_at=NOW_MS + 20), entry("2", "b", price=1)]
    summary = summarize(rows, "Milk")
    assert (summary.count, summary.min_price, summary.max_price, summary.latest_price) == (2, 1, 3, 3)
    assert summarize(rows, "Unknown") is None


def test_partition_and_group_suggestions():
    items = [
        suggestion("1", "Widget", NOW_MS),
        suggestion("2", " widget", NOW_MS + 1, source="image-analysis"),
        suggestion("3", "Gizmo", NOW_MS + 2),
        suggestion("4", "Old", NOW_MS + 3, status=SuggestionStatus.REJECTED),
    ]

    pending, reviewed = partition_suggestions(items)
    assert [s.id for s in pending] == ["3", "2", "1"]
    assert [s.id for s in reviewed] == ["4"]

    groups = group_pending_suggestions(items)
    assert [g.normalized_name for g in groups] == ["widget", "gizmo"]
    assert groups[0].count == 2
    assert groups[0].product_name == "Widget"
    assert groups[0].sources == {"search-bar", "image-analysis"}
