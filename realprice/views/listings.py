"""Store-owner and admin views."""

from dataclasses import dataclass, field
from typing import Iterable

from realprice.db.models import Advertisement, SuggestedNewProduct, SuggestionStatus


@dataclass
class StoreListings:
    """A store's advertisements by lifecycle state."""

    active: list[Advertisement] = field(default_factory=list)
    expired: list[Advertisement] = field(default_factory=list)  # awaiting archival
    archived: list[Advertisement] = field(default_factory=list)


def split_store_listings(ads: Iterable[Advertisement], now_ms: int) -> StoreListings:
    """Split advertisements into active, expired-unarchived and archived, newest first."""
    listings = StoreListings()
    for ad in sorted(ads, key=lambda a: a.created_at, reverse=True):
        if ad.archived:
            listings.archived.append(ad)
        elif ad.is_expired(now_ms):
            listings.expired.append(ad)
        else:
            listings.active.append(ad)
    return listings


@dataclass
class SuggestionGroup:
    """Pending suggestions sharing one normalized name."""

    normalized_name: str
    product_name: str  # casing of the earliest occurrence
    count: int
    first_seen: int
    last_seen: int
    suggestion_ids: list[str]
    sources: set[str]


def partition_suggestions(
    suggestions: Iterable[SuggestedNewProduct],
) -> tuple[list[SuggestedNewProduct], list[SuggestedNewProduct]]:
    """Split into (pending, reviewed), each newest first."""
    ordered = sorted(suggestions, key=lambda s: s.timestamp, reverse=True)
    pending = [s for s in ordered if s.status == SuggestionStatus.PENDING]
    reviewed = [s for s in ordered if s.status != SuggestionStatus.PENDING]
    return pending, reviewed


def group_pending_suggestions(suggestions: Iterable[SuggestedNewProduct]) -> list[SuggestionGroup]:
    """
    One row per distinct normalized name among pending suggestions.

    Ordered by occurrence count, then by first sighting.
    """
    groups: dict[str, SuggestionGroup] = {}
    for suggestion in sorted(suggestions, key=lambda s: s.timestamp):
        if suggestion.status != SuggestionStatus.PENDING:
            continue
        group = groups.get(suggestion.normalized_name)
        if group is None:
            groups[suggestion.normalized_name] = SuggestionGroup(
                normalized_name=suggestion.normalized_name,
                product_name=suggestion.product_name,
                count=1,
                first_seen=suggestion.timestamp,
                last_seen=suggestion.timestamp,
                suggestion_ids=[suggestion.id],
                sources={suggestion.source.value},
            )
            continue
        group.count += 1
        group.last_seen = suggestion.timestamp
        group.suggestion_ids.append(suggestion.id)
        group.sources.add(suggestion.source.value)
    return sorted(groups.values(), key=lambda g: (-g.count, g.first_seen))
