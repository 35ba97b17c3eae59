"""Archival of expired advertisements into the price-history ledger.

Each expired, unarchived advertisement produces two writes: a ledger row and
its `archived=true` flag. Both go out in one atomic multi-path update, so a
ledger row never exists without its flag (and vice versa). Re-running after a
successful commit is a no-op because archived advertisements are skipped.

Concurrent sessions are not excluded: two sessions reading the same snapshot
can both decide an advertisement is expired. With the default
"per-advertisement" key policy the ledger row key is the advertisement id, so
both commits land on the same path and the ledger keeps one row. The "fresh"
policy uses a new push key per run and accepts duplicate rows, which the
history views collapse by advertisementId.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from realprice import metrics
from realprice.config import settings
from realprice.db import fetch
from realprice.db.models import ADVERTISEMENTS, PRICE_HISTORY, Advertisement, Store
from realprice.store.base import SERVER_TIMESTAMP, DocumentStore, join_path
from realprice.utils.clock import now_ms as wall_clock_ms
from realprice.views.offers import unknown_store_label

logger = logging.getLogger(__name__)


class HistoryKeyPolicy(str, Enum):
    PER_ADVERTISEMENT = "per-advertisement"
    FRESH = "fresh"


@dataclass
class ArchivalPlan:
    """Writes staged for one reconciliation run."""

    active: list[Advertisement] = field(default_factory=list)
    archived: list[Advertisement] = field(default_factory=list)  # newly archived, flag applied
    updates: dict[str, Any] = field(default_factory=dict)
    history_keys: list[str] = field(default_factory=list)


@dataclass
class ArchivalReport:
    """Outcome of a reconciliation run."""

    now_ms: int
    active: list[Advertisement]
    advertisements: list[Advertisement]  # full input set with new archive flags applied
    archived_ids: list[str]
    history_keys: list[str]
    committed: bool

    @property
    def archived_count(self) -> int:
        return len(self.archived_ids)


def store_name_map(stores_by_id: Mapping[str, Store]) -> dict[str, str]:
    """Store id -> display name lookup."""
    return {store_id: store.name for store_id, store in stores_by_id.items()}


def history_document(ad: Advertisement, store_name: str) -> dict[str, Any]:
    """Ledger row for an advertisement being archived."""
    return {
        "advertisementId": ad.id,
        "productId": ad.name,
        "productName": ad.name,
        "price": ad.price,
        "storeId": ad.store_id,
        "storeName": store_name,
        "archivedAt": SERVER_TIMESTAMP,
        "originalValidUntil": ad.valid_until,
        "category": ad.category,
    }


def plan_archival(
    ads: Iterable[Advertisement],
    store_names: Mapping[str, str],
    now_ms: int,
    store: DocumentStore,
    key_policy: HistoryKeyPolicy = HistoryKeyPolicy.PER_ADVERTISEMENT,
) -> ArchivalPlan:
    """
    Stage the writes for every newly expired advertisement.

    Args:
        ads: Current advertisement snapshot
        store_names: Store id -> name lookup
        now_ms: Reference time; an ad is expired when validUntil < now_ms
        store: Document store (used for push keys)
        key_policy: How ledger row keys are chosen

    Returns:
        ArchivalPlan with the active set and the staged multi-path update
    """
    plan = ArchivalPlan()
    for ad in ads:
        if ad.archived:
            continue
        if not ad.is_expired(now_ms):
            plan.active.append(ad)
            continue

        if key_policy == HistoryKeyPolicy.PER_ADVERTISEMENT:
            history_key = ad.id
        else:
            history_key = store.push_key(PRICE_HISTORY)

        store_name = store_names.get(ad.store_id) or unknown_store_label(ad.store_id)
        plan.updates[join_path(PRICE_HISTORY, history_key)] = history_document(ad, store_name)
        plan.updates[join_path(ADVERTISEMENTS, ad.id, "archived")] = True
        plan.history_keys.append(history_key)
        plan.archived.append(ad.model_copy(update={"archived": True}))
    return plan


async def reconcile_advertisements(
    store: DocumentStore,
    ads: list[Advertisement],
    store_names: Mapping[str, str],
    now_ms: Optional[int] = None,
    key_policy: Optional[HistoryKeyPolicy] = None,
) -> ArchivalReport:
    """
    Archive newly expired advertisements and return the active set.

    Args:
        store: Document store
        ads: Latest advertisement snapshot
        store_names: Store id -> name lookup
        now_ms: Reference time (defaults to the wall clock)
        key_policy: Ledger key policy (defaults to settings)

    Returns:
        ArchivalReport; `active` holds ads that are neither archived nor expired

    Raises:
        StoreConnectionError: If the atomic update fails. Nothing was written.
    """
    now_ms = now_ms if now_ms is not None else wall_clock_ms()
    key_policy = key_policy or HistoryKeyPolicy(settings.archive_history_key_policy)
    started = time.perf_counter()

    plan = plan_archival(ads, store_names, now_ms, store, key_policy)

    committed = False
    if plan.updates:
        try:
            await store.update(plan.updates)
        except Exception:
            metrics.record_archival_run(False, 0, time.perf_counter() - started)
            logger.error(
                f"Archival update failed; {len(plan.archived)} advertisement(s) left for the next run"
            )
            raise
        committed = True
        logger.info(
            f"Archived {len(plan.archived)} expired advertisement(s) "
            f"(policy: {key_policy.value})"
        )

    metrics.record_archival_run(True, len(plan.archived), time.perf_counter() - started)

    newly_archived = {ad.id: ad for ad in plan.archived}
    return ArchivalReport(
        now_ms=now_ms,
        active=plan.active,
        advertisements=[newly_archived.get(ad.id, ad) for ad in ads],
        archived_ids=list(newly_archived.keys()),
        history_keys=plan.history_keys,
        committed=committed,
    )


async def run_archival_sweep(
    store: DocumentStore,
    now_ms: Optional[int] = None,
) -> ArchivalReport:
    """Fetch the freshest advertisements and stores, then reconcile."""
    ads = await fetch.fetch_advertisements(store)
    stores_by_id = await fetch.fetch_store_map(store)
    return await reconcile_advertisements(store, ads, store_name_map(stores_by_id), now_ms=now_ms)
