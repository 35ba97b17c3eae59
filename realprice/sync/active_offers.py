"""Active advertisements, materialized after reconciliation.

The active view is derived from two upstream queries (raw advertisements and
the store map) and is only published once archival has run against them:

    idle -> raw-fetched -> reconciling -> active-materialized
                 \\______________\\______> failed

A failed run leaves the cache entry empty, so the next read retries.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from realprice.cache.keys import (
    ACTIVE_ADVERTISEMENTS,
    ADVERTISEMENTS,
    PRICE_HISTORY,
    STORE_ADVERTISEMENTS,
    STORE_MAP,
    query_key,
)
from realprice.cache.query_cache import QueryCache
from realprice.db import fetch
from realprice.db.models import Advertisement, Store
from realprice.reconcile.archival import (
    ArchivalReport,
    HistoryKeyPolicy,
    reconcile_advertisements,
    store_name_map,
)
from realprice.store.base import DocumentStore
from realprice.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class ActiveViewState(str, Enum):
    IDLE = "idle"
    RAW_FETCHED = "raw-fetched"
    RECONCILING = "reconciling"
    ACTIVE_MATERIALIZED = "active-materialized"
    FAILED = "failed"


class ActiveOffersQuery:
    """Dependent query producing the active advertisement set."""

    def __init__(
        self,
        store: DocumentStore,
        cache: QueryCache,
        clock: Clock = now_ms,
        key_policy: Optional[HistoryKeyPolicy] = None,
    ):
        self.store = store
        self.cache = cache
        self._clock = clock
        self._key_policy = key_policy
        self.state = ActiveViewState.IDLE
        self.last_report: Optional[ArchivalReport] = None
        self.last_error: Optional[Exception] = None
        self.runs = 0
        self._materialized = asyncio.Event()
        cache.add_dependency(ACTIVE_ADVERTISEMENTS, [ADVERTISEMENTS, STORE_MAP])

    @property
    def is_materialized(self) -> bool:
        return self._materialized.is_set()

    async def raw_advertisements(self) -> list[Advertisement]:
        return await self.cache.get(ADVERTISEMENTS, lambda: fetch.fetch_advertisements(self.store))

    async def store_map(self) -> dict[str, Store]:
        return await self.cache.get(STORE_MAP, lambda: fetch.fetch_store_map(self.store))

    async def materialize(self, background_refresh: bool = False) -> list[Advertisement]:
        """
        Return the active advertisements, reconciling first when needed.

        Args:
            background_refresh: Serve a stale active set immediately and
                reconcile in the background

        Raises:
            StoreConnectionError: If fetching or archival fails
        """
        return await self.cache.get(
            ACTIVE_ADVERTISEMENTS, self._reconcile, background_refresh=background_refresh
        )

    async def refresh(self) -> list[Advertisement]:
        """Refetch the raw inputs and reconcile again."""
        self.cache.invalidate(ADVERTISEMENTS)
        self.cache.invalidate(STORE_MAP)
        return await self.materialize()

    async def wait_until_materialized(self, timeout: Optional[float] = None) -> None:
        """Block until the first successful reconciliation has been published."""
        await asyncio.wait_for(self._materialized.wait(), timeout)

    async def _reconcile(self) -> list[Advertisement]:
        self.runs += 1
        try:
            ads, stores_by_id = await asyncio.gather(self.raw_advertisements(), self.store_map())
            self.state = ActiveViewState.RAW_FETCHED

            self.state = ActiveViewState.RECONCILING
            report = await reconcile_advertisements(
                self.store,
                ads,
                store_name_map(stores_by_id),
                now_ms=self._clock(),
                key_policy=self._key_policy,
            )
        except Exception as e:
            self.state = ActiveViewState.FAILED
            self.last_error = e
            logger.error(f"Active advertisements not materialized: {e}")
            raise

        self.last_report = report
        self.last_error = None
        if report.committed:
            # Raw snapshot now carries the archive flags we just wrote
            self.cache.set(ADVERTISEMENTS, report.advertisements)
            self.cache.invalidate(PRICE_HISTORY)
            archived = set(report.archived_ids)
            for store_id in {ad.store_id for ad in report.advertisements if ad.id in archived}:
                self.cache.invalidate(query_key(STORE_ADVERTISEMENTS, store_id))
        self.state = ActiveViewState.ACTIVE_MATERIALIZED
        self._materialized.set()
        logger.debug(
            f"Materialized {len(report.active)} active advertisement(s), "
            f"archived {report.archived_count}"
        )
        return report.active
