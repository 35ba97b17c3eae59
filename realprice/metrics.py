"""Prometheus metrics for RealPrice Finder."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("realprice", "RealPrice Finder application info")
app_info.info({"version": "0.1.0", "name": "realprice-finder"})

# Query cache metrics
cache_requests_total = Counter(
    "realprice_cache_requests_total",
    "Query cache lookups by outcome",
    ["collection", "outcome"],  # hit, stale, miss, coalesced
)

cache_fetches_total = Counter(
    "realprice_cache_fetches_total",
    "Underlying fetches dispatched by the query cache",
    ["collection", "status"],
)

cache_invalidations_total = Counter(
    "realprice_cache_invalidations_total",
    "Query cache entries invalidated",
    ["collection"],
)

cache_entries = Gauge(
    "realprice_cache_entries",
    "Number of entries currently held by the query cache",
)

# Document store metrics
store_errors_total = Counter(
    "realprice_store_errors_total",
    "Document store operations that failed",
    ["operation"],
)

# Archival metrics
archival_runs_total = Counter(
    "realprice_archival_runs_total",
    "Reconciliation runs",
    ["status"],
)

advertisements_archived_total = Counter(
    "realprice_advertisements_archived_total",
    "Advertisements moved into the price-history ledger",
)

archival_duration_seconds = Histogram(
    "realprice_archival_duration_seconds",
    "Time spent in a reconciliation run",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

archival_last_run_timestamp = Gauge(
    "realprice_archival_last_run_timestamp",
    "Timestamp of the last reconciliation run",
)

# Catalog metrics
catalog_checks_total = Counter(
    "realprice_catalog_checks_total",
    "Catalog membership checks by outcome",
    ["source", "outcome"],  # in-catalog, suggested, error
)

# AI collaborator metrics
ai_calls_total = Counter(
    "realprice_ai_calls_total",
    "AI collaborator calls",
    ["operation", "status"],
)


def _collection_label(key: str) -> str:
    return key.split(":", 1)[0]


def record_cache_lookup(key: str, outcome: str):
    """Record a query cache lookup."""
    cache_requests_total.labels(collection=_collection_label(key), outcome=outcome).inc()


def record_cache_fetch(key: str, success: bool):
    """Record a fetch dispatched by the query cache."""
    status = "success" if success else "error"
    cache_fetches_total.labels(collection=_collection_label(key), status=status).inc()


def record_cache_invalidation(key: str):
    """Record an invalidated cache entry."""
    cache_invalidations_total.labels(collection=_collection_label(key)).inc()


def record_store_error(operation: str):
    """Record a failed document store operation."""
    store_errors_total.labels(operation=operation).inc()


def record_archival_run(success: bool, archived: int, duration: float):
    """Record a reconciliation run."""
    status = "success" if success else "error"
    archival_runs_total.labels(status=status).inc()
    if archived:
        advertisements_archived_total.inc(archived)
    archival_duration_seconds.observe(duration)
    archival_last_run_timestamp.set(time.time())


def record_catalog_check(source: str, outcome: str):
    """Record a catalog membership check."""
    catalog_checks_total.labels(source=source, outcome=outcome).inc()


def record_ai_call(operation: str, success: bool):
    """Record an AI collaborator call."""
    status = "success" if success else "error"
    ai_calls_total.labels(operation=operation, status=status).inc()
