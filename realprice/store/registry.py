"""Document store backend registry."""

import logging
from typing import Optional, Type
from urllib.parse import urlparse

from realprice.config import settings
from realprice.store.base import DocumentStore
from realprice.store.memory import InMemoryDocumentStore
from realprice.store.redis_store import RedisDocumentStore

logger = logging.getLogger(__name__)

_backends: dict[str, Type[DocumentStore]] = {
    "memory": InMemoryDocumentStore,
    "redis": RedisDocumentStore,
    "rediss": RedisDocumentStore,
    "unix": RedisDocumentStore,
}


def create_document_store(url: Optional[str] = None) -> DocumentStore:
    """
    Create a document store for a URL.

    Args:
        url: Store URL (defaults to settings.document_store_url)

    Returns:
        DocumentStore instance

    Raises:
        ValueError: If the URL scheme has no registered backend
    """
    url = url or settings.document_store_url
    scheme = urlparse(url).scheme
    if scheme not in _backends:
        raise ValueError(
            f"Unknown document store scheme: {scheme!r}. Available: {list(_backends.keys())}"
        )

    backend = _backends[scheme]
    logger.info(f"Using {backend.__name__} for {scheme}:// store")
    if backend is InMemoryDocumentStore:
        return InMemoryDocumentStore()
    return backend(redis_url=url)
