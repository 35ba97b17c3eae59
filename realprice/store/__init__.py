"""Document store client for the realtime backing store."""

from realprice.store.base import (
    SERVER_TIMESTAMP,
    DocumentStore,
    StoreConnectionError,
    StoreError,
    generate_push_key,
    join_path,
    split_path,
)
from realprice.store.memory import InMemoryDocumentStore
from realprice.store.registry import create_document_store

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreConnectionError",
    "StoreError",
    "create_document_store",
    "generate_push_key",
    "join_path",
    "split_path",
]
