"""Base interface for the schemaless document store.

The store is a JSON tree addressed by ``/``-separated paths. Top-level
children are collections (``stores``, ``advertisements``, ...), their
children are documents keyed by push keys, and documents may hold nested
maps (``userSettings/{uid}/preferredLocation``).
"""

import copy
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

# Characters the backing store refuses in a path segment
FORBIDDEN_SEGMENT_CHARS = set(".#$[]")


class ServerTimestamp:
    """Sentinel replaced with the backend's own epoch-ms clock at write time."""

    _instance: Optional["ServerTimestamp"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo):
        return self


SERVER_TIMESTAMP = ServerTimestamp()


class StoreError(Exception):
    """Base error for document store failures."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
    ):
        self.operation = operation
        self.path = path
        super().__init__(message)


class StoreConnectionError(StoreError):
    """Raised when the backing store cannot be reached. Retryable."""

    def __init__(
        self,
        message: str = "Document store unavailable",
        operation: Optional[str] = None,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.original_error = original_error
        super().__init__(message, operation=operation, path=path)


def split_path(path: str) -> list[str]:
    """
    Split a store path into segments.

    Args:
        path: Path such as ``advertisements/abc/archived``

    Returns:
        List of non-empty segments

    Raises:
        ValueError: If the path is empty or holds a forbidden character
    """
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments:
        raise ValueError(f"Invalid store path: {path!r}")
    for segment in segments:
        if FORBIDDEN_SEGMENT_CHARS & set(segment):
            raise ValueError(f"Invalid character in store path segment: {segment!r}")
    return segments


def join_path(*segments: str) -> str:
    """Join segments into a store path."""
    return "/".join(str(segment).strip("/") for segment in segments)


def generate_push_key(now_ms: Optional[int] = None) -> str:
    """
    Generate a chronologically ordered document key.

    The epoch-ms prefix keeps keys sortable by creation time; the random
    suffix makes collisions between clients negligible.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{now_ms:012x}{secrets.token_hex(6)}"


def resolve_server_values(value: Any, now_ms: int) -> Any:
    """Replace every SERVER_TIMESTAMP inside value with now_ms."""
    if value is SERVER_TIMESTAMP:
        return now_ms
    if isinstance(value, dict):
        return {k: resolve_server_values(v, now_ms) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_server_values(v, now_ms) for v in value]
    return value


def strip_nulls(value: Any) -> Any:
    """Drop None members from maps; the store has no null values."""
    if isinstance(value, dict):
        cleaned = {k: strip_nulls(v) for k, v in value.items() if v is not None}
        return {k: v for k, v in cleaned.items() if v != {}}
    return value


def validate_update_paths(paths: list[str]) -> list[list[str]]:
    """
    Split and validate the paths of a multi-path update.

    Raises:
        ValueError: If one path is an ancestor of (or equal to) another
    """
    split = [split_path(p) for p in paths]
    for i, a in enumerate(split):
        for j, b in enumerate(split):
            if i != j and b[: len(a)] == a:
                raise ValueError(
                    f"Overlapping paths in update: {join_path(*a)!r} and {join_path(*b)!r}"
                )
    return split


def get_in(tree: Any, segments: list[str]) -> Any:
    """Read the value at segments inside a nested tree, or None."""
    node = tree
    for segment in segments:
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return copy.deepcopy(node)


def set_in(tree: dict, segments: list[str], value: Any) -> None:
    """Write value at segments inside tree. None deletes and prunes empty parents."""
    parents = []
    node = tree
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            if value is None:
                return
            child = {}
            node[segment] = child
        parents.append((node, segment))
        node = child

    leaf = segments[-1]
    value = strip_nulls(value)
    if value is None or value == {}:
        node.pop(leaf, None)
        for parent, segment in reversed(parents):
            if parent[segment]:
                break
            del parent[segment]
    else:
        node[leaf] = copy.deepcopy(value)


class DocumentStore(ABC):
    """Abstract async client for the document store."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """
        Read the value at a path.

        Args:
            path: Store path

        Returns:
            The stored value, or None when nothing exists there

        Raises:
            StoreConnectionError: If the store cannot be reached
        """
        pass

    async def get_children(self, collection: str) -> dict[str, Any]:
        """Read every document under a collection as a key -> document map."""
        value = await self.get(collection)
        return value if isinstance(value, dict) else {}

    async def query_equal(self, collection: str, field: str, value: Any) -> dict[str, Any]:
        """
        Read documents of a collection whose child field equals value.

        Args:
            collection: Collection name
            field: Child field compared against value
            value: Value to match

        Returns:
            Matching key -> document map (possibly empty)
        """
        children = await self.get_children(collection)
        return {
            key: doc
            for key, doc in children.items()
            if isinstance(doc, dict) and doc.get(field) == value
        }

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Write value at path. None deletes."""
        pass

    @abstractmethod
    async def update(self, updates: Mapping[str, Any]) -> None:
        """
        Apply several path writes as one atomic multi-path update.

        Either every write is visible afterwards or none is.

        Args:
            updates: Mapping of path -> value (None deletes)

        Raises:
            ValueError: If paths overlap
            StoreConnectionError: If the store cannot be reached
        """
        pass

    def push_key(self, collection: str) -> str:
        """Generate a fresh document key for a collection."""
        return generate_push_key()

    async def close(self) -> None:
        """Release backend resources."""
        return None
