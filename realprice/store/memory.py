"""Process-local document store backend."""

import asyncio
import copy
import logging
import time
from typing import Any, Callable, Mapping, Optional

from realprice.store.base import (
    DocumentStore,
    StoreConnectionError,
    get_in,
    resolve_server_values,
    set_in,
    split_path,
    validate_update_paths,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """
    Document store held in a nested dict.

    Every operation yields to the event loop once, so callers see the same
    suspension points as with a remote backend. Reads return deep copies.

    Features for tests and local development:
    - Injectable clock for SERVER_TIMESTAMP resolution
    - Offline mode and one-shot failure injection per operation
    - Log of committed updates
    """

    def __init__(
        self,
        initial: Optional[dict] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._root: dict = copy.deepcopy(initial) if initial else {}
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._offline = False
        self._pending_failures: dict[str, int] = {}
        self.committed_updates: list[dict[str, Any]] = []
        self.read_count = 0

    def set_offline(self, offline: bool = True) -> None:
        """Make every operation fail with StoreConnectionError."""
        self._offline = offline

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Fail the next `times` calls of an operation ("get" or "update")."""
        self._pending_failures[operation] = self._pending_failures.get(operation, 0) + times

    async def _enter(self, operation: str, path: str) -> None:
        await asyncio.sleep(0)
        if self._offline:
            raise StoreConnectionError("Store offline", operation=operation, path=path)
        remaining = self._pending_failures.get(operation, 0)
        if remaining:
            self._pending_failures[operation] = remaining - 1
            raise StoreConnectionError(
                "Injected store failure", operation=operation, path=path
            )

    async def get(self, path: str) -> Any:
        segments = split_path(path)
        await self._enter("get", path)
        self.read_count += 1
        return get_in(self._root, segments)

    async def set(self, path: str, value: Any) -> None:
        await self.update({path: value})

    async def update(self, updates: Mapping[str, Any]) -> None:
        if not updates:
            return
        paths = list(updates.keys())
        split = validate_update_paths(paths)
        await self._enter("update", paths[0])

        now_ms = self._clock()
        resolved = {
            path: resolve_server_values(updates[path], now_ms) for path in paths
        }

        # Stage on a copy so a bad write leaves the tree untouched
        staged = copy.deepcopy(self._root)
        for segments, path in zip(split, paths):
            set_in(staged, segments, resolved[path])
        self._root = staged

        self.committed_updates.append(resolved)
        logger.debug(f"Committed update with {len(paths)} path(s)")

    def snapshot(self) -> dict:
        """Deep copy of the whole tree."""
        return copy.deepcopy(self._root)
