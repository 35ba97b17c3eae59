"""Non-fatal user notifications.

Core operations that degrade instead of failing (catalog checks, AI calls,
geolocation) report here. A UI layer drains the queue and renders toasts.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from realprice.utils.clock import now_ms

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    title: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    timestamp: int = field(default_factory=now_ms)


Listener = Callable[[Notification], None]


class NotificationCenter:
    """
    Bounded queue of notifications with optional listeners.

    Listener errors are logged and never propagate into the caller.
    """

    def __init__(self, max_pending: int = 100):
        self._pending: deque[Notification] = deque(maxlen=max_pending)
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
    ) -> Notification:
        notification = Notification(title=title, message=message, level=level)
        self._pending.append(notification)

        log = logger.warning if level in (NotificationLevel.WARNING, NotificationLevel.ERROR) else logger.info
        log(f"[{level.value}] {title}: {message}")

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
        return notification

    def error(self, title: str, message: str) -> Notification:
        return self.notify(title, message, NotificationLevel.ERROR)

    def drain(self) -> list[Notification]:
        """Return and clear pending notifications."""
        items = list(self._pending)
        self._pending.clear()
        return items

    def peek(self) -> Optional[Notification]:
        return self._pending[-1] if self._pending else None

    def __len__(self) -> int:
        return len(self._pending)
