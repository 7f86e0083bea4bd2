"""Notification surfaces for transient user-facing messages."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

__all__ = ["Notification", "Notifier", "LogNotifier", "QueueNotifier", "DEFAULT_DURATION_MS"]

DEFAULT_DURATION_MS = 3000


@dataclass(frozen=True)
class Notification:
    message: str
    duration_ms: int = DEFAULT_DURATION_MS


class Notifier(Protocol):
    def show(self, message: str, duration_ms: int = DEFAULT_DURATION_MS) -> None: ...


class LogNotifier:
    """Write notifications to the log; used by the headless CLI."""

    def show(self, message: str, duration_ms: int = DEFAULT_DURATION_MS) -> None:
        logger.info("%s", message)


class QueueNotifier:
    """Buffer notifications until the UI thread drains them."""

    def __init__(self, maxlen: int = 50) -> None:
        self._items: deque[Notification] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def show(self, message: str, duration_ms: int = DEFAULT_DURATION_MS) -> None:
        logger.debug("Queued notification: %s", message)
        with self._lock:
            self._items.append(Notification(message=message, duration_ms=int(duration_ms)))

    def drain(self) -> list[Notification]:
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items
