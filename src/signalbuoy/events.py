"""Session events and observer lists."""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class SessionEvent(enum.Enum):
    """Brief: Tag for every notification a ServiceSession raises."""

    PUBLISHED = "published"
    NOT_PUBLISHED = "not_published"
    RESOLVED = "resolved"
    NOT_RESOLVED = "not_resolved"
    TXT_UPDATED = "txt_updated"


class Observers:
    """Brief: Ordered list of callbacks notified by emit().

    Inputs:
      - name: Label used in log messages.

    Outputs:
      - Observers instance.

    Notes:
      - Callbacks run on the thread that calls emit(), which for sessions is
        the thread chosen by the dispatcher's execution context. A callback
        that raises is logged and the remaining callbacks still run.

    Example:
      >>> seen = []
      >>> obs = Observers("published")
      >>> obs.connect(seen.append)
      >>> obs.emit("svc")
      >>> seen
      ['svc']
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._callbacks: List[Callable[..., Any]] = []

    def connect(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        with self._lock:
            self._callbacks.append(callback)
        return callback

    def disconnect(self, callback: Callable[..., Any]) -> bool:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
        return True

    def emit(self, *args: Any) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception("Error in %s observer %r", self.name, callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def __repr__(self) -> str:
        return "<Observers %s (%d)>" % (self.name, len(self))
