"""Watch registry: active daemon references and their socket-watch state."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..daemon.base import ServiceRef


@dataclass
class WatchEntry:
    """Brief: Socket-watch state for one daemon reference.

    Inputs:
      - watch_id: Registry index.
      - reference: Daemon reference whose socket is watched.
      - fd: Socket descriptor obtained from the daemon.

    Outputs:
      - WatchEntry; `stopping` is set on teardown and checked before every
        delivery and re-arm.
    """

    watch_id: int
    reference: ServiceRef
    fd: int
    stopping: bool = field(default=False)


class WatchRegistry:
    """Brief: Thread-safe mapping of watch id -> WatchEntry.

    Notes:
      - Accessed from dispatch completion paths and from consumer threads
        calling stop(); every access holds the registry lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[int, WatchEntry] = {}
        self._ids = itertools.count(1)

    def add(self, reference: ServiceRef, fd: int) -> WatchEntry:
        with self._lock:
            entry = WatchEntry(watch_id=next(self._ids), reference=reference, fd=int(fd))
            self._entries[entry.watch_id] = entry
        return entry

    def get(self, watch_id: int) -> Optional[WatchEntry]:
        with self._lock:
            return self._entries.get(watch_id)

    def remove(self, watch_id: int) -> Optional[WatchEntry]:
        """Brief: Mark an entry stopping and drop it from the registry.

        Inputs:
          - watch_id: Registry index returned by add().

        Outputs:
          - The removed WatchEntry, or None when it was already gone.
        """

        with self._lock:
            entry = self._entries.pop(watch_id, None)
            if entry is not None:
                entry.stopping = True
        return entry

    def entries(self) -> List[WatchEntry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, watch_id: object) -> bool:
        with self._lock:
            return watch_id in self._entries
