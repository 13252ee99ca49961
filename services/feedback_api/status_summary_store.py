from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from .feedback_records import StatusCounts


class StatusSummaryStore(Protocol):
    def load(self, schedule_id: str) -> Optional[StatusCounts]: ...
    def save(self, schedule_id: str, counts: StatusCounts) -> None: ...


class MemoryStatusSummaryStore:
    def __init__(self, *, ttl_sec: int = 0, clock: Callable[[], float] = time.monotonic):
        self._ttl_sec = max(0, int(ttl_sec or 0))
        self._clock = clock
        self._items: Dict[str, Tuple[float, StatusCounts]] = {}
        self._lock = threading.Lock()

    def load(self, schedule_id: str) -> Optional[StatusCounts]:
        with self._lock:
            item = self._items.get(schedule_id)
            if item is None:
                return None
            saved_at, counts = item
            if self._ttl_sec and self._clock() - saved_at > self._ttl_sec:
                self._items.pop(schedule_id, None)
                return None
            return counts

    def save(self, schedule_id: str, counts: StatusCounts) -> None:
        with self._lock:
            self._items[schedule_id] = (self._clock(), counts)
