"""MemoryStore — bounded in-process store for correlation records.

Records only live as long as the process. Capacity is capped so a long-running
server watching many repositories cannot grow without limit; when full, the
key inserted first is evicted.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from prslack_store.base import BaseStore

DEFAULT_MAX_ENTRIES = 500


class MemoryStore(BaseStore):
    """FIFO-evicting dict guarded by a lock scoped to the store.

    Replacing an existing key keeps its original position: eviction order is
    by first insertion only.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, logger: logging.Logger | None = None):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self.max_entries = max_entries
        self._records: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._log = logger or logging.getLogger(__name__)

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._records.get(key)

    def set(self, key: str, record: Any) -> None:
        with self._lock:
            if key not in self._records and len(self._records) >= self.max_entries:
                oldest = next(iter(self._records))
                del self._records[oldest]
                self._log.debug("Evicted %s (capacity %d)", oldest, self.max_entries)
            self._records[key] = record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def size(self) -> int:
        with self._lock:
            return len(self._records)
