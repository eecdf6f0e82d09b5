"""Abstract store interface.

The sync engine depends on BaseStore, not on a concrete backend, so tests and
alternative backends can be swapped in without touching the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseStore(ABC):
    """Key → record mapping that remembers which Slack messages belong to which PR.

    Nothing here is durable: losing the store is expected (process restart)
    and the engine re-derives records from channel history.
    """

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the record for key, or None if unknown."""

    @abstractmethod
    def set(self, key: str, record: Any) -> None:
        """Insert or replace the record for key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget key. Unknown keys are ignored."""

    @abstractmethod
    def size(self) -> int:
        """Return the number of tracked keys."""

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
