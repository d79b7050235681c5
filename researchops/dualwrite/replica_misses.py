"""
Replica-miss queue.

When Airtable accepts a write but the replica insert then fails, the entry
exists authoritatively but is invisible to replica readers. The coordinator
parks such rows here and the reconciliation sweep replays them with an
idempotent upsert.

In-process only: rows queued here are lost on restart, and a later full
resync from Airtable is the backstop for that case.
"""

from collections import deque
from threading import Lock
from typing import Any, Deque, Dict, List
import logging

from researchops.core.journal import MirroredRecord

logger = logging.getLogger(__name__)


class ReplicaMissQueue:
    """Bounded, thread-safe FIFO of rows awaiting a replica replay."""

    def __init__(self, maxsize: int = 1000):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.maxsize = maxsize
        self._items: Deque[MirroredRecord] = deque()
        self._lock = Lock()

    def put(self, record: MirroredRecord) -> None:
        """Queue a row. When full, the oldest row is dropped."""
        with self._lock:
            if len(self._items) >= self.maxsize:
                dropped = self._items.popleft()
                logger.error(
                    f"Replica-miss queue full ({self.maxsize}), dropping {dropped.record_id}"
                )
            self._items.append(record)

    def drain(self) -> List[MirroredRecord]:
        """Remove and return every queued row, oldest first."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def apply_patch(self, record_id: str, patch: Dict[str, Any]) -> bool:
        """
        Apply a later update to a queued row so its replay carries it.

        Returns:
            True if a queued row matched
        """
        with self._lock:
            for index, item in enumerate(self._items):
                if item.record_id == record_id:
                    self._items[index] = item.with_patch(patch)
                    return True
        return False

    def discard(self, record_id: str) -> bool:
        """Drop a queued row (e.g. the entry was deleted meanwhile)."""
        with self._lock:
            for item in self._items:
                if item.record_id == record_id:
                    self._items.remove(item)
                    return True
        return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
