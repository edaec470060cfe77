"""Bounded LRU store for tool results, restorable from session history."""

import secrets
import string
import time
from collections import OrderedDict
from collections.abc import Iterable
from typing import Any

from models.content import StoredResultData
from utils.logger import get_logger

logger = get_logger(__name__)

MAX_ENTRIES = 50
RESTORE_MAX_AGE_MS = 60 * 60 * 1000
RESULTS_ENTRY_TYPE = "web-tools-results"

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_id() -> str:
    """Time-based prefix plus random suffix; collisions simply overwrite."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(10))
    return _to_base36(int(time.time() * 1000)) + suffix


class ResultStore:
    """
    In-memory LRU cache of StoredResultData keyed by response id.

    Insertion order of the underlying OrderedDict is recency order: store()
    and get() both move the entry to the end, eviction pops from the front.
    """

    def __init__(self, max_entries: int = MAX_ENTRIES):
        """
        Initialize the store.

        Args:
            max_entries: Capacity; exceeded entries are evicted oldest-first
        """
        self.max_entries = max_entries
        self._entries: OrderedDict[str, StoredResultData] = OrderedDict()

    def store(self, result_id: str, data: StoredResultData) -> None:
        """
        Insert or replace an entry and mark it most-recently-used.

        Args:
            result_id: Response id
            data: Result to hold
        """
        self._entries.pop(result_id, None)
        self._entries[result_id] = data
        self._evict_over_capacity()

    def get(self, result_id: str) -> StoredResultData | None:
        """
        Look up an entry, refreshing its recency.

        Args:
            result_id: Response id

        Returns:
            The stored result, or None if unknown or evicted
        """
        data = self._entries.get(result_id)
        if data is None:
            return None
        self._entries.move_to_end(result_id)
        return data

    def get_all(self) -> list[StoredResultData]:
        return list(self._entries.values())

    def delete(self, result_id: str) -> bool:
        return self._entries.pop(result_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, result_id: object) -> bool:
        return result_id in self._entries

    def restore_from_session(self, history: Any) -> int:
        """Restore from a session history collaborator exposing get_entries()."""
        return self.restore_from_entries(history.get_entries())

    def restore_from_entries(
        self, entries: Iterable[dict[str, Any]], now_ms: int | None = None
    ) -> int:
        """
        Re-populate the store from durable session history.

        Only custom entries tagged with RESULTS_ENTRY_TYPE are considered.
        Entries failing the type-specific shape check, or older than one hour
        at restore time, are skipped silently.

        Args:
            entries: Session history entries
            now_ms: Restoration time in epoch ms (defaults to now)

        Returns:
            Number of entries restored
        """
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        restored = 0
        skipped = 0

        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if entry.get("type") != "custom" or entry.get("customType") != RESULTS_ENTRY_TYPE:
                continue

            data = StoredResultData.from_dict(entry.get("data"))
            if data is None:
                skipped += 1
                continue
            # entries without a timestamp have no measurable age and are kept
            if data.timestamp and now_ms - data.timestamp > RESTORE_MAX_AGE_MS:
                skipped += 1
                continue

            self._entries.pop(data.id, None)
            self._entries[data.id] = data
            restored += 1

        self._evict_over_capacity()

        logger.info(
            f"Restored {restored} stored results from session history",
            extra={"extra_fields": {"restored": restored, "skipped": skipped, "size": len(self)}},
        )
        return restored

    def _evict_over_capacity(self) -> None:
        while len(self._entries) > self.max_entries:
            evicted_id, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted stored result {evicted_id}")
