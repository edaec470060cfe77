"""Session-level state: durable history of tool results and the per-session context."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from utils.logger import get_logger

from .cancellation import CancellationToken
from .github_extract import CloneCache
from .offload import OffloadManager
from .result_store import RESULTS_ENTRY_TYPE, ResultStore, generate_id

logger = get_logger(__name__)


class SessionHistory(Protocol):
    """Durable event log owned by the host."""

    def get_entries(self) -> list[dict[str, Any]]: ...

    def append_entry(self, custom_type: str, data: dict[str, Any]) -> None: ...


def make_custom_entry(custom_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "custom",
        "customType": custom_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class InMemorySessionHistory:
    """History kept in a list; used by tests and embedded hosts."""

    def __init__(self, entries: list[dict[str, Any]] | None = None):
        self._entries: list[dict[str, Any]] = list(entries or [])

    def get_entries(self) -> list[dict[str, Any]]:
        return list(self._entries)

    def append_entry(self, custom_type: str, data: dict[str, Any]) -> None:
        self._entries.append(make_custom_entry(custom_type, data))


class JsonlSessionHistory:
    """
    History persisted as one JSON object per line.

    Unparseable lines are skipped on read so a truncated write never
    prevents restoring the remaining entries.
    """

    def __init__(self, path: str | Path):
        """
        Args:
            path: JSON-lines file (created on first append)
        """
        self.path = Path(path)

    def get_entries(self) -> list[dict[str, Any]]:
        try:
            raw_lines = self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []

        entries = []
        for line_no, line in enumerate(raw_lines, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                logger.warning(
                    "Skipping unreadable session history line",
                    extra={"extra_fields": {"path": str(self.path), "line": line_no}},
                )
                continue
            if isinstance(entry, dict):
                entries.append(entry)
        return entries

    def append_entry(self, custom_type: str, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(make_custom_entry(custom_type, data), ensure_ascii=False))
            handle.write("\n")


def append_result(history: SessionHistory, data: dict[str, Any]) -> None:
    """Record a completed tool result under this tool set's custom entry tag."""
    history.append_entry(RESULTS_ENTRY_TYPE, data)


class PendingRegistry:
    """
    Cancellation tokens of in-flight tool calls.

    Every call registers on start and deregisters on completion; abort_all()
    cancels whatever is still registered at a session boundary.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def register(self, token: CancellationToken) -> str:
        key = generate_id()
        self._tokens[key] = token
        return key

    def deregister(self, key: str) -> None:
        self._tokens.pop(key, None)

    def abort_all(self) -> int:
        tokens = list(self._tokens.values())
        self._tokens.clear()
        for token in tokens:
            token.cancel()
        if tokens:
            logger.info(f"Aborted {len(tokens)} pending tool calls")
        return len(tokens)

    def __len__(self) -> int:
        return len(self._tokens)


@dataclass
class SessionContext:
    """The mutable state shared by all tool calls of one session."""

    results: ResultStore = field(default_factory=ResultStore)
    clones: CloneCache = field(default_factory=CloneCache)
    pending: PendingRegistry = field(default_factory=PendingRegistry)
    offload: OffloadManager = field(default_factory=OffloadManager)

    @classmethod
    def create(cls, offload_dir: str | Path | None = None) -> "SessionContext":
        return cls(offload=OffloadManager(base_dir=offload_dir))
