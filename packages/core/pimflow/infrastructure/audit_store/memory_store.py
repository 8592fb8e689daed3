"""In-memory audit store implementation.

Example:
    ```python
    from pimflow.infrastructure.audit_store.memory_store import InMemoryAuditStore

    store = InMemoryAuditStore(max_entries=10_000)
    await store.append(entry)
    entries = await store.query(AuditQuery(subject_id="prod-1"))
    ```
"""

import asyncio
from datetime import datetime
from typing import Any

from pimflow.domain.interfaces.audit_store import (
    AuditQuery,
    AuditStore,
    AuditStoreError,
)
from pimflow.domain.models.audit_entry import AuditTrailEntry


class InMemoryAuditStore(AuditStore):
    """In-memory implementation of AuditStore.

    Entries are kept in a list in append order, with an id index for O(1)
    lookups. Writes are serialized with an asyncio.Lock; reads take no lock.

    Attributes:
        _entries: Stored entries in append order.
        _index: Entry id to list position.
        _max_entries: FIFO cap, 0 for unlimited.
        _write_lock: asyncio.Lock guarding writes.
    """

    def __init__(self, max_entries: int = 0) -> None:
        """Initialize InMemoryAuditStore.

        Args:
            max_entries: Maximum number of entries to keep. When the limit is
                        reached the oldest entries are dropped (FIFO).
                        0 or negative means unlimited.
        """
        self._entries: list[AuditTrailEntry] = []
        self._index: dict[str, int] = {}
        self._max_entries = max_entries if max_entries > 0 else 0
        self._write_lock = asyncio.Lock()

    async def append(self, entry: AuditTrailEntry) -> list[str]:
        """Append an entry, dropping the oldest ones past the size cap.

        Returns:
            Ids of the dropped entries.

        Raises:
            AuditStoreError: If an entry with the same id is already stored.
        """
        async with self._write_lock:
            if entry.id in self._index:
                raise AuditStoreError(f"Audit entry {entry.id} already exists")
            evicted: list[str] = []
            try:
                self._entries.append(entry)
                self._index[entry.id] = len(self._entries) - 1
                if self._max_entries and len(self._entries) > self._max_entries:
                    overflow = len(self._entries) - self._max_entries
                    evicted = [dropped.id for dropped in self._entries[:overflow]]
                    self._entries = self._entries[overflow:]
                    self._reindex()
            except Exception as e:
                raise AuditStoreError(f"Failed to append audit entry {entry.id}: {e}") from e
        return evicted

    async def get(self, entry_id: str) -> AuditTrailEntry | None:
        position = self._index.get(entry_id)
        if position is None:
            return None
        return self._entries[position]

    async def query(self, query: AuditQuery) -> list[AuditTrailEntry]:
        """Filter, sort and paginate the stored entries.

        Raises:
            AuditStoreError: If filtering fails.
        """
        try:
            results = [entry for entry in self._entries if self._matches(entry, query)]

            if query.sort_by is not None:
                results.sort(
                    key=lambda entry: self._sort_key(entry, query.sort_by),
                    reverse=query.sort_order == "desc",
                )

            if query.offset is not None:
                results = results[query.offset :]
            if query.limit is not None:
                results = results[: query.limit]

            return results
        except Exception as e:
            raise AuditStoreError(f"Failed to query audit entries: {e}") from e

    async def archive(self, older_than: datetime, archived_at: datetime) -> int:
        archived = 0
        async with self._write_lock:
            for position, entry in enumerate(self._entries):
                if entry.archived or entry.timestamp >= older_than:
                    continue
                self._entries[position] = entry.model_copy(
                    update={"archived": True, "archived_at": archived_at}
                )
                archived += 1
        return archived

    async def purge(self, now: datetime) -> list[str]:
        async with self._write_lock:
            removed = [entry.id for entry in self._entries if entry.expires_at <= now]
            if removed:
                self._entries = [entry for entry in self._entries if entry.expires_at > now]
                self._reindex()
        return removed

    async def count(self) -> int:
        return len(self._entries)

    def _reindex(self) -> None:
        self._index = {entry.id: position for position, entry in enumerate(self._entries)}

    @staticmethod
    def _sort_key(entry: AuditTrailEntry, sort_by: str) -> Any:
        if sort_by == "priority":
            return entry.priority.rank
        if sort_by == "actor_id":
            return entry.actor_id
        if sort_by == "action":
            return entry.action.value
        return entry.timestamp

    @staticmethod
    def _matches(entry: AuditTrailEntry, query: AuditQuery) -> bool:
        """Check if an entry matches every filter set on the query."""
        if not query.include_archived and entry.archived:
            return False
        if (
            not query.include_expired
            and query.as_of is not None
            and entry.expires_at <= query.as_of
        ):
            return False
        if query.actor_id is not None and entry.actor_id != query.actor_id:
            return False
        if query.actor_role is not None and entry.actor_role != query.actor_role:
            return False
        if query.action is not None and entry.action != query.action:
            return False
        if query.subject_id is not None and entry.subject_id != query.subject_id:
            return False
        if query.workflow_state is not None and entry.workflow_state != query.workflow_state:
            return False
        if query.priority is not None and entry.priority != query.priority:
            return False
        if query.start_date is not None and entry.timestamp < query.start_date:
            return False
        if query.end_date is not None and entry.timestamp > query.end_date:
            return False
        if query.ip_address is not None and entry.ip_address != query.ip_address:
            return False
        if query.session_id is not None and entry.session_id != query.session_id:
            return False
        if query.request_id is not None and entry.request_id != query.request_id:
            return False
        if query.reason_contains is not None:
            if not entry.reason or query.reason_contains.lower() not in entry.reason.lower():
                return False
        if query.field_names:
            return any(name in query.field_names for name in entry.changed_fields)
        return True
