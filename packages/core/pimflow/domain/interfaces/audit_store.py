"""AuditStore interface for audit trail persistence and retrieval.

This module defines the abstract AuditStore interface that the audit trail
services write through. Only an in-memory backend ships with pimflow; a
database-backed store implements the same five operations.

Example:
    ```python
    from pimflow.domain.interfaces.audit_store import AuditQuery, AuditStore
    from pimflow.infrastructure.audit_store.memory_store import InMemoryAuditStore

    store: AuditStore = InMemoryAuditStore()
    await store.append(entry)

    query = AuditQuery(subject_id="prod-1", sort_by="timestamp", sort_order="asc")
    history = await store.query(query)
    ```
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.models.audit_entry import AuditAction, AuditPriority, AuditTrailEntry
from pimflow.domain.models.workflow import UserRole, WorkflowState

SortField = Literal["timestamp", "actor_id", "action", "priority"]
SortOrder = Literal["asc", "desc"]


class AuditQuery(BaseModel):
    """Filter, sort and pagination parameters for audit trail queries.

    Every filter left as None matches all entries. Without ``sort_by`` the
    entries are returned in the order they were appended.

    Attributes:
        actor_id: Only entries written by this user.
        actor_role: Only entries written by users holding this role.
        action: Only entries of this kind.
        subject_id: Only entries about this product.
        workflow_state: Only entries that left the product in this state.
        start_date: Inclusive lower bound on the entry timestamp.
        end_date: Inclusive upper bound on the entry timestamp.
        priority: Only entries of this priority.
        reason_contains: Case-insensitive substring of the entry reason.
        field_names: Entries that changed at least one of these fields.
        ip_address: Only entries recorded from this address.
        session_id: Only entries recorded in this session.
        request_id: Only entries recorded for this request.
        include_archived: When False, archived entries are skipped.
        include_expired: When False, entries past ``expires_at`` (relative to
            ``as_of``) are skipped.
        as_of: Reference time for the expiry filter.
        sort_by: Field to sort on.
        sort_order: asc or desc; defaults to desc when sorting.
        limit: Maximum number of results.
        offset: Number of results to skip.
    """

    actor_id: str | None = Field(default=None)
    actor_role: UserRole | None = Field(default=None)
    action: AuditAction | None = Field(default=None)
    subject_id: str | None = Field(default=None)
    workflow_state: WorkflowState | None = Field(default=None)
    start_date: datetime | None = Field(default=None)
    end_date: datetime | None = Field(default=None)
    priority: AuditPriority | None = Field(default=None)
    reason_contains: str | None = Field(default=None)
    field_names: list[str] | None = Field(default=None)
    ip_address: str | None = Field(default=None)
    session_id: str | None = Field(default=None)
    request_id: str | None = Field(default=None)
    include_archived: bool = Field(default=True)
    include_expired: bool = Field(default=True)
    as_of: datetime | None = Field(default=None)
    sort_by: SortField | None = Field(default=None)
    sort_order: SortOrder = Field(default="desc")
    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        str_strip_whitespace=True,
    )


class AuditStore(ABC):
    """Abstract interface for append-only audit trail storage.

    Implementations must never modify an entry's content. The only permitted
    changes are archiving (replacing an entry by a copy flagged as archived)
    and purging expired entries. All methods are async and raise
    AuditStoreError when the backend fails.
    """

    @abstractmethod
    async def append(self, entry: AuditTrailEntry) -> list[str]:
        """Append an entry to the trail.

        Args:
            entry: The entry to persist.

        Returns:
            Identifiers of entries the store dropped to make room, oldest
            first; empty for stores without a size cap.

        Raises:
            AuditStoreError: If the entry cannot be stored or its id already exists.
        """
        pass

    @abstractmethod
    async def get(self, entry_id: str) -> AuditTrailEntry | None:
        """Retrieve an entry by id.

        Args:
            entry_id: Identifier of the entry.

        Returns:
            The entry, or None if it does not exist.

        Raises:
            AuditStoreError: If retrieval fails.
        """
        pass

    @abstractmethod
    async def query(self, query: AuditQuery) -> list[AuditTrailEntry]:
        """Return entries matching the query filters.

        Args:
            query: Filter, sort and pagination parameters.

        Returns:
            Matching entries.

        Raises:
            AuditStoreError: If the query fails.
        """
        pass

    @abstractmethod
    async def archive(self, older_than: datetime, archived_at: datetime) -> int:
        """Flag every non-archived entry older than ``older_than`` as archived.

        Args:
            older_than: Entries with a timestamp strictly before this are archived.
            archived_at: Time recorded on the archived copies.

        Returns:
            Number of entries archived by this call.

        Raises:
            AuditStoreError: If archiving fails.
        """
        pass

    @abstractmethod
    async def purge(self, now: datetime) -> list[str]:
        """Remove every entry whose ``expires_at`` is at or before ``now``.

        Args:
            now: Reference time.

        Returns:
            Identifiers of the removed entries.

        Raises:
            AuditStoreError: If purging fails.
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored entries."""
        pass


class AuditStoreError(Exception):
    """Raised when AuditStore operations fail."""

    pass
