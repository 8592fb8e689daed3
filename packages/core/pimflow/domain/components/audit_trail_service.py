"""AuditTrailService: append-only record of workflow and product changes."""

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from pimflow.domain.components.audit_exporter import AuditExportOptions, AuditTrailExporter
from pimflow.domain.interfaces.audit_store import AuditQuery, AuditStore
from pimflow.domain.interfaces.observability_manager import (
    AUDIT_ENTRY_CREATED,
    ObservabilityManager,
)
from pimflow.domain.models.audit_entry import (
    AuditAction,
    AuditPriority,
    AuditTrailEntry,
    AuditTrailStatistics,
    FieldChange,
    IntegrityCheckResult,
)
from pimflow.domain.models.bulk import BulkOperationResult
from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.transition import WorkflowTransitionEvent
from pimflow.domain.models.workflow import UserRole, WorkflowState
from pimflow.infrastructure.utils.digest import DigestAlgorithm, canonical_json, get_digest

logger = structlog.get_logger(__name__)

CRITICAL_ACTIONS = frozenset(
    {
        AuditAction.ProductDeleted,
        AuditAction.UserRoleChanged,
        AuditAction.SystemConfigChanged,
        AuditAction.PermissionRevoked,
    }
)
HIGH_ACTIONS = frozenset(
    {
        AuditAction.StateTransition,
        AuditAction.BulkOperation,
        AuditAction.PermissionGranted,
        AuditAction.ReviewerAssigned,
        AuditAction.ReviewerUnassigned,
    }
)
# Matched against every segment of a dotted field path.
SENSITIVE_FIELDS = frozenset(
    {"pricing", "standard_price", "price", "cost", "inventory", "status", "workflowState"}
)

# Metadata keys promoted to first-class entry fields.
REQUEST_METADATA_KEYS = ("ip_address", "session_id", "request_id")


def _is_sensitive(field: str) -> bool:
    return any(segment in SENSITIVE_FIELDS for segment in field.split("."))


def determine_priority(
    action: AuditAction,
    field_changes: list[FieldChange] | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditPriority:
    """Classify an audit entry.

    Critical actions first, then high-priority actions, sensitive field
    changes and risk flags in the metadata; everything else is medium.
    """
    if action in CRITICAL_ACTIONS:
        return AuditPriority.Critical
    if action in HIGH_ACTIONS:
        return AuditPriority.High
    if field_changes and any(_is_sensitive(change.field) for change in field_changes):
        return AuditPriority.High
    if metadata and (metadata.get("risk_level") == "high" or metadata.get("security_violation")):
        return AuditPriority.High
    return AuditPriority.Medium


class AuditTrailService:
    """Creates, queries and maintains audit trail entries.

    Entries are written through an injected AuditStore and are never
    modified afterwards; archiving and purging are the only maintenance
    operations. Each entry gets an integrity digest computed with a
    configurable algorithm.

    Example:
        ```python
        service = AuditTrailService(InMemoryAuditStore(), observability)
        entry = await service.create_audit_entry(
            actor_id="u1",
            actor_role=UserRole.Editor,
            action=AuditAction.ProductUpdated,
            subject_id="prod-1",
            field_changes=[FieldChange(field="price", old_value=10, new_value=12)],
        )
        assert entry.priority == AuditPriority.High
        ```
    """

    def __init__(
        self,
        audit_store: AuditStore,
        observability_manager: ObservabilityManager,
        digest: DigestAlgorithm | None = None,
        retention_days: int = 730,
        integrity_checking: bool = True,
        archive_threshold: int = 0,
        archive_after_days: int = 180,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize AuditTrailService.

        Args:
            audit_store: Storage backend for the entries.
            observability_manager: ObservabilityManager for events and logging.
            digest: Integrity digest algorithm. Defaults to the legacy digest.
            retention_days: Days until a new entry expires.
            integrity_checking: Compute an integrity digest per entry.
            archive_threshold: Store size above which old entries are archived
                             automatically after each write; 0 disables.
            archive_after_days: Age of entries archived by the automatic pass.
            clock: Returns the current time; defaults to UTC now.
        """
        self._store = audit_store
        self._observability = observability_manager
        self._digest = digest or get_digest("legacy-base64")
        self._retention_days = retention_days
        self._integrity_checking = integrity_checking
        self._archive_threshold = archive_threshold
        self._archive_after_days = archive_after_days
        self._clock = clock or utc_now
        self._exporter = AuditTrailExporter()
        self._purged_ids: set[str] = set()

        if self._integrity_checking and self._digest.weak:
            logger.warning(
                "weak_audit_digest",
                algorithm=self._digest.name,
                message="Audit integrity digest is not collision resistant",
            )

    @property
    def store(self) -> AuditStore:
        return self._store

    @property
    def digest_algorithm(self) -> DigestAlgorithm:
        return self._digest

    @property
    def purged_entry_ids(self) -> frozenset[str]:
        """Ids removed by expiry cleanup or by the store's size cap."""
        return frozenset(self._purged_ids)

    @property
    def removed_count(self) -> int:
        return len(self._purged_ids)

    def was_removed(self, entry_id: str) -> bool:
        """True when ``entry_id`` was purged or evicted, not lost."""
        return entry_id in self._purged_ids

    def now(self) -> datetime:
        return self._clock()

    def compute_integrity_hash(self, entry: AuditTrailEntry) -> str:
        """Digest over the actor, action, subject and field changes of an entry."""
        payload = {
            "actor_id": entry.actor_id,
            "action": entry.action.value,
            "subject_id": entry.subject_id,
            "field_changes": [change.model_dump(mode="json") for change in entry.field_changes],
        }
        return self._digest.digest(canonical_json(payload))

    def build_audit_entry(
        self,
        actor_id: str,
        actor_role: UserRole,
        action: AuditAction,
        actor_email: str = "",
        subject_id: str | None = None,
        field_changes: list[FieldChange] | None = None,
        reason: str | None = None,
        comment: str | None = None,
        workflow_state: WorkflowState | None = None,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> AuditTrailEntry:
        """Build a classified, digested entry without storing it."""
        metadata = dict(metadata or {})
        changes = list(field_changes or [])
        created_at = timestamp or self._clock()

        entry = AuditTrailEntry(
            id=f"audit_{uuid.uuid4().hex}",
            timestamp=created_at,
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=action,
            subject_id=subject_id,
            workflow_state=workflow_state,
            field_changes=changes,
            reason=reason,
            comment=comment,
            priority=determine_priority(action, changes, metadata),
            metadata=metadata,
            ip_address=metadata.get("ip_address"),
            session_id=metadata.get("session_id"),
            request_id=metadata.get("request_id"),
            retention_days=self._retention_days,
            expires_at=created_at + timedelta(days=self._retention_days),
        )
        if self._integrity_checking:
            entry = entry.model_copy(update={"integrity_hash": self.compute_integrity_hash(entry)})
        return entry

    async def record(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        """Append a built entry and run the automatic archive pass.

        Raises:
            AuditStoreError: If the store rejects the entry.
        """
        evicted = await self._store.append(entry)
        if evicted:
            self._purged_ids.update(evicted)
            logger.info("audit_entries_evicted", count=len(evicted), oldest=evicted[0])

        try:
            await self._observability.emit_event(
                event_type=AUDIT_ENTRY_CREATED,
                payload={
                    "entry_id": entry.id,
                    "action": entry.action.value,
                    "priority": entry.priority.value,
                    "subject_id": entry.subject_id,
                    "actor_id": entry.actor_id,
                },
                metadata={"timestamp": entry.timestamp.isoformat()},
            )
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit audit_entry_created event: {e}",
                context={"entry_id": entry.id},
            )

        if self._archive_threshold and await self._store.count() > self._archive_threshold:
            await self.archive_old_entries(self._archive_after_days)

        return entry

    async def create_audit_entry(
        self,
        actor_id: str,
        actor_role: UserRole,
        action: AuditAction,
        actor_email: str = "",
        subject_id: str | None = None,
        field_changes: list[FieldChange] | None = None,
        reason: str | None = None,
        comment: str | None = None,
        workflow_state: WorkflowState | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        """Create and store an audit entry.

        Args:
            actor_id: User performing the action.
            actor_role: Role of the user.
            action: Kind of operation.
            actor_email: E-mail of the user.
            subject_id: Product the entry is about.
            field_changes: Field-level changes.
            reason: Free-text reason.
            comment: Free-text comment.
            workflow_state: Product state after the action.
            metadata: Extra context; ip_address, session_id and request_id
                     are promoted to entry fields.

        Returns:
            The stored entry.
        """
        entry = self.build_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            actor_email=actor_email,
            subject_id=subject_id,
            field_changes=field_changes,
            reason=reason,
            comment=comment,
            workflow_state=workflow_state,
            metadata=metadata,
        )
        return await self.record(entry)

    def build_product_created_entry(
        self,
        product: ProductWorkflow,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        return self.build_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=AuditAction.ProductCreated,
            subject_id=product.id,
            workflow_state=product.workflow_state,
            field_changes=[
                FieldChange(field="name", old_value=None, new_value=product.basic_info.name),
                FieldChange(field="sku", old_value=None, new_value=product.basic_info.sku),
            ],
            metadata={"product_name": product.display_name(), **(metadata or {})},
        )

    async def create_product_created_entry(
        self,
        product: ProductWorkflow,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        return await self.record(
            self.build_product_created_entry(product, actor_id, actor_role, actor_email, metadata)
        )

    def build_product_updated_entry(
        self,
        product: ProductWorkflow,
        field_changes: list[FieldChange],
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        return self.build_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=AuditAction.ProductUpdated,
            subject_id=product.id,
            workflow_state=product.workflow_state,
            field_changes=field_changes,
            reason=reason,
            metadata=metadata,
        )

    async def create_product_updated_entry(
        self,
        product: ProductWorkflow,
        field_changes: list[FieldChange],
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        return await self.record(
            self.build_product_updated_entry(
                product, field_changes, actor_id, actor_role, actor_email, reason, metadata
            )
        )

    async def create_product_deleted_entry(
        self,
        product_id: str,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
    ) -> AuditTrailEntry:
        return await self.create_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=AuditAction.ProductDeleted,
            subject_id=product_id,
            reason=reason,
        )

    def build_state_transition_entry(
        self,
        event: WorkflowTransitionEvent,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        """Turn a transition event into its audit entry."""
        return self.build_audit_entry(
            actor_id=event.actor_id,
            actor_role=event.actor_role,
            actor_email=event.actor_email,
            action=AuditAction.StateTransition,
            subject_id=event.product_id,
            workflow_state=event.to_state,
            field_changes=[event.state_change, *event.field_changes],
            reason=event.reason,
            comment=event.comment,
            metadata={
                **event.metadata,
                **(metadata or {}),
                "workflow_action": event.action.value,
                "from_state": event.from_state.value,
                "to_state": event.to_state.value,
                "is_automatic": event.is_automatic,
                "assigned_reviewer_id": event.assigned_reviewer_id,
            },
            timestamp=event.occurred_at,
        )

    async def create_state_transition_entry(
        self,
        event: WorkflowTransitionEvent,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        return await self.record(self.build_state_transition_entry(event, metadata))

    def build_reviewer_assignment_entry(
        self,
        product: ProductWorkflow,
        reviewer_id: str | None,
        previous_reviewer_id: str | None,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
    ) -> AuditTrailEntry:
        action = AuditAction.ReviewerAssigned if reviewer_id else AuditAction.ReviewerUnassigned
        return self.build_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=action,
            subject_id=product.id,
            workflow_state=product.workflow_state,
            field_changes=[
                FieldChange(
                    field="assignedReviewer",
                    old_value=previous_reviewer_id,
                    new_value=reviewer_id,
                )
            ],
            reason=reason,
        )

    async def create_reviewer_assignment_entry(
        self,
        product: ProductWorkflow,
        reviewer_id: str | None,
        previous_reviewer_id: str | None,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
    ) -> AuditTrailEntry:
        return await self.record(
            self.build_reviewer_assignment_entry(
                product, reviewer_id, previous_reviewer_id, actor_id, actor_role, actor_email, reason
            )
        )

    def build_bulk_operation_entry(
        self,
        result: BulkOperationResult,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
    ) -> AuditTrailEntry:
        return self.build_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=AuditAction.BulkOperation,
            reason=reason,
            metadata={
                "operation_id": result.operation_id,
                "bulk_action": result.action.value,
                "dry_run": result.dry_run,
                "total": result.total,
                "successful": result.successful,
                "failed": result.failed,
                "product_ids": [item.product_id for item in result.results],
                "failed_product_ids": [
                    item.product_id for item in result.results if not item.success
                ],
            },
        )

    async def create_bulk_operation_entry(
        self,
        result: BulkOperationResult,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
    ) -> AuditTrailEntry:
        return await self.record(
            self.build_bulk_operation_entry(result, actor_id, actor_role, actor_email, reason)
        )

    async def create_user_role_changed_entry(
        self,
        target_user_id: str,
        old_role: UserRole,
        new_role: UserRole,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
    ) -> AuditTrailEntry:
        return await self.create_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            actor_email=actor_email,
            action=AuditAction.UserRoleChanged,
            field_changes=[
                FieldChange(field="role", old_value=old_role.value, new_value=new_role.value)
            ],
            reason=reason,
            metadata={"target_user_id": target_user_id},
        )

    async def get_entry(self, entry_id: str) -> AuditTrailEntry | None:
        return await self._store.get(entry_id)

    async def get_audit_entries(
        self,
        query: AuditQuery | None = None,
        include_field_changes: bool = True,
        include_metadata: bool = True,
    ) -> list[AuditTrailEntry]:
        """Query the trail.

        Args:
            query: Filters, sort and pagination; all entries when None.
            include_field_changes: When False, field changes are blanked.
            include_metadata: When False, metadata is blanked.

        Returns:
            Matching entries.
        """
        query = query or AuditQuery()
        if not query.include_expired and query.as_of is None:
            query = query.model_copy(update={"as_of": self._clock()})

        entries = await self._store.query(query)

        updates: dict[str, Any] = {}
        if not include_field_changes:
            updates["field_changes"] = []
        if not include_metadata:
            updates["metadata"] = {}
        if updates:
            entries = [entry.model_copy(update=updates) for entry in entries]
        return entries

    async def get_product_audit_trail(
        self, product_id: str, query: AuditQuery | None = None
    ) -> list[AuditTrailEntry]:
        """Entries about one product."""
        base = query or AuditQuery()
        return await self.get_audit_entries(base.model_copy(update={"subject_id": product_id}))

    async def get_user_audit_trail(
        self, user_id: str, query: AuditQuery | None = None
    ) -> list[AuditTrailEntry]:
        """Entries written by one user."""
        base = query or AuditQuery()
        return await self.get_audit_entries(base.model_copy(update={"actor_id": user_id}))

    async def get_statistics(self) -> AuditTrailStatistics:
        """Aggregate counts over every stored entry."""
        now = self._clock()
        entries = await self._store.query(AuditQuery())

        stats = AuditTrailStatistics(
            entries_by_priority={priority.value: 0 for priority in AuditPriority}
        )
        for entry in entries:
            stats.total_entries += 1
            if entry.archived:
                stats.archived_entries += 1
            if entry.expires_at <= now:
                stats.expired_entries += 1
            action = entry.action.value
            stats.entries_by_action[action] = stats.entries_by_action.get(action, 0) + 1
            stats.entries_by_priority[entry.priority.value] += 1
            stats.entries_by_actor[entry.actor_id] = stats.entries_by_actor.get(entry.actor_id, 0) + 1
            role = entry.actor_role.value
            stats.entries_by_role[role] = stats.entries_by_role.get(role, 0) + 1
            if stats.oldest_entry is None or entry.timestamp < stats.oldest_entry:
                stats.oldest_entry = entry.timestamp
            if stats.newest_entry is None or entry.timestamp > stats.newest_entry:
                stats.newest_entry = entry.timestamp
        return stats

    async def export_audit_trail(self, options: AuditExportOptions | None = None) -> str:
        """Render the selected entries in the requested format.

        Raises:
            UnsupportedExportFormatError: If the format is unknown.
        """
        options = options or AuditExportOptions()
        entries = await self.get_audit_entries(options.query)
        return self._exporter.export(entries, options)

    async def archive_old_entries(self, older_than_days: int = 365) -> int:
        """Archive entries older than ``older_than_days``.

        Idempotent: already archived entries are not counted again.

        Returns:
            Number of entries archived by this call.
        """
        now = self._clock()
        archived = await self._store.archive(now - timedelta(days=older_than_days), now)
        if archived:
            await self._observability.log(
                level="INFO",
                message="Archived audit entries",
                context={"archived": archived, "older_than_days": older_than_days},
            )
        return archived

    async def cleanup_expired_entries(self) -> int:
        """Purge entries whose retention has elapsed.

        Returns:
            Number of entries removed.
        """
        removed = await self._store.purge(self._clock())
        self._purged_ids.update(removed)
        if removed:
            await self._observability.log(
                level="INFO",
                message="Purged expired audit entries",
                context={"removed": len(removed)},
            )
        return len(removed)

    async def verify_integrity(self) -> list[IntegrityCheckResult]:
        """Recompute every entry's digest and compare it with the stored one."""
        results = []
        for entry in await self._store.query(AuditQuery()):
            if entry.integrity_hash is None:
                if self._integrity_checking:
                    results.append(
                        IntegrityCheckResult(
                            entry_id=entry.id, valid=False, error="Missing integrity hash"
                        )
                    )
                continue
            if self.compute_integrity_hash(entry) != entry.integrity_hash:
                results.append(
                    IntegrityCheckResult(
                        entry_id=entry.id, valid=False, error="Integrity hash mismatch"
                    )
                )
            else:
                results.append(IntegrityCheckResult(entry_id=entry.id, valid=True))
        return results
