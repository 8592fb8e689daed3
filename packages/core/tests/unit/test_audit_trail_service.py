"""Tests for AuditTrailService."""

import pytest

from fixtures.workflow_data import (
    EDITOR_ID,
    FixedClock,
    MockObservabilityManager,
    make_complete_product,
)
from pimflow.domain.components.audit_trail_service import (
    AuditTrailService,
    determine_priority,
)
from pimflow.domain.interfaces.audit_store import AuditQuery, AuditStoreError
from pimflow.domain.models.audit_entry import AuditAction, AuditPriority, FieldChange
from pimflow.domain.models.bulk import BulkItemResult, BulkOperationResult
from pimflow.domain.models.transition import WorkflowTransitionEvent
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.infrastructure.audit_store.memory_store import InMemoryAuditStore
from pimflow.infrastructure.utils.digest import get_digest


class TestDeterminePriority:
    """Tests for audit entry classification."""

    @pytest.mark.parametrize(
        "action,expected",
        [
            (AuditAction.ProductDeleted, AuditPriority.Critical),
            (AuditAction.UserRoleChanged, AuditPriority.Critical),
            (AuditAction.SystemConfigChanged, AuditPriority.Critical),
            (AuditAction.PermissionRevoked, AuditPriority.Critical),
            (AuditAction.StateTransition, AuditPriority.High),
            (AuditAction.BulkOperation, AuditPriority.High),
            (AuditAction.ReviewerAssigned, AuditPriority.High),
            (AuditAction.ProductCreated, AuditPriority.Medium),
            (AuditAction.ExportPerformed, AuditPriority.Medium),
        ],
    )
    def test_by_action(self, action: AuditAction, expected: AuditPriority) -> None:
        """Test the action-based classification."""
        assert determine_priority(action) == expected

    def test_sensitive_field_change_is_high(self) -> None:
        """Test that touching a sensitive field raises the priority."""
        changes = [FieldChange(field="price", old_value=10, new_value=12)]
        assert determine_priority(AuditAction.ProductUpdated, changes) == AuditPriority.High

        changes = [FieldChange(field="basic_info.brand", old_value="A", new_value="B")]
        assert determine_priority(AuditAction.ProductUpdated, changes) == AuditPriority.Medium

    @pytest.mark.parametrize(
        "field", ["pricing.standard_price", "pricing", "inventory.on_hand", "logistics.cost"]
    )
    def test_sensitive_nested_field_is_high(self, field: str) -> None:
        """Test that a sensitive segment anywhere in a dotted path raises the priority."""
        changes = [FieldChange(field=field, old_value=None, new_value=1)]
        assert determine_priority(AuditAction.ProductUpdated, changes) == AuditPriority.High

    @pytest.mark.parametrize(
        "metadata", [{"risk_level": "high"}, {"security_violation": True}]
    )
    def test_risk_metadata_is_high(self, metadata: dict) -> None:
        """Test that risk flags in the metadata raise the priority."""
        assert determine_priority(AuditAction.ProductUpdated, None, metadata) == AuditPriority.High


class TestAuditTrailService:
    """Tests for creating, querying and maintaining entries."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.store = InMemoryAuditStore()
        self.clock = FixedClock()
        self.service = AuditTrailService(
            audit_store=self.store,
            observability_manager=self.observability,
            retention_days=30,
            clock=self.clock,
        )

    async def _create(self, **kwargs):
        defaults = {
            "actor_id": EDITOR_ID,
            "actor_role": UserRole.Editor,
            "action": AuditAction.ProductUpdated,
            "subject_id": "prod-1",
        }
        defaults.update(kwargs)
        return await self.service.create_audit_entry(**defaults)

    @pytest.mark.asyncio
    async def test_create_entry(self) -> None:
        """Test that a created entry is classified, digested and stored."""
        entry = await self._create(
            field_changes=[FieldChange(field="price", old_value=10, new_value=12)],
            reason="Price update",
        )

        assert entry.id.startswith("audit_")
        assert entry.timestamp == self.clock.current
        assert entry.priority == AuditPriority.High
        assert entry.integrity_hash == self.service.compute_integrity_hash(entry)
        assert entry.expires_at == self.clock.advance(days=30)
        assert await self.store.get(entry.id) == entry

    @pytest.mark.asyncio
    async def test_entry_ids_are_unique(self) -> None:
        """Test that entries created at the same instant get distinct ids."""
        first = await self._create()
        second = await self._create()
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_request_metadata_promoted(self) -> None:
        """Test that ip, session and request ids become entry fields."""
        entry = await self._create(
            metadata={"ip_address": "10.0.0.1", "session_id": "s1", "request_id": "r1", "x": 1}
        )
        assert entry.ip_address == "10.0.0.1"
        assert entry.session_id == "s1"
        assert entry.request_id == "r1"
        assert entry.metadata["x"] == 1

    @pytest.mark.asyncio
    async def test_integrity_checking_disabled(self) -> None:
        """Test that no digest is computed when integrity checking is off."""
        service = AuditTrailService(
            InMemoryAuditStore(), self.observability, integrity_checking=False
        )
        entry = await service.create_audit_entry(
            actor_id=EDITOR_ID, actor_role=UserRole.Editor, action=AuditAction.ProductCreated
        )
        assert entry.integrity_hash is None
        assert await service.verify_integrity() == []

    @pytest.mark.asyncio
    async def test_created_event_emitted(self) -> None:
        """Test the audit_entry_created event."""
        entry = await self._create()
        event = self.observability.events[-1]
        assert event["event_type"] == "audit_entry_created"
        assert event["payload"]["entry_id"] == entry.id
        assert event["payload"]["priority"] == "medium"

    @pytest.mark.asyncio
    async def test_emit_failure_logged(self) -> None:
        """Test that an observability failure does not lose the entry."""
        self.observability.emit_error = RuntimeError("sink down")

        entry = await self._create()

        assert await self.store.get(entry.id) == entry
        assert self.observability.logs[-1]["level"] == "WARNING"
        assert "sink down" in self.observability.logs[-1]["message"]

    @pytest.mark.asyncio
    async def test_duplicate_id_propagates(self) -> None:
        """Test that store errors reach the caller."""
        entry = self.service.build_audit_entry(
            actor_id=EDITOR_ID, actor_role=UserRole.Editor, action=AuditAction.ProductUpdated
        )
        await self.service.record(entry)
        with pytest.raises(AuditStoreError):
            await self.service.record(entry)

    @pytest.mark.asyncio
    async def test_product_created_entry(self) -> None:
        """Test the product_created entry content."""
        product = make_complete_product()
        entry = await self.service.create_product_created_entry(
            product, EDITOR_ID, UserRole.Editor
        )
        assert entry.action == AuditAction.ProductCreated
        assert entry.workflow_state == WorkflowState.Draft
        assert entry.changed_fields == ["name", "sku"]
        assert entry.metadata["product_name"] == "Trail Runner"

    @pytest.mark.asyncio
    async def test_state_transition_entry(self) -> None:
        """Test that a transition event becomes one high-priority entry."""
        event = WorkflowTransitionEvent(
            product_id="prod-1",
            action=WorkflowAction.Reject,
            from_state=WorkflowState.Review,
            to_state=WorkflowState.Rejected,
            actor_id="reviewer-1",
            actor_role=UserRole.Reviewer,
            reason="Missing images",
            occurred_at=self.clock.current,
        )

        entry = await self.service.create_state_transition_entry(event)

        assert entry.action == AuditAction.StateTransition
        assert entry.priority == AuditPriority.High
        assert entry.workflow_state == WorkflowState.Rejected
        assert entry.reason == "Missing images"
        assert entry.field_changes[0].field == "workflowState"
        assert entry.field_changes[0].old_value == "review"
        assert entry.field_changes[0].new_value == "rejected"
        assert entry.metadata["workflow_action"] == "reject"
        assert entry.metadata["is_automatic"] is False

    @pytest.mark.asyncio
    async def test_reviewer_assignment_entry(self) -> None:
        """Test assigning and unassigning a reviewer."""
        product = make_complete_product()
        assigned = await self.service.create_reviewer_assignment_entry(
            product, "reviewer-2", "reviewer-1", EDITOR_ID, UserRole.Editor
        )
        unassigned = await self.service.create_reviewer_assignment_entry(
            product, None, "reviewer-2", EDITOR_ID, UserRole.Editor
        )
        assert assigned.action == AuditAction.ReviewerAssigned
        assert assigned.field_changes[0].new_value == "reviewer-2"
        assert unassigned.action == AuditAction.ReviewerUnassigned

    @pytest.mark.asyncio
    async def test_bulk_operation_entry(self) -> None:
        """Test that a bulk operation is recorded as one entry with per-item ids."""
        result = BulkOperationResult(
            operation_id="bulk-1",
            action=WorkflowAction.BulkApprove,
            results=[
                BulkItemResult(product_id="p1", success=True),
                BulkItemResult(product_id="p2", success=False, errors=["not in review"]),
            ],
        )

        entry = await self.service.create_bulk_operation_entry(result, "admin-1", UserRole.Admin)

        assert entry.action == AuditAction.BulkOperation
        assert entry.metadata["product_ids"] == ["p1", "p2"]
        assert entry.metadata["failed_product_ids"] == ["p2"]

    @pytest.mark.asyncio
    async def test_user_role_changed_is_critical(self) -> None:
        """Test the role change entry."""
        entry = await self.service.create_user_role_changed_entry(
            "u9", UserRole.Editor, UserRole.Admin, "admin-1", UserRole.Admin
        )
        assert entry.priority == AuditPriority.Critical
        assert entry.metadata["target_user_id"] == "u9"

    @pytest.mark.asyncio
    async def test_query_include_flags(self) -> None:
        """Test blanking field changes and metadata in query results."""
        await self._create(
            field_changes=[FieldChange(field="sku", old_value="a", new_value="b")],
            metadata={"source": "import"},
        )

        full = await self.service.get_audit_entries()
        assert full[0].field_changes and full[0].metadata

        bare = await self.service.get_audit_entries(
            include_field_changes=False, include_metadata=False
        )
        assert bare[0].field_changes == []
        assert bare[0].metadata == {}
        assert (await self.store.query(AuditQuery()))[0].metadata == {"source": "import"}

    @pytest.mark.asyncio
    async def test_product_and_user_trails(self) -> None:
        """Test the per-product and per-user queries."""
        await self._create(subject_id="p1")
        await self._create(subject_id="p2", actor_id="editor-2")
        await self._create(subject_id="p1", actor_id="editor-2")

        assert len(await self.service.get_product_audit_trail("p1")) == 2
        assert len(await self.service.get_user_audit_trail("editor-2")) == 2

    @pytest.mark.asyncio
    async def test_expired_filter_uses_clock(self) -> None:
        """Test that include_expired=False is evaluated against the service clock."""
        await self._create()
        self.clock.advance(days=31)
        await self._create()

        live = await self.service.get_audit_entries(AuditQuery(include_expired=False))

        assert len(live) == 1

    @pytest.mark.asyncio
    async def test_statistics(self) -> None:
        """Test the aggregate counts."""
        await self._create()
        await self._create(action=AuditAction.ProductDeleted, actor_id="admin-1", actor_role=UserRole.Admin)
        self.clock.advance(minutes=5)
        await self._create()

        stats = await self.service.get_statistics()

        assert stats.total_entries == 3
        assert stats.entries_by_action == {"product_updated": 2, "product_deleted": 1}
        assert stats.entries_by_priority["critical"] == 1
        assert stats.entries_by_priority["low"] == 0
        assert stats.entries_by_actor[EDITOR_ID] == 2
        assert stats.entries_by_role == {"editor": 2, "admin": 1}
        assert stats.newest_entry > stats.oldest_entry

    @pytest.mark.asyncio
    async def test_archive_old_entries(self) -> None:
        """Test archiving is idempotent and keeps the entries queryable."""
        entry = await self._create()
        self.clock.advance(days=10)

        assert await self.service.archive_old_entries(older_than_days=5) == 1
        assert await self.service.archive_old_entries(older_than_days=5) == 0

        stored = await self.service.get_entry(entry.id)
        assert stored.archived is True
        assert stored.integrity_hash == entry.integrity_hash
        assert self.observability.logs[-1]["message"] == "Archived audit entries"

    @pytest.mark.asyncio
    async def test_automatic_archive_threshold(self) -> None:
        """Test that exceeding the store threshold archives old entries."""
        service = AuditTrailService(
            self.store,
            self.observability,
            archive_threshold=2,
            archive_after_days=1,
            clock=self.clock,
        )
        first = await service.create_audit_entry(
            actor_id=EDITOR_ID, actor_role=UserRole.Editor, action=AuditAction.ProductUpdated
        )
        self.clock.advance(days=2)
        await service.create_audit_entry(
            actor_id=EDITOR_ID, actor_role=UserRole.Editor, action=AuditAction.ProductUpdated
        )
        assert (await self.store.get(first.id)).archived is False

        await service.create_audit_entry(
            actor_id=EDITOR_ID, actor_role=UserRole.Editor, action=AuditAction.ProductUpdated
        )
        assert (await self.store.get(first.id)).archived is True

    @pytest.mark.asyncio
    async def test_cleanup_expired_entries(self) -> None:
        """Test that purged ids are remembered."""
        entry = await self._create()
        self.clock.advance(days=30)

        assert await self.service.cleanup_expired_entries() == 1
        assert entry.id in self.service.purged_entry_ids
        assert await self.service.get_entry(entry.id) is None
        assert await self.service.cleanup_expired_entries() == 0

    @pytest.mark.asyncio
    async def test_verify_integrity(self) -> None:
        """Test that a replaced entry fails its digest check."""
        self.service = AuditTrailService(
            self.store, self.observability, digest=get_digest("sha256"), clock=self.clock
        )
        good = await self._create(
            field_changes=[FieldChange(field="sku", old_value="a", new_value="b")]
        )
        bad = await self._create(
            field_changes=[FieldChange(field="sku", old_value="c", new_value="d")]
        )
        position = self.store._index[bad.id]
        self.store._entries[position] = bad.model_copy(update={"actor_id": "intruder"})

        results = {result.entry_id: result for result in await self.service.verify_integrity()}

        assert results[good.id].valid is True
        assert results[bad.id].valid is False
        assert results[bad.id].error == "Integrity hash mismatch"

    @pytest.mark.asyncio
    async def test_missing_hash_reported(self) -> None:
        """Test that an entry stored without a digest is reported."""
        entry = self.service.build_audit_entry(
            actor_id=EDITOR_ID, actor_role=UserRole.Editor, action=AuditAction.ProductUpdated
        )
        await self.store.append(entry.model_copy(update={"integrity_hash": None}))

        results = await self.service.verify_integrity()

        assert results[0].error == "Missing integrity hash"

    def test_digest_configurable(self) -> None:
        """Test that the digest algorithm is injected."""
        service = AuditTrailService(
            self.store, self.observability, digest=get_digest("sha256")
        )
        assert service.digest_algorithm.name == "sha256"
        assert self.service.digest_algorithm.weak is True
