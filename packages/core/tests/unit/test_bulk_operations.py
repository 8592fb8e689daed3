"""Tests for BulkOperationExecutor."""

import pytest

from fixtures.workflow_data import (
    ADMIN_ID,
    REVIEWER_ID,
    MockObservabilityManager,
    make_complete_product,
)
from pimflow.domain.components.bulk_operations import BulkOperationError, BulkOperationExecutor
from pimflow.domain.components.workflow_state_manager import WorkflowStateManager
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState


class TestBulkOperationExecutor:
    """Tests for running one action over many products."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.state_manager = WorkflowStateManager(observability_manager=self.observability)
        self.executor = BulkOperationExecutor(self.state_manager)

    @pytest.mark.asyncio
    async def test_bulk_publish(self) -> None:
        """Test that an admin can publish a batch of approved products."""
        products = [
            make_complete_product(f"p{i}", state=WorkflowState.Approved) for i in range(3)
        ]

        result = await self.executor.execute(
            WorkflowAction.BulkPublish, products, ADMIN_ID, UserRole.Admin
        )

        assert result.total == 3
        assert result.successful == 3
        assert result.failed == 0
        assert result.operation_id.startswith("bulk_")
        assert result.completed_at is not None
        assert all(p.workflow_state == WorkflowState.Published for p in products)
        assert len(result.events) == 3
        assert all(
            event.metadata["bulk_operation_id"] == result.operation_id for event in result.events
        )

    @pytest.mark.asyncio
    async def test_missing_bulk_permission_fails_every_item(self) -> None:
        """Test that reviewers cannot run bulk actions."""
        products = [make_complete_product(f"p{i}", state=WorkflowState.Review) for i in range(2)]

        result = await self.executor.execute(
            WorkflowAction.BulkApprove, products, REVIEWER_ID, UserRole.Reviewer
        )

        assert result.failed == 2
        assert result.errors == [
            "Insufficient permissions: role reviewer cannot perform bulk_approve"
        ]
        assert all(p.workflow_state == WorkflowState.Review for p in products)
        assert result.events == []

    @pytest.mark.asyncio
    async def test_per_product_failures_are_independent(self) -> None:
        """Test that one failing product does not stop the others."""
        good = make_complete_product("p-good", state=WorkflowState.Review)
        bad = make_complete_product("p-bad", state=WorkflowState.Review)
        bad.marketing_seo.keywords = []

        result = await self.executor.execute(
            WorkflowAction.Approve, [good, bad], REVIEWER_ID, UserRole.Reviewer
        )

        assert result.successful == 1
        assert result.failed == 1
        assert good.workflow_state == WorkflowState.Approved
        assert bad.workflow_state == WorkflowState.Review
        assert result.results[1].errors == [
            "Quality check failed: At least 3 keywords required"
        ]
        assert result.errors == ["p-bad: Quality check failed: At least 3 keywords required"]

    @pytest.mark.asyncio
    async def test_admin_bulk_approve_needs_reviewer_rule(self) -> None:
        """Test that the bulk grant does not bypass the transition rules."""
        product = make_complete_product(state=WorkflowState.Review)

        result = await self.executor.execute(
            WorkflowAction.BulkApprove, [product], ADMIN_ID, UserRole.Admin
        )

        assert result.failed == 1
        assert result.results[0].errors == [
            "Transition from review to approved is not allowed for role admin"
        ]

    @pytest.mark.asyncio
    async def test_action_not_applicable(self) -> None:
        """Test that an action with no target state fails the item."""
        product = make_complete_product(state=WorkflowState.Published)

        result = await self.executor.execute(
            WorkflowAction.Edit, [product], ADMIN_ID, UserRole.Admin
        )

        assert result.results[0].errors == [
            "Action edit does not apply to a product in state published"
        ]

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self) -> None:
        """Test that a dry run validates without mutating products."""
        products = [make_complete_product(f"p{i}", state=WorkflowState.Approved) for i in range(2)]
        products[1].media.images[0].url = None

        result = await self.executor.execute(
            WorkflowAction.BulkPublish, products, ADMIN_ID, UserRole.Admin, dry_run=True
        )

        assert result.dry_run is True
        assert result.successful == 1
        assert result.results[0].new_state == WorkflowState.Published
        assert result.results[1].new_state == WorkflowState.Approved
        assert all(p.workflow_state == WorkflowState.Approved for p in products)
        assert result.events == []
        assert self.observability.events == []

    @pytest.mark.asyncio
    async def test_duplicate_products(self) -> None:
        """Test that a product listed twice is processed once."""
        product = make_complete_product(state=WorkflowState.Approved)

        result = await self.executor.execute(
            WorkflowAction.BulkPublish, [product, product], ADMIN_ID, UserRole.Admin
        )

        assert result.successful == 1
        assert result.results[1].errors == ["Duplicate product in bulk operation"]

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self) -> None:
        """Test that an empty batch is rejected."""
        with pytest.raises(BulkOperationError, match="at least one product"):
            await self.executor.execute(WorkflowAction.BulkPublish, [], ADMIN_ID, UserRole.Admin)

    @pytest.mark.asyncio
    async def test_batch_limit(self) -> None:
        """Test the maximum batch size."""
        executor = BulkOperationExecutor(self.state_manager, max_products=2)
        products = [make_complete_product(f"p{i}", state=WorkflowState.Approved) for i in range(3)]

        with pytest.raises(BulkOperationError, match="limited to 2 products, got 3"):
            await executor.execute(WorkflowAction.BulkPublish, products, ADMIN_ID, UserRole.Admin)
