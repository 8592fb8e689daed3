"""Tests for WorkflowStateManager component."""

import itertools

import pytest

from fixtures.workflow_data import (
    ADMIN_ID,
    EDITOR_ID,
    REVIEWER_ID,
    FixedClock,
    MockObservabilityManager,
    make_complete_product,
    make_product,
)
from pimflow.domain.components.permission_resolver import PermissionResolver
from pimflow.domain.components.workflow_state_manager import WorkflowStateManager
from pimflow.domain.interfaces.observability_manager import ObservabilityError
from pimflow.domain.models.audit_entry import FieldChange
from pimflow.domain.models.transition import StateTransitionRequest
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.infrastructure.config.defaults import DEFAULT_TRANSITION_RULES

RULED_TRIPLES = {
    (rule.from_state, rule.to_state, rule.required_role) for rule in DEFAULT_TRANSITION_RULES
}
UNRULED_TRIPLES = [
    triple
    for triple in itertools.product(WorkflowState, WorkflowState, UserRole)
    if triple not in RULED_TRIPLES
]


def _request(
    product_id: str,
    from_state: WorkflowState,
    to_state: WorkflowState,
    user_id: str,
    role: UserRole,
    **kwargs,
) -> StateTransitionRequest:
    return StateTransitionRequest(
        product_id=product_id,
        from_state=from_state,
        to_state=to_state,
        user_id=user_id,
        user_role=role,
        **kwargs,
    )


class TestTransitionLegality:
    """Tests for rule-based legality checks."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.manager = WorkflowStateManager(observability_manager=MockObservabilityManager())

    @pytest.mark.parametrize(
        "action,state,role,expected",
        [
            (WorkflowAction.Submit, WorkflowState.Draft, UserRole.Editor, True),
            (WorkflowAction.Submit, WorkflowState.Draft, UserRole.Admin, False),
            (WorkflowAction.Approve, WorkflowState.Review, UserRole.Reviewer, True),
            (WorkflowAction.Approve, WorkflowState.Review, UserRole.Admin, False),
            (WorkflowAction.Reject, WorkflowState.Review, UserRole.Reviewer, True),
            (WorkflowAction.Publish, WorkflowState.Approved, UserRole.Admin, True),
            (WorkflowAction.Publish, WorkflowState.Review, UserRole.Admin, False),
            (WorkflowAction.Unpublish, WorkflowState.Published, UserRole.Admin, True),
            (WorkflowAction.Reopen, WorkflowState.Approved, UserRole.Admin, True),
            (WorkflowAction.Edit, WorkflowState.Draft, UserRole.Editor, True),
            (WorkflowAction.Edit, WorkflowState.Rejected, UserRole.Editor, True),
            (WorkflowAction.Edit, WorkflowState.Published, UserRole.Editor, False),
            (WorkflowAction.ViewAuditTrail, WorkflowState.Draft, UserRole.Admin, False),
        ],
    )
    def test_can_perform_action(
        self, action: WorkflowAction, state: WorkflowState, role: UserRole, expected: bool
    ) -> None:
        """Test that legality follows the rules for exactly the actor's role."""
        assert self.manager.can_perform_action(action, state, role) is expected

    def test_create_decided_by_permission(self) -> None:
        """Test that create involves no transition and follows the create grant."""
        assert self.manager.can_perform_action(
            WorkflowAction.Create, WorkflowState.Draft, UserRole.Editor
        ) is True
        assert self.manager.can_perform_action(
            WorkflowAction.Create, WorkflowState.Draft, UserRole.Reviewer
        ) is False

    def test_target_state_for(self) -> None:
        """Test the state each action implies."""
        assert self.manager.target_state_for(WorkflowAction.Reopen, WorkflowState.Approved) == (
            WorkflowState.Review
        )
        assert self.manager.target_state_for(WorkflowAction.Unpublish, WorkflowState.Published) == (
            WorkflowState.Draft
        )
        assert self.manager.target_state_for(WorkflowAction.Edit, WorkflowState.Review) is None
        assert self.manager.target_state_for(WorkflowAction.Delete, WorkflowState.Draft) is None

    def test_action_for_transition(self) -> None:
        """Test naming a move between two states."""
        assert self.manager.action_for_transition(
            WorkflowState.Approved, WorkflowState.Review
        ) == WorkflowAction.Reopen
        assert self.manager.action_for_transition(
            WorkflowState.Published, WorkflowState.Draft
        ) == WorkflowAction.Unpublish
        assert self.manager.action_for_transition(
            WorkflowState.Rejected, WorkflowState.Draft
        ) == WorkflowAction.Edit

    def test_valid_next_states(self) -> None:
        """Test next states exclude automatic rules."""
        assert set(self.manager.get_valid_next_states(WorkflowState.Draft, UserRole.Editor)) == {
            WorkflowState.Review,
            WorkflowState.Draft,
        }
        assert self.manager.get_valid_next_states(WorkflowState.Rejected, UserRole.Editor) == []
        assert set(self.manager.get_valid_next_states(WorkflowState.Review, UserRole.Reviewer)) == {
            WorkflowState.Approved,
            WorkflowState.Rejected,
        }

    def test_valid_previous_states(self) -> None:
        """Test previous states for a role."""
        assert self.manager.get_valid_previous_states(WorkflowState.Review, UserRole.Admin) == [
            WorkflowState.Approved
        ]

    def test_available_transitions(self) -> None:
        """Test available transitions carry permissions and enforced conditions."""
        transitions = self.manager.get_available_transitions(WorkflowState.Approved, UserRole.Admin)
        by_action = {transition.action: transition for transition in transitions}

        assert set(by_action) == {WorkflowAction.Publish, WorkflowAction.Reopen}
        assert by_action[WorkflowAction.Publish].to_state == WorkflowState.Published
        assert by_action[WorkflowAction.Publish].required_permissions == ["workflow:publish"]
        assert by_action[WorkflowAction.Reopen].conditions == [
            "additionalReviewNeeded",
            "newReviewer",
        ]

    def test_no_transitions_for_viewer(self) -> None:
        """Test that viewers have no available transitions."""
        for state in WorkflowState:
            assert self.manager.get_available_transitions(state, UserRole.Viewer) == []


class TestValidateStateTransition:
    """Tests for validate_state_transition."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.manager = WorkflowStateManager(observability_manager=MockObservabilityManager())

    def test_valid_submit(self) -> None:
        """Test a complete draft with a reviewer can be submitted."""
        product = make_complete_product()
        result = self.manager.validate_state_transition(
            _request(product.id, WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )
        assert result.is_valid is True
        assert result.errors == []

    def test_stale_from_state(self) -> None:
        """Test that a request based on a stale state is refused."""
        product = make_complete_product(state=WorkflowState.Review)
        result = self.manager.validate_state_transition(
            _request(product.id, WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )
        assert result.is_valid is False
        assert result.errors == ["Product is in state review, not draft"]

    def test_wrong_product(self) -> None:
        """Test that a request for another product is refused."""
        product = make_complete_product()
        result = self.manager.validate_state_transition(
            _request("other", WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )
        assert "Request is for product other, not prod-1" in result.errors

    def test_no_rule_for_role(self) -> None:
        """Test that a transition without a rule for the role is refused."""
        product = make_complete_product(state=WorkflowState.Review)
        result = self.manager.validate_state_transition(
            _request(product.id, WorkflowState.Review, WorkflowState.Approved, ADMIN_ID, UserRole.Admin),
            product,
        )
        assert result.errors == [
            "Transition from review to approved is not allowed for role admin"
        ]

    @pytest.mark.parametrize("from_state,to_state,role", UNRULED_TRIPLES)
    def test_every_unlisted_transition_refused(
        self, from_state: WorkflowState, to_state: WorkflowState, role: UserRole
    ) -> None:
        """Test that no transition outside the rule table validates."""
        product = make_complete_product(state=from_state)
        result = self.manager.validate_state_transition(
            _request(product.id, from_state, to_state, ADMIN_ID, role), product
        )
        assert result.is_valid is False
        assert result.errors == [
            f"Transition from {from_state.value} to {to_state.value} "
            f"is not allowed for role {role.value}"
        ]

    def test_editor_cannot_publish_draft(self) -> None:
        """Test that a draft cannot skip review and approval."""
        product = make_complete_product()
        result = self.manager.validate_state_transition(
            _request(
                product.id, WorkflowState.Draft, WorkflowState.Published, EDITOR_ID, UserRole.Editor
            ),
            product,
        )
        assert result.errors == [
            "Transition from draft to published is not allowed for role editor"
        ]
        assert self.manager.can_perform_action(
            WorkflowAction.Publish, WorkflowState.Draft, UserRole.Editor
        ) is False

    def test_conditions_itemised(self) -> None:
        """Test that each unmet condition is reported separately."""
        product = make_product()
        result = self.manager.validate_state_transition(
            _request(product.id, WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )
        assert result.is_valid is False
        assert "A reviewer must be assigned" in result.errors
        assert any(error.startswith("Required fields missing for review") for error in result.errors)
        assert len(result.errors) == 2

    def test_missing_rule_permission(self) -> None:
        """Test that permissions required by the rule are checked."""
        manager = WorkflowStateManager(
            observability_manager=MockObservabilityManager(),
            permission_resolver=PermissionResolver(
                role_permissions={UserRole.Editor: ["products:write"]}
            ),
        )
        product = make_complete_product()
        result = manager.validate_state_transition(
            _request(product.id, WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )
        assert result.errors == ["Role editor lacks permission workflow:submit"]

    def test_reject_requires_reason(self) -> None:
        """Test that rejecting without a reason is refused."""
        product = make_complete_product(state=WorkflowState.Review)
        result = self.manager.validate_state_transition(
            _request(
                product.id, WorkflowState.Review, WorkflowState.Rejected, REVIEWER_ID, UserRole.Reviewer
            ),
            product,
        )
        assert result.errors == ["Rejection reason is required"]


class TestExecuteStateTransition:
    """Tests for execute_state_transition."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.observability = MockObservabilityManager()
        self.clock = FixedClock()
        self.manager = WorkflowStateManager(
            observability_manager=self.observability,
            clock=self.clock,
        )

    @pytest.mark.asyncio
    async def test_submit_updates_bookkeeping(self) -> None:
        """Test that submitting records the submitter and the reviewer."""
        product = make_complete_product(reviewer_id=None)
        now = self.clock.advance(hours=1)

        result = await self.manager.execute_state_transition(
            _request(
                product.id,
                WorkflowState.Draft,
                WorkflowState.Review,
                EDITOR_ID,
                UserRole.Editor,
                assigned_reviewer_id=REVIEWER_ID,
                comment="Ready",
            ),
            product,
        )

        assert result.success is True
        assert result.previous_state == WorkflowState.Draft
        assert result.new_state == WorkflowState.Review
        assert product.workflow_state == WorkflowState.Review
        assert product.assigned_reviewer_id == REVIEWER_ID
        assert product.submitted_by == EDITOR_ID
        assert product.submitted_at == now
        assert product.updated_at == now
        assert product.workflow_history[-1].state == WorkflowState.Review
        assert product.workflow_history[-1].comment == "Ready"

    @pytest.mark.asyncio
    async def test_success_returns_event(self) -> None:
        """Test that the event describes the applied transition."""
        product = make_complete_product(state=WorkflowState.Review)

        result = await self.manager.execute_state_transition(
            _request(
                product.id,
                WorkflowState.Review,
                WorkflowState.Rejected,
                REVIEWER_ID,
                UserRole.Reviewer,
                reason="Images are blurry",
            ),
            product,
        )

        event = result.event
        assert event is not None
        assert event.action == WorkflowAction.Reject
        assert event.from_state == WorkflowState.Review
        assert event.to_state == WorkflowState.Rejected
        assert event.reason == "Images are blurry"
        assert event.required_permissions == ["workflow:reject"]
        assert event.is_automatic is False
        assert event.occurred_at == self.clock.current
        assert event.state_change == FieldChange(
            field="workflowState", old_value="review", new_value="rejected"
        )
        assert product.rejection_reason == "Images are blurry"
        assert product.reviewed_by == REVIEWER_ID

    @pytest.mark.asyncio
    async def test_failure_leaves_product_untouched(self) -> None:
        """Test that a denied transition does not mutate the product."""
        product = make_complete_product(state=WorkflowState.Review)
        before = product.model_dump()

        result = await self.manager.execute_state_transition(
            _request(
                product.id, WorkflowState.Review, WorkflowState.Approved, EDITOR_ID, UserRole.Editor
            ),
            product,
        )

        assert result.success is False
        assert result.event is None
        assert result.new_state == WorkflowState.Review
        assert product.model_dump() == before
        assert self.observability.event_types() == ["transition_denied"]

    @pytest.mark.asyncio
    async def test_automatic_return_to_draft(self) -> None:
        """Test the automatic rejected -> draft rule clears the rejection reason."""
        product = make_complete_product(state=WorkflowState.Rejected)

        result = await self.manager.execute_state_transition(
            _request(
                product.id,
                WorkflowState.Rejected,
                WorkflowState.Draft,
                EDITOR_ID,
                UserRole.Editor,
                field_changes=[FieldChange(field="media.images", old_value=[], new_value=["x"])],
            ),
            product,
        )

        assert result.success is True
        assert result.event is not None
        assert result.event.is_automatic is True
        assert result.event.action == WorkflowAction.Edit
        assert product.workflow_state == WorkflowState.Draft
        assert product.rejection_reason is None

    @pytest.mark.asyncio
    async def test_unpublish_clears_publication(self) -> None:
        """Test that unpublishing clears the publication fields."""
        product = make_complete_product(state=WorkflowState.Published)

        result = await self.manager.execute_state_transition(
            _request(
                product.id,
                WorkflowState.Published,
                WorkflowState.Draft,
                ADMIN_ID,
                UserRole.Admin,
                reason="Recall",
                metadata={"major_changes": True},
            ),
            product,
        )

        assert result.success is True
        assert product.published_by is None
        assert product.published_at is None

    @pytest.mark.asyncio
    async def test_emits_state_transition_event(self) -> None:
        """Test that a successful transition emits an event."""
        product = make_complete_product()

        await self.manager.execute_state_transition(
            _request(product.id, WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )

        event = self.observability.events[-1]
        assert event["event_type"] == "state_transition"
        assert event["payload"]["action"] == "submit"
        assert event["payload"]["to_state"] == "review"

    @pytest.mark.asyncio
    async def test_observability_failure_does_not_fail_transition(self) -> None:
        """Test that an event emission error is logged, not raised."""
        self.observability.emit_error = ObservabilityError("sink down")
        product = make_complete_product()

        result = await self.manager.execute_state_transition(
            _request(product.id, WorkflowState.Draft, WorkflowState.Review, EDITOR_ID, UserRole.Editor),
            product,
        )

        assert result.success is True
        assert self.observability.logs[-1]["level"] == "WARNING"
        assert "sink down" in self.observability.logs[-1]["message"]


class TestProductStateAndProgress:
    """Tests for validate_product_state and get_workflow_progress."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.manager = WorkflowStateManager(observability_manager=MockObservabilityManager())

    @pytest.mark.parametrize("state", list(WorkflowState))
    def test_consistent_products_are_valid(self, state: WorkflowState) -> None:
        """Test that factory products are consistent in every state."""
        result = self.manager.validate_product_state(make_complete_product(state=state))
        assert result.is_valid is True

    def test_missing_history(self) -> None:
        """Test that a product without history is invalid."""
        product = make_complete_product()
        product.workflow_history = []
        result = self.manager.validate_product_state(product)
        assert "Product has no workflow history" in result.errors

    def test_review_without_reviewer_warns(self) -> None:
        """Test that a missing reviewer in review is only a warning."""
        product = make_complete_product(state=WorkflowState.Review, reviewer_id=None)
        result = self.manager.validate_product_state(product)
        assert result.is_valid is True
        assert result.warnings == ["Product in review has no assigned reviewer"]

    def test_approved_without_reviewer_record(self) -> None:
        """Test that an approved product must record its reviewer."""
        product = make_complete_product(state=WorkflowState.Approved)
        product.reviewed_by = None
        result = self.manager.validate_product_state(product)
        assert "Approved product must record who reviewed it and when" in result.errors

    def test_missing_basic_fields(self) -> None:
        """Test that name, SKU and brand are required."""
        product = make_product()
        product.basic_info.sku = " "
        product.basic_info.brand = ""
        result = self.manager.validate_product_state(product)
        assert "Product SKU is required" in result.errors
        assert "Product brand is required" in result.errors

    @pytest.mark.parametrize(
        "state,step,percent",
        [
            (WorkflowState.Draft, 1, 0),
            (WorkflowState.Review, 2, 33),
            (WorkflowState.Approved, 3, 67),
            (WorkflowState.Published, 4, 100),
            (WorkflowState.Rejected, 2, 33),
        ],
    )
    def test_progress(self, state: WorkflowState, step: int, percent: int) -> None:
        """Test progress through the editorial steps."""
        progress = self.manager.get_workflow_progress(make_complete_product(state=state))
        assert progress.current_step == step
        assert progress.total_steps == 4
        assert progress.percent_complete == percent
        assert progress.is_rejected is (state == WorkflowState.Rejected)
