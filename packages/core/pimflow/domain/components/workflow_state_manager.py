"""WorkflowStateManager: legality and execution of workflow transitions."""

from collections.abc import Callable
from datetime import datetime

from pimflow.domain.components.permission_resolver import PermissionResolver
from pimflow.domain.components.quality_gate import QualityGate
from pimflow.domain.components.transition_conditions import TransitionConditions
from pimflow.domain.components.transition_rules import TransitionRuleTable
from pimflow.domain.interfaces.observability_manager import (
    STATE_TRANSITION,
    TRANSITION_DENIED,
    ObservabilityManager,
)
from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.product import ProductWorkflow, WorkflowHistoryRecord
from pimflow.domain.models.transition import (
    AvailableTransition,
    StateTransitionRequest,
    TransitionResult,
    WorkflowProgress,
    WorkflowTransitionEvent,
    WorkflowValidationResult,
)
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.infrastructure.config.defaults import DEFAULT_TRANSITION_RULES

# Editorial steps in order; Rejected is a side branch and not a step.
PROGRESS_STEPS: list[WorkflowState] = [
    WorkflowState.Draft,
    WorkflowState.Review,
    WorkflowState.Approved,
    WorkflowState.Published,
]


class WorkflowStateManager:
    """Decides whether a transition is legal and applies it to a product.

    Legality is purely rule based: an action is allowed when a TransitionRule
    exists from the product's current state to the state the action implies,
    for exactly the actor's role. Applying a transition mutates the product
    and returns a WorkflowTransitionEvent; persisting the event is left to
    the caller.
    """

    def __init__(
        self,
        observability_manager: ObservabilityManager,
        rule_table: TransitionRuleTable | None = None,
        permission_resolver: PermissionResolver | None = None,
        conditions: TransitionConditions | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize WorkflowStateManager.

        Args:
            observability_manager: ObservabilityManager for events and logging.
            rule_table: Transition rules. Defaults to the built-in rules.
            permission_resolver: Resolver for rule permissions.
            conditions: Condition evaluators for rule preconditions.
            clock: Returns the current time; defaults to UTC now.
        """
        self._observability = observability_manager
        self._rules = rule_table or TransitionRuleTable(DEFAULT_TRANSITION_RULES)
        self._permissions = permission_resolver or PermissionResolver()
        self._conditions = conditions or TransitionConditions(QualityGate())
        self._clock = clock or utc_now

    @property
    def rules(self) -> TransitionRuleTable:
        return self._rules

    def now(self) -> datetime:
        return self._clock()

    def target_state_for(
        self, action: WorkflowAction, current_state: WorkflowState
    ) -> WorkflowState | None:
        """Return the state ``action`` moves a product to, or None for no transition.

        Edit keeps a draft in draft and brings a rejected product back to
        draft; on any other state it implies no transition.
        """
        if action == WorkflowAction.Submit:
            return WorkflowState.Review
        if action == WorkflowAction.Approve:
            return WorkflowState.Approved
        if action == WorkflowAction.Reject:
            return WorkflowState.Rejected
        if action == WorkflowAction.Publish:
            return WorkflowState.Published
        if action == WorkflowAction.Unpublish:
            return WorkflowState.Draft
        if action == WorkflowAction.Reopen:
            return WorkflowState.Review
        if action == WorkflowAction.Edit:
            if current_state in (WorkflowState.Draft, WorkflowState.Rejected):
                return WorkflowState.Draft
            return None
        return None

    def action_for_transition(
        self, from_state: WorkflowState, to_state: WorkflowState
    ) -> WorkflowAction:
        """Return the action that names a move from ``from_state`` to ``to_state``."""
        if to_state == WorkflowState.Review:
            if from_state == WorkflowState.Approved:
                return WorkflowAction.Reopen
            return WorkflowAction.Submit
        if to_state == WorkflowState.Approved:
            return WorkflowAction.Approve
        if to_state == WorkflowState.Rejected:
            return WorkflowAction.Reject
        if to_state == WorkflowState.Published:
            return WorkflowAction.Publish
        if from_state == WorkflowState.Published:
            return WorkflowAction.Unpublish
        return WorkflowAction.Edit

    def can_perform_action(
        self,
        action: WorkflowAction,
        current_state: WorkflowState,
        role: UserRole,
    ) -> bool:
        """Return True when a rule lets ``role`` perform ``action`` from ``current_state``.

        Create involves no transition and is decided by the create permission.
        """
        if action == WorkflowAction.Create:
            return self._permissions.has_permission(role, WorkflowAction.Create)

        target_state = self.target_state_for(action, current_state)
        if target_state is None:
            return False
        return self._rules.find(current_state, target_state, role) is not None

    def get_valid_next_states(self, state: WorkflowState, role: UserRole) -> list[WorkflowState]:
        """States ``role`` can move a product to from ``state`` with an explicit action."""
        return [rule.to_state for rule in self._rules.rules_from(state, role)]

    def get_valid_previous_states(self, state: WorkflowState, role: UserRole) -> list[WorkflowState]:
        """States from which ``role`` can move a product into ``state``."""
        return [rule.from_state for rule in self._rules.rules_to(state, role)]

    def get_available_transitions(
        self, state: WorkflowState, role: UserRole
    ) -> list[AvailableTransition]:
        """Explicit actions ``role`` can request from ``state``."""
        return [
            AvailableTransition(
                action=self.action_for_transition(rule.from_state, rule.to_state),
                to_state=rule.to_state,
                required_permissions=list(rule.required_permissions),
                conditions=rule.enforced_conditions,
            )
            for rule in self._rules.rules_from(state, role)
        ]

    def validate_state_transition(
        self,
        request: StateTransitionRequest,
        product: ProductWorkflow,
    ) -> WorkflowValidationResult:
        """Check a transition request against the rules, grants and conditions.

        Errors are itemised: a stale source state, a missing rule, each
        missing permission and each unmet condition are reported separately.
        """
        result = WorkflowValidationResult()

        if request.product_id != product.id:
            result.add_error(
                f"Request is for product {request.product_id}, not {product.id}"
            )
        if request.from_state != product.workflow_state:
            result.add_error(
                f"Product is in state {product.workflow_state.value}, "
                f"not {request.from_state.value}"
            )
            return result

        rule = self._rules.find(request.from_state, request.to_state, request.user_role)
        if rule is None:
            result.add_error(
                f"Transition from {request.from_state.value} to {request.to_state.value} "
                f"is not allowed for role {request.user_role.value}"
            )
            return result

        for permission in rule.required_permissions:
            if not self._permissions.has_permission_string(request.user_role, permission):
                result.add_error(
                    f"Role {request.user_role.value} lacks permission {permission}"
                )

        for error in self._conditions.evaluate(rule, request, product):
            result.add_error(error)

        return result

    async def execute_state_transition(
        self,
        request: StateTransitionRequest,
        product: ProductWorkflow,
    ) -> TransitionResult:
        """Validate and apply a transition.

        On success the product's state, history and state-specific fields are
        updated and the result carries the WorkflowTransitionEvent to persist.
        On failure the product is left untouched.

        Args:
            request: The transition request.
            product: The product to transition; mutated on success.

        Returns:
            TransitionResult with either the event or the errors.
        """
        previous_state = product.workflow_state
        action = self.action_for_transition(request.from_state, request.to_state)

        validation = self.validate_state_transition(request, product)
        if validation.is_valid and not self.can_perform_action(
            action, request.from_state, request.user_role
        ):
            validation.add_error(
                f"Action {action.value} is not allowed from {request.from_state.value} "
                f"for role {request.user_role.value}"
            )

        if not validation.is_valid:
            await self._emit(
                TRANSITION_DENIED,
                {
                    "product_id": product.id,
                    "from_state": request.from_state.value,
                    "to_state": request.to_state.value,
                    "user_id": request.user_id,
                    "user_role": request.user_role.value,
                    "errors": validation.errors,
                },
            )
            return TransitionResult(
                success=False,
                previous_state=previous_state,
                new_state=previous_state,
                errors=validation.errors,
                warnings=validation.warnings,
            )

        rule = self._rules.find(request.from_state, request.to_state, request.user_role)
        now = self._clock()
        self._apply(request, product, now)

        event = WorkflowTransitionEvent(
            product_id=product.id,
            action=action,
            from_state=request.from_state,
            to_state=request.to_state,
            actor_id=request.user_id,
            actor_role=request.user_role,
            actor_email=request.user_email,
            reason=request.reason,
            comment=request.comment,
            assigned_reviewer_id=request.assigned_reviewer_id,
            field_changes=list(request.field_changes),
            required_permissions=list(rule.required_permissions) if rule else [],
            is_automatic=bool(rule and rule.is_automatic),
            metadata=dict(request.metadata),
            occurred_at=now,
        )

        await self._emit(
            STATE_TRANSITION,
            {
                "product_id": product.id,
                "action": action.value,
                "from_state": request.from_state.value,
                "to_state": request.to_state.value,
                "user_id": request.user_id,
                "user_role": request.user_role.value,
                "is_automatic": event.is_automatic,
            },
            {"transition_timestamp": now.isoformat()},
        )

        return TransitionResult(
            success=True,
            previous_state=previous_state,
            new_state=product.workflow_state,
            warnings=validation.warnings,
            event=event,
        )

    def _apply(
        self,
        request: StateTransitionRequest,
        product: ProductWorkflow,
        now: datetime,
    ) -> None:
        to_state = request.to_state

        if to_state == WorkflowState.Review:
            if request.assigned_reviewer_id:
                product.assigned_reviewer_id = request.assigned_reviewer_id
            product.submitted_by = request.user_id
            product.submitted_at = now
        elif to_state == WorkflowState.Approved:
            product.reviewed_by = request.user_id
            product.reviewed_at = now
        elif to_state == WorkflowState.Rejected:
            product.reviewed_by = request.user_id
            product.reviewed_at = now
            product.rejection_reason = request.reason
        elif to_state == WorkflowState.Published:
            product.published_by = request.user_id
            product.published_at = now
        elif to_state == WorkflowState.Draft:
            if request.from_state == WorkflowState.Rejected:
                product.rejection_reason = None
            if request.from_state == WorkflowState.Published:
                product.published_by = None
                product.published_at = None

        product.workflow_state = to_state
        product.updated_at = now
        product.workflow_history.append(
            WorkflowHistoryRecord(
                state=to_state,
                timestamp=now,
                user_id=request.user_id,
                reason=request.reason,
                comment=request.comment,
            )
        )

    def validate_product_state(self, product: ProductWorkflow) -> WorkflowValidationResult:
        """Check that a product's bookkeeping is consistent with its state.

        Missing reviewer assignment in review and a missing rejection reason
        are warnings; everything else is an error.
        """
        result = WorkflowValidationResult()
        state = product.workflow_state

        if not product.workflow_history:
            result.add_error("Product has no workflow history")
        elif state != WorkflowState.Draft and not any(
            record.state == state for record in product.workflow_history
        ):
            result.add_error(f"Current state {state.value} is missing from workflow history")

        if state == WorkflowState.Review:
            if not product.submitted_by or not product.submitted_at:
                result.add_error("Product in review must record who submitted it and when")
            if not product.assigned_reviewer_id:
                result.add_warning("Product in review has no assigned reviewer")
        elif state == WorkflowState.Approved:
            if not product.reviewed_by or not product.reviewed_at:
                result.add_error("Approved product must record who reviewed it and when")
        elif state == WorkflowState.Published:
            if not product.published_by or not product.published_at:
                result.add_error("Published product must record who published it and when")
        elif state == WorkflowState.Rejected:
            if not product.rejection_reason:
                result.add_warning("Rejected product has no rejection reason")

        if not product.has_field("basic_info.name"):
            result.add_error("Product name is required")
        if not product.basic_info.sku.strip():
            result.add_error("Product SKU is required")
        if not product.basic_info.brand.strip():
            result.add_error("Product brand is required")

        return result

    def get_workflow_progress(self, product: ProductWorkflow) -> WorkflowProgress:
        """Report how far the product has advanced through the editorial steps."""
        state = product.workflow_state
        if state == WorkflowState.Rejected:
            # Rejection happens at review, so the product sits at the review step.
            step_index = PROGRESS_STEPS.index(WorkflowState.Review)
        else:
            step_index = PROGRESS_STEPS.index(state)

        total = len(PROGRESS_STEPS)
        percent = round(step_index / (total - 1) * 100)
        return WorkflowProgress(
            current_state=state,
            current_step=step_index + 1,
            total_steps=total,
            percent_complete=percent,
            completed_states=PROGRESS_STEPS[:step_index],
            is_rejected=state == WorkflowState.Rejected,
        )

    async def _emit(
        self,
        event_type: str,
        payload: dict[str, object],
        metadata: dict[str, object] | None = None,
    ) -> None:
        try:
            await self._observability.emit_event(
                event_type=event_type,
                payload=payload,
                metadata=metadata,
            )
        except Exception as e:
            # Observability failures never fail a transition
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit {event_type} event: {e}",
                context={"product_id": payload.get("product_id")},
            )
