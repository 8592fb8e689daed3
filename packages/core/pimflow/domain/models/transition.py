"""State transition request, result and domain event models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.models.audit_entry import FieldChange
from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState


class StateTransitionRequest(BaseModel):
    """Request to move a product from one workflow state to another.

    ``from_state`` must match the product's current state; a mismatch means
    the caller acted on stale data and the request is refused.
    """

    product_id: str = Field(..., min_length=1)
    from_state: WorkflowState
    to_state: WorkflowState
    user_id: str = Field(..., min_length=1)
    user_role: UserRole
    user_email: str = Field(default="")
    reason: str | None = Field(default=None)
    comment: str | None = Field(default=None)
    assigned_reviewer_id: str | None = Field(
        default=None,
        description="Reviewer to assign when submitting or reopening",
    )
    field_changes: list[FieldChange] = Field(
        default_factory=list,
        description="Content changes made together with the transition",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class WorkflowTransitionEvent(BaseModel):
    """Domain event describing a transition that has been applied.

    Returned to the caller, who decides how to persist it (normally as one
    audit trail entry).
    """

    product_id: str
    action: WorkflowAction
    from_state: WorkflowState
    to_state: WorkflowState
    actor_id: str
    actor_role: UserRole
    actor_email: str = ""
    reason: str | None = None
    comment: str | None = None
    assigned_reviewer_id: str | None = None
    field_changes: list[FieldChange] = Field(default_factory=list)
    required_permissions: list[str] = Field(default_factory=list)
    is_automatic: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)

    @property
    def state_change(self) -> FieldChange:
        """The transition expressed as a change of the workflowState field."""
        return FieldChange(
            field="workflowState",
            old_value=self.from_state.value,
            new_value=self.to_state.value,
        )


class WorkflowValidationResult(BaseModel):
    """Itemised outcome of a validation step.

    Errors block the operation, warnings never do.
    """

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def merge(self, other: "WorkflowValidationResult") -> None:
        """Fold another result into this one."""
        for error in other.errors:
            self.add_error(error)
        self.warnings.extend(other.warnings)


class TransitionResult(BaseModel):
    """Outcome of WorkflowStateManager.execute_state_transition."""

    success: bool
    previous_state: WorkflowState
    new_state: WorkflowState
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    event: WorkflowTransitionEvent | None = Field(
        default=None,
        description="Set only when the transition was applied",
    )


class AvailableTransition(BaseModel):
    """A transition the actor may request from the current state."""

    action: WorkflowAction
    to_state: WorkflowState
    required_permissions: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)


class WorkflowProgress(BaseModel):
    """How far a product has advanced through the editorial steps."""

    current_state: WorkflowState
    current_step: int
    total_steps: int
    percent_complete: int = Field(..., ge=0, le=100)
    completed_states: list[WorkflowState] = Field(default_factory=list)
    is_rejected: bool = False
