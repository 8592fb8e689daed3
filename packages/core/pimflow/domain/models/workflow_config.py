"""WorkflowConfiguration data model."""

from pydantic import BaseModel, Field

from pimflow.domain.models.quality import QualityThresholds
from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState


class WorkflowConfiguration(BaseModel):
    """Static workflow configuration: rules, grants, and quality requirements.

    Built from the in-code defaults or loaded from a YAML/JSON file with
    WorkflowConfigLoader. Treated as read-only once the engine starts.
    """

    transition_rules: list[TransitionRule] = Field(default_factory=list)
    role_permissions: dict[UserRole, list[str]] = Field(default_factory=dict)
    action_permissions: dict[WorkflowAction, list[str]] = Field(default_factory=dict)
    quality_thresholds: QualityThresholds = Field(default_factory=QualityThresholds)
    required_fields: dict[WorkflowState, list[str]] = Field(
        default_factory=dict,
        description="Dotted field paths that must be filled before entering a state",
    )
    quality_gate_states: list[WorkflowState] = Field(
        default_factory=lambda: [WorkflowState.Approved, WorkflowState.Published],
        description="Target states for which quality thresholds are enforced",
    )
