"""TransitionRule data model."""

from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.models.workflow import UserRole, WorkflowState


class TransitionRule(BaseModel):
    """Static rule describing who may move a product between two states.

    Rules are configuration, not runtime state. Only conditions whose flag is
    True are evaluated when the transition is requested.
    """

    from_state: WorkflowState = Field(
        ...,
        description="State the product must currently be in",
    )
    to_state: WorkflowState = Field(
        ...,
        description="State the product moves to",
    )
    required_role: UserRole = Field(
        ...,
        description="Role the actor must hold",
    )
    required_permissions: list[str] = Field(
        default_factory=list,
        description="Permission strings the role must be granted",
    )
    is_automatic: bool = Field(
        default=False,
        description="Triggered implicitly by another operation instead of an explicit action",
    )
    conditions: dict[str, bool] = Field(
        default_factory=dict,
        description="Named preconditions; only entries set to True are enforced",
    )

    model_config = ConfigDict(
        frozen=True,
        use_enum_values=False,
    )

    @property
    def enforced_conditions(self) -> list[str]:
        """Names of the conditions that must hold for this rule."""
        return [name for name, enabled in self.conditions.items() if enabled]

    def describe(self) -> str:
        """Short human-readable form used in error messages and logs."""
        return f"{self.from_state.value} -> {self.to_state.value} ({self.required_role.value})"
