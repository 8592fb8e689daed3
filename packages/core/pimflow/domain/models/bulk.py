"""Bulk operation models."""

from datetime import datetime

from pydantic import BaseModel, Field

from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.transition import WorkflowTransitionEvent
from pimflow.domain.models.workflow import WorkflowAction, WorkflowState


class BulkItemResult(BaseModel):
    """Outcome for one product of a bulk operation."""

    product_id: str
    success: bool
    previous_state: WorkflowState | None = None
    new_state: WorkflowState | None = None
    errors: list[str] = Field(default_factory=list)


class BulkOperationResult(BaseModel):
    """Aggregated outcome of a bulk operation."""

    operation_id: str
    action: WorkflowAction
    dry_run: bool = False
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    results: list[BulkItemResult] = Field(default_factory=list)
    events: list[WorkflowTransitionEvent] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
