"""Audit trail data models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.workflow import UserRole, WorkflowState


class AuditAction(str, Enum):
    """Kind of operation recorded in the audit trail."""

    ProductCreated = "product_created"
    ProductUpdated = "product_updated"
    ProductDeleted = "product_deleted"
    StateTransition = "state_transition"
    ReviewerAssigned = "reviewer_assigned"
    ReviewerUnassigned = "reviewer_unassigned"
    BulkOperation = "bulk_operation"
    PermissionGranted = "permission_granted"
    PermissionRevoked = "permission_revoked"
    UserRoleChanged = "user_role_changed"
    SystemConfigChanged = "system_config_changed"
    ExportPerformed = "export_performed"
    ImportPerformed = "import_performed"


class AuditPriority(str, Enum):
    """Severity of an audit entry."""

    Low = "low"
    Medium = "medium"
    High = "high"
    Critical = "critical"

    @property
    def rank(self) -> int:
        """Numeric order used for sorting, Low lowest."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[AuditPriority, int] = {
    AuditPriority.Low: 0,
    AuditPriority.Medium: 1,
    AuditPriority.High: 2,
    AuditPriority.Critical: 3,
}


class FieldChange(BaseModel):
    """Old and new value of a single product field."""

    field: str = Field(..., min_length=1, description="Dotted path of the changed field")
    old_value: Any = Field(default=None)
    new_value: Any = Field(default=None)

    model_config = ConfigDict(frozen=True)


class AuditTrailEntry(BaseModel):
    """A single immutable record of who changed what and when.

    Entries are never mutated after creation. Archiving stores a copy with
    ``archived`` and ``archived_at`` set; every other field is preserved.
    """

    id: str = Field(..., min_length=1, description="Unique entry identifier")
    timestamp: datetime = Field(default_factory=utc_now)
    actor_id: str = Field(..., min_length=1, description="User who performed the action")
    actor_role: UserRole = Field(..., description="Role of the actor at the time")
    actor_email: str = Field(default="", description="E-mail of the actor")
    action: AuditAction = Field(..., description="Kind of operation")
    subject_id: str | None = Field(
        default=None,
        description="Identifier of the product the entry is about",
    )
    workflow_state: WorkflowState | None = Field(
        default=None,
        description="Workflow state of the product after the action",
    )
    field_changes: list[FieldChange] = Field(default_factory=list)
    reason: str | None = Field(default=None)
    comment: str | None = Field(default=None)
    priority: AuditPriority = Field(default=AuditPriority.Medium)
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = Field(default=None)
    session_id: str | None = Field(default=None)
    request_id: str | None = Field(default=None)

    integrity_hash: str | None = Field(
        default=None,
        description="Digest of the entry's identifying content",
    )
    chain_hash: str | None = Field(
        default=None,
        description="Hash linking this entry to its predecessor",
    )

    archived: bool = Field(default=False)
    archived_at: datetime | None = Field(default=None)
    retention_days: int = Field(default=730, ge=1)
    expires_at: datetime = Field(..., description="When the entry becomes eligible for purge")

    model_config = ConfigDict(
        frozen=True,  # Immutable audit trail
        validate_assignment=True,
    )

    @property
    def changed_fields(self) -> list[str]:
        """Names of the fields touched by this entry."""
        return [change.field for change in self.field_changes]


class IntegrityCheckResult(BaseModel):
    """Result of re-checking one entry's basic integrity digest."""

    entry_id: str
    valid: bool
    error: str | None = None


class AuditTrailStatistics(BaseModel):
    """Aggregate counts over the audit trail."""

    total_entries: int = 0
    archived_entries: int = 0
    expired_entries: int = 0
    entries_by_action: dict[str, int] = Field(default_factory=dict)
    entries_by_priority: dict[str, int] = Field(default_factory=dict)
    entries_by_actor: dict[str, int] = Field(default_factory=dict)
    entries_by_role: dict[str, int] = Field(default_factory=dict)
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None
