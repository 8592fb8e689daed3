"""Domain components."""

from pimflow.domain.components.transition_rules import (
    TransitionRuleConflictError,
    TransitionRuleTable,
)
from pimflow.domain.components.permission_resolver import PermissionResolver
from pimflow.domain.components.quality_gate import QualityGate
from pimflow.domain.components.transition_conditions import TransitionConditions
from pimflow.domain.components.workflow_state_manager import WorkflowStateManager
from pimflow.domain.components.validation_middleware import WorkflowValidationMiddleware
from pimflow.domain.components.audit_exporter import (
    AuditExportOptions,
    AuditTrailExporter,
    ExportFormat,
    UnsupportedExportFormatError,
)
from pimflow.domain.components.audit_trail_service import AuditTrailService, determine_priority
from pimflow.domain.components.immutable_audit_trail import (
    AuditEntryNotFoundError,
    AuditTrailReadOnlyError,
    ImmutabilityConfig,
    ImmutableAuditTrailService,
)
from pimflow.domain.components.bulk_operations import BulkOperationError, BulkOperationExecutor

__all__ = [
    "TransitionRuleTable",
    "TransitionRuleConflictError",
    "PermissionResolver",
    "QualityGate",
    "TransitionConditions",
    "WorkflowStateManager",
    "WorkflowValidationMiddleware",
    "AuditTrailExporter",
    "AuditExportOptions",
    "ExportFormat",
    "UnsupportedExportFormatError",
    "AuditTrailService",
    "determine_priority",
    "ImmutableAuditTrailService",
    "ImmutabilityConfig",
    "AuditTrailReadOnlyError",
    "AuditEntryNotFoundError",
    "BulkOperationExecutor",
    "BulkOperationError",
]
