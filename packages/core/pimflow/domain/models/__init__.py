"""Domain models for the pimflow workflow core."""

from pimflow.domain.models.audit_entry import (
    AuditAction,
    AuditPriority,
    AuditTrailEntry,
    AuditTrailStatistics,
    FieldChange,
    IntegrityCheckResult,
)
from pimflow.domain.models.bulk import BulkItemResult, BulkOperationResult
from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.product import (
    AttributesAndSpecs,
    BasicInfo,
    KeyValueEntry,
    MarketingSEO,
    Media,
    MediaImage,
    PriceEntry,
    Pricing,
    ProductWorkflow,
    WorkflowHistoryRecord,
)
from pimflow.domain.models.quality import QualityMetrics, QualityThresholds
from pimflow.domain.models.tamper import (
    AlertLevel,
    EntryVerificationResult,
    ImmutabilityLogRecord,
    ImmutabilityReport,
    IntegritySummary,
    TamperDetectionResult,
    TamperType,
)
from pimflow.domain.models.transition import (
    AvailableTransition,
    StateTransitionRequest,
    TransitionResult,
    WorkflowProgress,
    WorkflowTransitionEvent,
    WorkflowValidationResult,
)
from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.validation import ValidationResult, WorkflowValidationContext
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.domain.models.workflow_config import WorkflowConfiguration

__all__ = [
    "WorkflowState",
    "UserRole",
    "WorkflowAction",
    "TransitionRule",
    "WorkflowConfiguration",
    "ProductWorkflow",
    "BasicInfo",
    "AttributesAndSpecs",
    "Media",
    "MediaImage",
    "MarketingSEO",
    "Pricing",
    "PriceEntry",
    "KeyValueEntry",
    "WorkflowHistoryRecord",
    "AuditAction",
    "AuditPriority",
    "AuditTrailEntry",
    "AuditTrailStatistics",
    "FieldChange",
    "IntegrityCheckResult",
    "StateTransitionRequest",
    "TransitionResult",
    "WorkflowTransitionEvent",
    "WorkflowValidationResult",
    "AvailableTransition",
    "WorkflowProgress",
    "WorkflowValidationContext",
    "ValidationResult",
    "QualityThresholds",
    "QualityMetrics",
    "TamperType",
    "AlertLevel",
    "TamperDetectionResult",
    "EntryVerificationResult",
    "IntegritySummary",
    "ImmutabilityLogRecord",
    "ImmutabilityReport",
    "BulkItemResult",
    "BulkOperationResult",
    "utc_now",
]
