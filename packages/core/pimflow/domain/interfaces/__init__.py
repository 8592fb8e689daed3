"""Domain interfaces for dependency injection."""

from pimflow.domain.interfaces.audit_store import (
    AuditQuery,
    AuditStore,
    AuditStoreError,
)
from pimflow.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)

__all__ = [
    "AuditQuery",
    "AuditStore",
    "AuditStoreError",
    "ObservabilityManager",
    "ObservabilityError",
]
