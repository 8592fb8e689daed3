"""ObservabilityManager interface for workflow and audit events."""

from abc import ABC, abstractmethod
from typing import Any

# Event types emitted by the workflow components.
STATE_TRANSITION = "state_transition"
TRANSITION_DENIED = "transition_denied"
AUDIT_ENTRY_CREATED = "audit_entry_created"
AUDIT_TAMPER_DETECTED = "audit_tamper_detected"


class ObservabilityManager(ABC):
    """Sink for the events and log lines of the workflow engine.

    The state manager reports every applied or denied transition, the audit
    trail every written entry and the immutable trail every tamper finding.
    Callers treat a failing sink as non-fatal: the workflow operation still
    completes and the failure is logged through ``log``.
    """

    @abstractmethod
    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Publish one workflow or audit event.

        Args:
            event_type: One of the module's event type constants.
            payload: Identifiers of the product, entry or actor involved,
                    with enum values as plain strings.
            metadata: Timing of the event, e.g. ``transition_timestamp`` or
                    ``detected_at`` as ISO-8601 strings.

        Raises:
            ObservabilityError: If the event could not be published.
        """

    @abstractmethod
    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Write a structured log line.

        Args:
            level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
            message: Human-readable message.
            context: Product, entry or request identifiers for the line.

        Raises:
            ObservabilityError: If the line could not be written.
        """


class ObservabilityError(Exception):
    """Raised when an event or log line cannot be delivered."""
