"""Default observability manager implementation."""

import logging
from typing import Any

import structlog

from pimflow.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from pimflow.domain.models.clock import utc_now

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "token",
        "secret",
        "signing_key",
        "audit_signing_key",
        "authorization",
        "session_token",
    }
)


def sanitize_for_logging(data: Any) -> Any:
    """Redact secrets from data before it is logged.

    Values stored under a sensitive key (see SENSITIVE_KEYS) are replaced
    with "[REDACTED]" at any nesting depth.

    Args:
        data: Data structure to sanitize (dict, list, or primitive).

    Returns:
        Sanitized copy of the data.
    """
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS:
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = sanitize_for_logging(value)
        return sanitized
    elif isinstance(data, (list, tuple)):
        return [sanitize_for_logging(item) for item in data]
    return data


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog and the standard logging module it wraps.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: JSON output when True, console output otherwise.
    """
    processors: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s"
        if json_format
        else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class DefaultObservabilityManager(ObservabilityManager):
    """ObservabilityManager backed by structlog.

    JSON output for production, console output for development.
    """

    def __init__(self, log_level: str = "INFO", json_format: bool = True) -> None:
        """Initialize DefaultObservabilityManager.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            json_format: If True, use JSON format for structured logging.
                        If False, use human-readable format (development mode).
        """
        self._log_level = log_level
        self._json_format = json_format
        configure_logging(log_level=log_level, json_format=json_format)
        self._logger = structlog.get_logger("pimflow")

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit an event as a structured log line.

        Args:
            event_type: Type of event (e.g., "state_transition", "audit_entry_created").
            payload: Event payload data.
            metadata: Optional metadata; a timestamp is added when missing.

        Raises:
            ObservabilityError: If event emission fails.
        """
        try:
            event_data = dict(sanitize_for_logging(payload))
            if metadata:
                sanitized_metadata = sanitize_for_logging(metadata)
                if "timestamp" not in sanitized_metadata:
                    sanitized_metadata["timestamp"] = utc_now().isoformat()
                event_data["metadata"] = sanitized_metadata

            self._logger.info(
                "Event emitted",
                event_type=event_type,
                **event_data,
            )
        except Exception as e:
            raise ObservabilityError(f"Failed to emit event: {e}") from e

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a message with structured context.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            message: Log message.
            context: Optional structured context data.

        Raises:
            ObservabilityError: If logging fails.
        """
        try:
            sanitized_context = sanitize_for_logging(context) if context else None
            log_method = getattr(self._logger, level.lower(), self._logger.info)
            if sanitized_context:
                log_method(message, **sanitized_context)
            else:
                log_method(message)
        except Exception as e:
            raise ObservabilityError(f"Failed to log message: {e}") from e
