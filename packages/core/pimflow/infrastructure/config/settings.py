"""Configuration settings using pydantic-settings."""

from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pimflow.infrastructure.utils.digest import SUPPORTED_DIGESTS


class PimflowSettings(BaseSettings):
    """Configuration settings for the workflow engine.

    Settings can be loaded from environment variables or passed as a dictionary.
    Environment variables are prefixed with 'PIMFLOW_' (e.g., PIMFLOW_AUDIT_RETENTION_DAYS=365).

    Example:
        ```python
        # From environment variables
        settings = PimflowSettings()

        # From dictionary
        settings = PimflowSettings.from_dict({"audit_retention_days": 365})
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="PIMFLOW_",
        case_sensitive=False,
        extra="ignore",
    )

    # Workflow configuration
    workflow_config_file: str | None = Field(
        default=None,
        description="YAML or JSON file overriding the default workflow configuration",
    )

    # AuditTrailService configuration
    audit_retention_days: int = Field(
        default=730,
        ge=1,
        description="Days an audit entry is retained before it expires",
    )
    audit_max_entries: int = Field(
        default=1_000_000,
        ge=0,
        description="Maximum number of audit entries kept in the store (0 for unlimited)",
    )
    audit_archive_threshold: int = Field(
        default=100_000,
        ge=0,
        description="Entry count above which old entries are archived automatically (0 disables)",
    )
    audit_archive_after_days: int = Field(
        default=180,
        ge=1,
        description="Age in days of entries archived once the threshold is reached",
    )
    audit_integrity_checking: bool = Field(
        default=True,
        description="Compute an integrity digest for every audit entry",
    )
    audit_digest_algorithm: str = Field(
        default="legacy-base64",
        description="Digest used by AuditTrailService for entry integrity hashes",
    )
    audit_signing_key: SecretStr | None = Field(
        default=None,
        description="Key for the hmac-sha256 digest",
    )

    # ImmutableAuditTrailService configuration
    immutable_audit_enabled: bool = Field(
        default=True,
        description="Record workflow audit entries through the hash-chained trail",
    )
    immutable_hash_algorithm: str = Field(
        default="sha256",
        description="Digest used by the immutable trail",
    )
    immutable_chaining: bool = Field(
        default=True,
        description="Link each immutable entry to its predecessor",
    )
    immutable_read_only: bool = Field(
        default=False,
        description="Start the immutable trail in read-only mode",
    )
    verification_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Interval of the background integrity verification task",
    )
    background_verification: bool = Field(
        default=False,
        description="Start the background verification task with the engine",
    )

    # Observability configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON instead of console output",
    )

    @field_validator("audit_digest_algorithm", "immutable_hash_algorithm")
    @classmethod
    def _known_digest(cls, value: str) -> str:
        normalized = value.strip().lower().replace("_", "-")
        if normalized not in SUPPORTED_DIGESTS:
            raise ValueError(
                f"Unknown digest algorithm '{value}'. Supported: {', '.join(SUPPORTED_DIGESTS)}"
            )
        return normalized

    @property
    def signing_key(self) -> str | None:
        """Plain signing key, or None when not configured."""
        return self.audit_signing_key.get_secret_value() if self.audit_signing_key else None

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "PimflowSettings":
        """Create settings from a dictionary.

        Args:
            config: Dictionary with configuration values.

        Returns:
            PimflowSettings instance.
        """
        return cls(**config)
