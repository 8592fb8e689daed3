"""Integrity verification and tamper detection models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from pimflow.domain.models.audit_entry import AuditPriority
from pimflow.domain.models.clock import utc_now


class TamperType(str, Enum):
    """Kind of tampering detected on an entry."""

    HashMismatch = "hash_mismatch"
    """Recomputed digest differs from the digest taken at creation."""

    TimestampAnomaly = "timestamp_anomaly"
    """Entry claims to have been created in the future."""

    ChainBroken = "chain_broken"
    """Chain hash does not link the entry to its predecessor."""

    NoTampering = "none"
    """No tampering detected."""


class AlertLevel(str, Enum):
    """Operator-facing alert level derived from tamper severity."""

    Info = "info"
    Warning = "warning"
    Error = "error"
    Critical = "critical"


class EntryVerificationResult(BaseModel):
    """Outcome of verifying one immutable entry."""

    entry_id: str
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    verified_at: datetime = Field(default_factory=utc_now)
    integrity_hash: str | None = None
    chain_hash: str | None = None


class TamperDetectionResult(BaseModel):
    """Classification of tampering found on an entry."""

    entry_id: str
    is_tampered: bool
    tamper_type: TamperType = TamperType.NoTampering
    severity: AuditPriority = AuditPriority.Low
    alert_level: AlertLevel = AlertLevel.Info
    detected_at: datetime = Field(default_factory=utc_now)
    suspicious_changes: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class IntegritySummary(BaseModel):
    """Aggregate outcome of verifying every immutable entry."""

    total_entries: int = 0
    valid_entries: int = 0
    invalid_entries: int = 0
    tampered_entries: list[str] = Field(default_factory=list)
    chain_intact: bool = True
    verified_at: datetime = Field(default_factory=utc_now)
    results: list[EntryVerificationResult] = Field(default_factory=list)


class ImmutabilityLogRecord(BaseModel):
    """Internal log of operations performed by the immutable audit trail."""

    operation: str
    entry_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    success: bool = True
    details: dict[str, Any] = Field(default_factory=dict)


class ImmutabilityReport(BaseModel):
    """Export of the immutable trail's verification status."""

    generated_at: datetime = Field(default_factory=utc_now)
    status: str = Field(..., description="valid, partial or invalid")
    hash_algorithm: str
    chaining_enabled: bool
    read_only_mode: bool
    summary: IntegritySummary
    tamper_alerts: list[TamperDetectionResult] = Field(default_factory=list)
    recent_logs: list[ImmutabilityLogRecord] = Field(default_factory=list)
