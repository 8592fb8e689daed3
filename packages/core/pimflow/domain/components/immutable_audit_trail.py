"""ImmutableAuditTrailService: hash-chained, verifiable audit trail."""

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from pimflow.domain.components.audit_trail_service import AuditTrailService
from pimflow.domain.interfaces.audit_store import AuditQuery
from pimflow.domain.interfaces.observability_manager import (
    AUDIT_TAMPER_DETECTED,
    ObservabilityManager,
)
from pimflow.domain.models.audit_entry import (
    AuditAction,
    AuditPriority,
    AuditTrailEntry,
    FieldChange,
)
from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.tamper import (
    AlertLevel,
    EntryVerificationResult,
    ImmutabilityLogRecord,
    ImmutabilityReport,
    IntegritySummary,
    TamperDetectionResult,
    TamperType,
)
from pimflow.domain.models.transition import WorkflowTransitionEvent
from pimflow.domain.models.workflow import UserRole, WorkflowState
from pimflow.infrastructure.utils.digest import DigestAlgorithm, canonical_json, get_digest

logger = structlog.get_logger(__name__)

GENESIS_CHAIN_HASH = "genesis"
MAX_LOG_RECORDS = 10_000

# Fields that archiving legitimately changes, plus the chain link itself.
_UNSEALED_FIELDS = {"chain_hash", "archived", "archived_at"}

_ALERT_LEVELS = {
    AuditPriority.Low: AlertLevel.Info,
    AuditPriority.Medium: AlertLevel.Warning,
    AuditPriority.High: AlertLevel.Error,
    AuditPriority.Critical: AlertLevel.Critical,
}


class AuditTrailReadOnlyError(Exception):
    """Raised when an entry is written while the trail is read-only."""

    pass


class AuditEntryNotFoundError(Exception):
    """Raised when verifying an entry that does not exist."""

    pass


class ImmutabilityConfig(BaseModel):
    """Configuration of the immutable audit trail."""

    hash_algorithm: str = Field(default="sha256", description="Digest for full-entry hashes")
    enable_chaining: bool = Field(default=True, description="Link each entry to its predecessor")
    enable_timestamp_verification: bool = Field(default=True)
    enable_tamper_detection: bool = Field(default=True)
    enable_audit_logging: bool = Field(default=True, description="Keep an operation log")
    read_only: bool = Field(default=False, description="Start in read-only mode")
    verification_interval_seconds: float = Field(default=60.0, gt=0)
    min_entry_spacing_seconds: float = Field(
        default=0.001,
        ge=0,
        description="Entries closer than this to their predecessor get a warning",
    )
    signing_key: str | None = Field(default=None, description="Key for hmac-sha256")


class _EntryFindings(BaseModel):
    """Raw outcome of the individual integrity checks on one entry."""

    hash_error: str | None = None
    timestamp_error: str | None = None
    chain_errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        errors = [e for e in (self.hash_error, self.timestamp_error) if e]
        return errors + self.chain_errors


class ImmutableAuditTrailService:
    """Seals audit entries with full-entry digests and a single hash chain.

    Every entry written through this service gets a digest over all of its
    content and a chain hash ``H(previous_chain : digest : id)``. The digests
    and chain hashes are also kept in trusted maps held by the service, so a
    modified entry in the store no longer matches what was sealed.

    Verification can run on demand or periodically in a background task
    started with start_verification() and cancelled with stop_verification().
    """

    def __init__(
        self,
        audit_service: AuditTrailService,
        observability_manager: ObservabilityManager,
        config: ImmutabilityConfig | None = None,
        digest: DigestAlgorithm | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize ImmutableAuditTrailService.

        Args:
            audit_service: Service that builds and stores entries.
            observability_manager: ObservabilityManager for events and logging.
            config: Immutability configuration.
            digest: Digest algorithm; defaults to ``config.hash_algorithm``.
            clock: Returns the current time; defaults to UTC now.
        """
        self._audit = audit_service
        self._observability = observability_manager
        self._config = config or ImmutabilityConfig()
        self._digest = digest or get_digest(self._config.hash_algorithm, self._config.signing_key)
        self._clock = clock or utc_now
        self._read_only = self._config.read_only

        self._integrity_hashes: dict[str, str] = {}
        self._chain_hashes: dict[str, str] = {}
        self._predecessors: dict[str, str | None] = {}
        self._last_entry_id: str | None = None
        self._known_removed = 0
        self._write_lock = asyncio.Lock()

        self._tamper_alerts: dict[str, TamperDetectionResult] = {}
        self._logs: list[ImmutabilityLogRecord] = []
        self._verification_task: asyncio.Task[None] | None = None

        if self._digest.weak:
            logger.warning("weak_immutable_digest", algorithm=self._digest.name)

    @property
    def audit_service(self) -> AuditTrailService:
        return self._audit

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def is_verifying(self) -> bool:
        """True while the background verification task is running."""
        return self._verification_task is not None and not self._verification_task.done()

    def compute_entry_digest(self, entry: AuditTrailEntry) -> str:
        """Digest over every sealed field of ``entry``."""
        return self._digest.digest(
            canonical_json(entry.model_dump(mode="json", exclude=_UNSEALED_FIELDS))
        )

    def compute_chain_hash(self, previous_chain_hash: str, integrity_hash: str, entry_id: str) -> str:
        return self._digest.digest(f"{previous_chain_hash}:{integrity_hash}:{entry_id}")

    async def record(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        """Seal a built entry and store it.

        Raises:
            AuditTrailReadOnlyError: If the trail is read-only.
        """
        if self._read_only:
            raise AuditTrailReadOnlyError(
                "Audit trail is in read-only mode. No new entries can be created."
            )

        async with self._write_lock:
            integrity_hash = self.compute_entry_digest(entry)
            previous_id = self._last_entry_id if self._config.enable_chaining else None
            if self._config.enable_chaining:
                previous_chain = (
                    self._chain_hashes[previous_id] if previous_id else GENESIS_CHAIN_HASH
                )
                entry = entry.model_copy(
                    update={
                        "chain_hash": self.compute_chain_hash(
                            previous_chain, integrity_hash, entry.id
                        )
                    }
                )

            stored = await self._audit.record(entry)

            self._integrity_hashes[stored.id] = integrity_hash
            self._predecessors[stored.id] = previous_id
            if stored.chain_hash is not None:
                self._chain_hashes[stored.id] = stored.chain_hash
            self._last_entry_id = stored.id
            self._forget_removed_entries()

        self._log_operation(
            "create_entry",
            stored.id,
            details={"action": stored.action.value, "chained": stored.chain_hash is not None},
        )
        return stored

    async def create_immutable_entry(
        self,
        actor_id: str,
        actor_role: UserRole,
        action: AuditAction,
        actor_email: str = "",
        subject_id: str | None = None,
        field_changes: list[FieldChange] | None = None,
        reason: str | None = None,
        comment: str | None = None,
        workflow_state: WorkflowState | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        """Create, seal and store an audit entry.

        Raises:
            AuditTrailReadOnlyError: If the trail is read-only.
        """
        if self._read_only:
            self._log_operation("create_entry", None, success=False, details={"read_only": True})
            raise AuditTrailReadOnlyError(
                "Audit trail is in read-only mode. No new entries can be created."
            )
        entry = self._audit.build_audit_entry(
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            actor_email=actor_email,
            subject_id=subject_id,
            field_changes=field_changes,
            reason=reason,
            comment=comment,
            workflow_state=workflow_state,
            metadata=metadata,
        )
        return await self.record(entry)

    async def record_transition(
        self,
        event: WorkflowTransitionEvent,
        metadata: dict[str, Any] | None = None,
    ) -> AuditTrailEntry:
        """Seal and store the audit entry for a transition event."""
        return await self.record(self._audit.build_state_transition_entry(event, metadata))

    async def _inspect(self, entry: AuditTrailEntry) -> _EntryFindings:
        findings = _EntryFindings()

        trusted_hash = self._integrity_hashes.get(entry.id)
        if trusted_hash is None:
            findings.hash_error = "Integrity digest not found for entry"
        elif self.compute_entry_digest(entry) != trusted_hash:
            findings.hash_error = "Integrity hash mismatch - entry may have been tampered with"

        if self._config.enable_timestamp_verification and entry.timestamp > self._clock():
            findings.timestamp_error = "Entry timestamp is in the future"

        if not self._config.enable_chaining or entry.id not in self._predecessors:
            return findings

        trusted_chain = self._chain_hashes.get(entry.id)
        if trusted_chain is None or entry.chain_hash != trusted_chain:
            findings.chain_errors.append(
                "Chain integrity violation: stored chain hash does not match the sealed chain"
            )

        previous_id = self._predecessors[entry.id]
        if previous_id is None:
            return findings

        previous = await self._audit.store.get(previous_id)
        if previous is None:
            if not self._audit.was_removed(previous_id):
                findings.chain_errors.append(
                    f"Chain integrity violation: previous entry {previous_id} is missing"
                )
            return findings

        if previous.chain_hash != self._chain_hashes.get(previous_id):
            findings.chain_errors.append(
                f"Chain integrity violation: previous entry {previous_id} chain hash was altered"
            )

        gap = (entry.timestamp - previous.timestamp).total_seconds()
        if self._config.enable_timestamp_verification and gap < self._config.min_entry_spacing_seconds:
            findings.warnings.append(
                f"Suspicious timestamp: entry created {gap:.6f}s after previous entry"
            )

        return findings

    def _forget_removed_entries(self) -> None:
        """Drop sealed state of entries the store purged or evicted.

        The chain hash of a removed entry is kept while a surviving entry or
        the next write still links to it.
        """
        if self._audit.removed_count == self._known_removed:
            return
        self._known_removed = self._audit.removed_count

        removed = [e for e in self._integrity_hashes if self._audit.was_removed(e)]
        for entry_id in removed:
            del self._integrity_hashes[entry_id]
            self._predecessors.pop(entry_id, None)

        linked = {previous for previous in self._predecessors.values() if previous is not None}
        if self._last_entry_id is not None:
            linked.add(self._last_entry_id)
        unlinked = [
            e for e in self._chain_hashes if e not in linked and self._audit.was_removed(e)
        ]
        for entry_id in unlinked:
            del self._chain_hashes[entry_id]

    async def _load(self, entry_id: str) -> AuditTrailEntry:
        entry = await self._audit.store.get(entry_id)
        if entry is None:
            raise AuditEntryNotFoundError(f"Audit entry not found: {entry_id}")
        return entry

    async def verify_entry_integrity(self, entry_id: str) -> EntryVerificationResult:
        """Verify one entry against its sealed digest and chain.

        Raises:
            AuditEntryNotFoundError: If no entry has ``entry_id``.
        """
        self._forget_removed_entries()
        entry = await self._load(entry_id)
        findings = await self._inspect(entry)
        result = EntryVerificationResult(
            entry_id=entry.id,
            is_valid=not findings.errors,
            errors=findings.errors,
            warnings=findings.warnings,
            verified_at=self._clock(),
            integrity_hash=self._integrity_hashes.get(entry.id),
            chain_hash=entry.chain_hash,
        )
        self._log_operation(
            "verify_entry", entry.id, success=result.is_valid, details={"errors": result.errors}
        )
        return result

    async def verify_all_entries_integrity(self) -> IntegritySummary:
        """Verify every stored entry, in creation order."""
        self._forget_removed_entries()
        summary = IntegritySummary(verified_at=self._clock())
        for entry in await self._audit.store.query(AuditQuery()):
            findings = await self._inspect(entry)
            result = EntryVerificationResult(
                entry_id=entry.id,
                is_valid=not findings.errors,
                errors=findings.errors,
                warnings=findings.warnings,
                verified_at=summary.verified_at,
                integrity_hash=self._integrity_hashes.get(entry.id),
                chain_hash=entry.chain_hash,
            )
            summary.results.append(result)
            summary.total_entries += 1
            if result.is_valid:
                summary.valid_entries += 1
            else:
                summary.invalid_entries += 1
                summary.tampered_entries.append(entry.id)
            if findings.chain_errors:
                summary.chain_intact = False

        self._log_operation(
            "verify_all",
            None,
            success=summary.invalid_entries == 0,
            details={"total": summary.total_entries, "invalid": summary.invalid_entries},
        )
        return summary

    async def detect_tampering(self, entry: AuditTrailEntry) -> TamperDetectionResult:
        """Classify tampering on ``entry``.

        A digest mismatch outranks a timestamp anomaly, which outranks a
        broken chain. Tampered entries are added to the tamper alerts.
        """
        findings = await self._inspect(entry)
        now = self._clock()

        if findings.hash_error:
            result = TamperDetectionResult(
                entry_id=entry.id,
                is_tampered=True,
                tamper_type=TamperType.HashMismatch,
                severity=AuditPriority.Critical,
                detected_at=now,
                suspicious_changes=[findings.hash_error],
                recommendations=[
                    "Investigate the audit store for unauthorized modifications",
                    "Restore the entry from a trusted backup",
                    "Review access logs for the audit store",
                ],
            )
        elif findings.timestamp_error:
            result = TamperDetectionResult(
                entry_id=entry.id,
                is_tampered=True,
                tamper_type=TamperType.TimestampAnomaly,
                severity=AuditPriority.High,
                detected_at=now,
                suspicious_changes=[findings.timestamp_error],
                recommendations=[
                    "Check clock synchronization on the writing host",
                    "Verify the entry against the surrounding entries",
                ],
            )
        elif findings.chain_errors:
            result = TamperDetectionResult(
                entry_id=entry.id,
                is_tampered=True,
                tamper_type=TamperType.ChainBroken,
                severity=AuditPriority.High,
                detected_at=now,
                suspicious_changes=list(findings.chain_errors),
                recommendations=[
                    "Check for deleted or reordered audit entries",
                    "Verify the chain from the last known good entry",
                ],
            )
        else:
            result = TamperDetectionResult(entry_id=entry.id, is_tampered=False, detected_at=now)

        result.alert_level = _ALERT_LEVELS[result.severity]

        if result.is_tampered and self._config.enable_tamper_detection:
            self._tamper_alerts[entry.id] = result
            self._log_operation(
                "tamper_detected",
                entry.id,
                success=False,
                details={"tamper_type": result.tamper_type.value},
            )
            try:
                await self._observability.emit_event(
                    event_type=AUDIT_TAMPER_DETECTED,
                    payload={
                        "entry_id": entry.id,
                        "tamper_type": result.tamper_type.value,
                        "severity": result.severity.value,
                    },
                    metadata={"detected_at": now.isoformat()},
                )
            except Exception as e:
                await self._observability.log(
                    level="WARNING",
                    message=f"Failed to emit audit_tamper_detected event: {e}",
                    context={"entry_id": entry.id},
                )
        return result

    def enable_read_only_mode(self) -> None:
        """Reject every further write."""
        self._read_only = True
        self._log_operation("enable_read_only", None)

    def disable_read_only_mode(self) -> None:
        self._read_only = False
        self._log_operation("disable_read_only", None)

    def get_tamper_alerts(self) -> list[TamperDetectionResult]:
        """Latest alert per tampered entry, most severe first."""
        return sorted(
            self._tamper_alerts.values(), key=lambda alert: alert.severity.rank, reverse=True
        )

    def clear_tamper_alerts(self) -> None:
        self._tamper_alerts.clear()
        self._log_operation("clear_tamper_alerts", None)

    def get_immutability_logs(self, limit: int | None = None) -> list[ImmutabilityLogRecord]:
        """Recorded operations, oldest first; the last ``limit`` when given."""
        if limit is None:
            return list(self._logs)
        return self._logs[-limit:] if limit > 0 else []

    async def export_immutability_report(self) -> ImmutabilityReport:
        """Verify the whole trail and report its status.

        Status is ``valid`` when every entry verifies, ``invalid`` when none
        does and ``partial`` otherwise.
        """
        summary = await self.verify_all_entries_integrity()
        if summary.invalid_entries == 0:
            status = "valid"
        elif summary.valid_entries == 0:
            status = "invalid"
        else:
            status = "partial"

        return ImmutabilityReport(
            generated_at=self._clock(),
            status=status,
            hash_algorithm=self._digest.name,
            chaining_enabled=self._config.enable_chaining,
            read_only_mode=self._read_only,
            summary=summary,
            tamper_alerts=self.get_tamper_alerts(),
            recent_logs=self.get_immutability_logs(limit=100),
        )

    async def run_verification_pass(self) -> IntegritySummary:
        """Verify every entry and raise tamper alerts for the invalid ones."""
        summary = await self.verify_all_entries_integrity()
        for entry_id in summary.tampered_entries:
            entry = await self._audit.store.get(entry_id)
            if entry is not None:
                await self.detect_tampering(entry)
        if summary.invalid_entries:
            await self._observability.log(
                level="ERROR",
                message="Audit trail verification found invalid entries",
                context={
                    "invalid": summary.invalid_entries,
                    "tampered_entries": summary.tampered_entries,
                },
            )
        return summary

    async def start_verification(self) -> None:
        """Start periodic verification in a background task."""
        if self.is_verifying:
            return
        self._verification_task = asyncio.create_task(self._verification_loop())
        self._log_operation(
            "start_verification",
            None,
            details={"interval_seconds": self._config.verification_interval_seconds},
        )

    async def stop_verification(self) -> None:
        """Cancel the background verification task and wait for it to finish."""
        if self._verification_task and not self._verification_task.done():
            self._verification_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._verification_task
        self._verification_task = None
        self._log_operation("stop_verification", None)

    async def _verification_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._config.verification_interval_seconds)
                await self.run_verification_pass()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in audit verification loop", error=str(e))

    def _log_operation(
        self,
        operation: str,
        entry_id: str | None,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> None:
        if not self._config.enable_audit_logging:
            return
        self._logs.append(
            ImmutabilityLogRecord(
                operation=operation,
                entry_id=entry_id,
                timestamp=self._clock(),
                success=success,
                details=details or {},
            )
        )
        if len(self._logs) > MAX_LOG_RECORDS:
            del self._logs[: len(self._logs) - MAX_LOG_RECORDS]
