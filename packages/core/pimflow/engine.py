"""WorkflowEngine - Main orchestrator for the product workflow."""

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from pimflow.domain.components.audit_trail_service import AuditTrailService
from pimflow.domain.components.bulk_operations import BulkOperationError, BulkOperationExecutor
from pimflow.domain.components.immutable_audit_trail import (
    ImmutabilityConfig,
    ImmutableAuditTrailService,
)
from pimflow.domain.components.permission_resolver import PermissionResolver
from pimflow.domain.components.quality_gate import QualityGate
from pimflow.domain.components.transition_conditions import TransitionConditions
from pimflow.domain.components.transition_rules import TransitionRuleTable
from pimflow.domain.components.validation_middleware import WorkflowValidationMiddleware
from pimflow.domain.components.workflow_state_manager import WorkflowStateManager
from pimflow.domain.interfaces.audit_store import AuditStore
from pimflow.domain.interfaces.observability_manager import ObservabilityManager
from pimflow.domain.models.audit_entry import AuditTrailEntry, FieldChange
from pimflow.domain.models.bulk import BulkOperationResult
from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.product import ProductWorkflow, WorkflowHistoryRecord
from pimflow.domain.models.transition import (
    AvailableTransition,
    StateTransitionRequest,
    TransitionResult,
    WorkflowProgress,
    WorkflowTransitionEvent,
)
from pimflow.domain.models.validation import WorkflowValidationContext
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.domain.models.workflow_config import WorkflowConfiguration
from pimflow.infrastructure.audit_store.memory_store import InMemoryAuditStore
from pimflow.infrastructure.config.file_loader import load_workflow_configuration
from pimflow.infrastructure.config.settings import PimflowSettings
from pimflow.infrastructure.observability.logger import DefaultObservabilityManager
from pimflow.infrastructure.utils.digest import get_digest

# Top-level product sections that content edits may touch.
EDITABLE_SECTIONS = frozenset(
    {"basic_info", "attributes_and_specs", "media", "marketing_seo", "pricing"}
)

READ_ONLY_MESSAGE = "Audit trail is in read-only mode. No new entries can be created."


class WorkflowOutcome(BaseModel):
    """Result of a WorkflowEngine operation.

    Denied operations carry their errors and leave the product unchanged.
    Every successful operation that changed something carries the single
    audit entry recorded for it.
    """

    success: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    product: ProductWorkflow | None = None
    audit_entry: AuditTrailEntry | None = None
    transition: TransitionResult | None = None
    bulk: BulkOperationResult | None = None

    @classmethod
    def denied(
        cls,
        errors: list[str],
        product: ProductWorkflow | None = None,
        warnings: list[str] | None = None,
    ) -> "WorkflowOutcome":
        return cls(success=False, errors=_unique(errors), warnings=warnings or [], product=product)


def _unique(messages: list[str]) -> list[str]:
    return list(dict.fromkeys(messages))


class WorkflowEngine:
    """Main entry point for library.

    WorkflowEngine wires the permission resolver, transition rules, quality
    gate, state manager, validation middleware and audit services from one
    set of settings, and exposes the workflow operations applications call.

    Example:
        ```python
        # Basic initialization
        engine = WorkflowEngine()

        # With custom AuditStore
        engine = WorkflowEngine(audit_store=MyAuditStore())

        # With configuration
        engine = WorkflowEngine(config={"immutable_hash_algorithm": "sha512"})

        # Async context manager, runs background verification when enabled
        async with WorkflowEngine() as engine:
            outcome = await engine.request_transition(
                actor_id="u1",
                actor_role=UserRole.Editor,
                actor_email="u1@example.com",
                product=product,
                action=WorkflowAction.Submit,
                assigned_reviewer_id="r1",
            )
        ```
    """

    def __init__(
        self,
        config: PimflowSettings | dict[str, Any] | None = None,
        audit_store: AuditStore | None = None,
        observability_manager: ObservabilityManager | None = None,
        workflow_config: WorkflowConfiguration | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize WorkflowEngine with dependencies.

        Args:
            config: Optional configuration. Can be:
                   - PimflowSettings instance
                   - Dictionary with configuration values
                   - None (loads from environment variables)
            audit_store: Optional AuditStore implementation. If not provided,
                       defaults to InMemoryAuditStore.
            observability_manager: Optional ObservabilityManager implementation.
                                 If not provided, defaults to DefaultObservabilityManager.
            workflow_config: Rules, grants and quality requirements. If not
                           provided, loaded from ``workflow_config_file`` or
                           the built-in defaults.
            clock: Returns the current time; defaults to UTC now.

        Raises:
            ValueError: If configuration is invalid.
            ConfigurationError: If the workflow configuration file is invalid.
        """
        if config is None:
            self._config = PimflowSettings()
        elif isinstance(config, dict):
            self._config = PimflowSettings.from_dict(config)
        elif isinstance(config, PimflowSettings):
            self._config = config
        else:
            raise ValueError(
                f"Invalid config type: {type(config)}. Expected PimflowSettings, dict, or None"
            )

        self._clock = clock or utc_now

        if observability_manager is None:
            self._observability_manager: ObservabilityManager = DefaultObservabilityManager(
                log_level=self._config.log_level,
                json_format=self._config.json_logs,
            )
        else:
            self._observability_manager = observability_manager

        self._workflow_config = workflow_config or load_workflow_configuration(
            self._config.workflow_config_file
        )

        self._rule_table = TransitionRuleTable(self._workflow_config.transition_rules)
        self._permission_resolver = PermissionResolver(
            role_permissions=self._workflow_config.role_permissions,
            action_permissions=self._workflow_config.action_permissions,
        )
        self._quality_gate = QualityGate(
            thresholds=self._workflow_config.quality_thresholds,
            required_fields=self._workflow_config.required_fields,
            gated_states=self._workflow_config.quality_gate_states,
        )
        self._state_manager = WorkflowStateManager(
            observability_manager=self._observability_manager,
            rule_table=self._rule_table,
            permission_resolver=self._permission_resolver,
            conditions=TransitionConditions(self._quality_gate),
            clock=self._clock,
        )
        self._middleware = WorkflowValidationMiddleware(
            state_manager=self._state_manager,
            permission_resolver=self._permission_resolver,
            quality_gate=self._quality_gate,
            observability_manager=self._observability_manager,
        )

        if audit_store is None:
            self._audit_store: AuditStore = InMemoryAuditStore(
                max_entries=self._config.audit_max_entries
            )
        else:
            self._audit_store = audit_store

        self._audit_service = AuditTrailService(
            audit_store=self._audit_store,
            observability_manager=self._observability_manager,
            digest=get_digest(self._config.audit_digest_algorithm, self._config.signing_key),
            retention_days=self._config.audit_retention_days,
            integrity_checking=self._config.audit_integrity_checking,
            archive_threshold=self._config.audit_archive_threshold,
            archive_after_days=self._config.audit_archive_after_days,
            clock=self._clock,
        )

        self._immutable_service: ImmutableAuditTrailService | None = None
        if self._config.immutable_audit_enabled:
            self._immutable_service = ImmutableAuditTrailService(
                audit_service=self._audit_service,
                observability_manager=self._observability_manager,
                config=ImmutabilityConfig(
                    hash_algorithm=self._config.immutable_hash_algorithm,
                    enable_chaining=self._config.immutable_chaining,
                    read_only=self._config.immutable_read_only,
                    verification_interval_seconds=self._config.verification_interval_seconds,
                    signing_key=self._config.signing_key,
                ),
                clock=self._clock,
            )

        self._bulk_executor = BulkOperationExecutor(
            state_manager=self._state_manager,
            permission_resolver=self._permission_resolver,
        )

    async def __aenter__(self) -> "WorkflowEngine":
        """Async context manager entry.

        Returns:
            Self for use in async with statement.
        """
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit.

        Args:
            exc_type: Exception type if any.
            exc_val: Exception value if any.
            exc_tb: Exception traceback if any.
        """
        await self.close()

    async def start(self) -> None:
        """Start background verification when it is enabled in the settings."""
        if self._immutable_service is not None and self._config.background_verification:
            await self._immutable_service.start_verification()

    async def close(self) -> None:
        """Stop background tasks."""
        if self._immutable_service is not None:
            await self._immutable_service.stop_verification()

    @property
    def config(self) -> PimflowSettings:
        return self._config

    @property
    def workflow_config(self) -> WorkflowConfiguration:
        return self._workflow_config

    @property
    def permission_resolver(self) -> PermissionResolver:
        return self._permission_resolver

    @property
    def quality_gate(self) -> QualityGate:
        return self._quality_gate

    @property
    def state_manager(self) -> WorkflowStateManager:
        return self._state_manager

    @property
    def middleware(self) -> WorkflowValidationMiddleware:
        return self._middleware

    @property
    def audit_store(self) -> AuditStore:
        return self._audit_store

    @property
    def audit_service(self) -> AuditTrailService:
        return self._audit_service

    @property
    def immutable_service(self) -> ImmutableAuditTrailService | None:
        return self._immutable_service

    @property
    def observability_manager(self) -> ObservabilityManager:
        return self._observability_manager

    def _read_only_errors(self) -> list[str]:
        if self._immutable_service is not None and self._immutable_service.read_only:
            return [READ_ONLY_MESSAGE]
        return []

    async def _record(self, entry: AuditTrailEntry) -> AuditTrailEntry:
        if self._immutable_service is not None:
            return await self._immutable_service.record(entry)
        return await self._audit_service.record(entry)

    async def _record_transition(
        self, event: WorkflowTransitionEvent, metadata: dict[str, Any] | None = None
    ) -> AuditTrailEntry:
        return await self._record(self._audit_service.build_state_transition_entry(event, metadata))

    async def _log_denied(
        self, operation: str, actor_id: str, errors: list[str], **context: Any
    ) -> None:
        await self._observability_manager.log(
            level="INFO",
            message=f"Workflow {operation} denied",
            context={"actor_id": actor_id, "errors": errors, **context},
        )

    async def create_product(
        self,
        product: ProductWorkflow,
        actor_id: str,
        actor_role: UserRole | str,
        actor_email: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowOutcome:
        """Register a new product in draft and record its creation.

        Args:
            product: The new product; its workflow bookkeeping is reset.
            actor_id: User creating the product.
            actor_role: Role of the user.
            actor_email: E-mail of the user.
            metadata: Extra context for the audit entry.

        Returns:
            WorkflowOutcome with the product and its product_created entry.
        """
        role = UserRole.parse(actor_role)
        if role is None:
            return WorkflowOutcome.denied([f"Invalid or missing user role: {actor_role}"])
        if not self._permission_resolver.has_permission(role, WorkflowAction.Create):
            errors = [f"Insufficient permissions: role {role.value} cannot perform create"]
            await self._log_denied("create", actor_id, errors, product_id=product.id)
            return WorkflowOutcome.denied(errors)
        if errors := self._read_only_errors():
            return WorkflowOutcome.denied(errors)

        now = self._clock()
        product.workflow_state = WorkflowState.Draft
        product.workflow_history = [
            WorkflowHistoryRecord(
                state=WorkflowState.Draft,
                timestamp=now,
                user_id=actor_id,
                comment="Product created",
            )
        ]
        product.created_at = now
        product.updated_at = now

        entry = await self._record(
            self._audit_service.build_product_created_entry(
                product, actor_id, role, actor_email, metadata
            )
        )
        return WorkflowOutcome(success=True, product=product, audit_entry=entry)

    async def update_product(
        self,
        product: ProductWorkflow,
        updates: Mapping[str, Any],
        actor_id: str,
        actor_role: UserRole | str,
        actor_email: str = "",
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowOutcome:
        """Apply content edits to a draft or rejected product.

        Editing a rejected product moves it back to draft through the
        automatic rejected -> draft rule, recorded as one state_transition
        entry carrying the field changes. Editing a draft records one
        product_updated entry.

        Args:
            product: Product to edit.
            updates: New values keyed by dotted field path, e.g.
                    ``{"basic_info.brand": "Acme"}``.
            actor_id: User editing the product.
            actor_role: Role of the user.
            actor_email: E-mail of the user.
            reason: Optional reason for the edit.
            metadata: Extra context for the audit entry.

        Returns:
            WorkflowOutcome with the updated product or the errors.
        """
        role = UserRole.parse(actor_role)
        if role is None:
            return WorkflowOutcome.denied([f"Invalid or missing user role: {actor_role}"], product)
        if not self._permission_resolver.has_permission(role, WorkflowAction.Edit):
            errors = [f"Insufficient permissions: role {role.value} cannot perform edit"]
            await self._log_denied("update", actor_id, errors, product_id=product.id)
            return WorkflowOutcome.denied(errors, product)
        if errors := self._read_only_errors():
            return WorkflowOutcome.denied(errors, product)

        state = product.workflow_state
        if state not in (WorkflowState.Draft, WorkflowState.Rejected):
            return WorkflowOutcome.denied(
                [
                    f"Product in state {state.value} cannot be edited; "
                    "only draft and rejected products are editable"
                ],
                product,
            )

        try:
            edited, field_changes = self._apply_updates(product, updates)
        except ValueError as e:
            return WorkflowOutcome.denied([str(e)], product)

        request = StateTransitionRequest(
            product_id=product.id,
            from_state=state,
            to_state=WorkflowState.Draft,
            user_id=actor_id,
            user_role=role,
            user_email=actor_email,
            reason=reason,
            field_changes=field_changes,
            metadata=dict(metadata or {}),
        )

        if state == WorkflowState.Rejected:
            result = await self._state_manager.execute_state_transition(request, product)
            if not result.success or result.event is None:
                return WorkflowOutcome.denied(result.errors, product, result.warnings)
            self._copy_sections(edited, product)
            entry = await self._record_transition(result.event)
            return WorkflowOutcome(
                success=True,
                warnings=result.warnings,
                product=product,
                audit_entry=entry,
                transition=result,
            )

        validation = self._state_manager.validate_state_transition(request, product)
        if validation.is_valid and not self._state_manager.can_perform_action(
            WorkflowAction.Edit, state, role
        ):
            validation.add_error(f"Role {role.value} cannot edit a product in state {state.value}")
        if not validation.is_valid:
            await self._log_denied("update", actor_id, validation.errors, product_id=product.id)
            return WorkflowOutcome.denied(validation.errors, product, validation.warnings)

        self._copy_sections(edited, product)
        product.updated_at = self._clock()
        entry = await self._record(
            self._audit_service.build_product_updated_entry(
                product, field_changes, actor_id, role, actor_email, reason, metadata
            )
        )
        return WorkflowOutcome(
            success=True, warnings=validation.warnings, product=product, audit_entry=entry
        )

    def _apply_updates(
        self, product: ProductWorkflow, updates: Mapping[str, Any]
    ) -> tuple[ProductWorkflow, list[FieldChange]]:
        """Validate ``updates`` against a copy of the product.

        Raises:
            ValueError: If a path is not editable or a value is invalid.
        """
        data = product.model_dump()
        changes: list[FieldChange] = []
        for path, value in updates.items():
            segments = path.split(".")
            if segments[0] not in EDITABLE_SECTIONS or len(segments) < 2:
                raise ValueError(f"Field {path} cannot be edited directly")
            old_value = product.get_field(path)
            if isinstance(old_value, BaseModel):
                old_value = old_value.model_dump()
            elif isinstance(old_value, list):
                old_value = [v.model_dump() if isinstance(v, BaseModel) else v for v in old_value]

            target = data
            for segment in segments[:-1]:
                if not isinstance(target.get(segment), dict):
                    raise ValueError(f"Unknown field {path}")
                target = target[segment]
            if segments[-1] not in target:
                raise ValueError(f"Unknown field {path}")
            target[segments[-1]] = value
            if old_value != value:
                changes.append(FieldChange(field=path, old_value=old_value, new_value=value))

        try:
            edited = ProductWorkflow.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid product update: {e.error_count()} validation error(s)") from e
        return edited, changes

    @staticmethod
    def _copy_sections(source: ProductWorkflow, product: ProductWorkflow) -> None:
        for section in EDITABLE_SECTIONS:
            setattr(product, section, getattr(source, section))

    async def assign_reviewer(
        self,
        product: ProductWorkflow,
        reviewer_id: str | None,
        actor_id: str,
        actor_role: UserRole | str,
        actor_email: str = "",
        reason: str | None = None,
    ) -> WorkflowOutcome:
        """Assign or clear the product's reviewer.

        Editors may assign a reviewer to a draft or rejected product as part
        of preparing it for review; other states need the assign permission.
        """
        role = UserRole.parse(actor_role)
        if role is None:
            return WorkflowOutcome.denied([f"Invalid or missing user role: {actor_role}"], product)

        if product.workflow_state in (WorkflowState.Draft, WorkflowState.Rejected):
            required = WorkflowAction.Edit
        else:
            required = WorkflowAction.AssignReviewer
        if not self._permission_resolver.has_permission(role, required):
            errors = [f"Insufficient permissions: role {role.value} cannot assign a reviewer"]
            await self._log_denied("assign_reviewer", actor_id, errors, product_id=product.id)
            return WorkflowOutcome.denied(errors, product)
        if errors := self._read_only_errors():
            return WorkflowOutcome.denied(errors, product)

        previous = product.assigned_reviewer_id
        if previous == reviewer_id:
            return WorkflowOutcome.denied([f"Reviewer {reviewer_id} is already assigned"], product)

        product.assigned_reviewer_id = reviewer_id
        product.updated_at = self._clock()
        entry = await self._record(
            self._audit_service.build_reviewer_assignment_entry(
                product, reviewer_id, previous, actor_id, role, actor_email, reason
            )
        )
        return WorkflowOutcome(success=True, product=product, audit_entry=entry)

    async def request_transition(
        self,
        actor_id: str | None,
        actor_role: UserRole | str | None,
        actor_email: str | None,
        product: ProductWorkflow,
        action: WorkflowAction,
        reason: str | None = None,
        comment: str | None = None,
        assigned_reviewer_id: str | None = None,
        field_changes: Sequence[FieldChange] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowOutcome:
        """Validate and perform a workflow action on a product.

        The request passes the validation middleware, is applied by the state
        manager and, when successful, is recorded as one state_transition
        entry. Denied requests leave the product unchanged and record nothing.

        Args:
            actor_id: User requesting the action.
            actor_role: Role of the user.
            actor_email: E-mail of the user.
            product: Product to transition; mutated on success.
            action: Workflow action, e.g. submit, approve or reject.
            reason: Reason for the action; required for reject and unpublish.
            comment: Free-text comment.
            assigned_reviewer_id: Reviewer to assign on submit or reopen.
            field_changes: Content changes made together with the action.
            metadata: Extra context, e.g. ip_address or request_id.

        Returns:
            WorkflowOutcome with the transition result and audit entry.
        """
        current = product.workflow_state
        target = self._state_manager.target_state_for(action, current)

        context = WorkflowValidationContext(
            user_id=actor_id,
            user_role=actor_role.value if isinstance(actor_role, UserRole) else actor_role,
            user_email=actor_email,
            product_id=product.id,
            action=action,
            current_state=current,
            target_state=target,
            product=product,
        )
        validation = await self._middleware.validate(context)
        errors = list(validation.errors)
        if validation.is_valid and target is None:
            errors.append(
                f"Action {action.value} is not available for a product in state {current.value}"
            )
        if errors:
            await self._log_denied(
                "transition", actor_id or "", errors, product_id=product.id, action=action.value
            )
            return WorkflowOutcome.denied(errors, product, validation.warnings)
        if errors := self._read_only_errors():
            return WorkflowOutcome.denied(errors, product)

        role = UserRole.parse(actor_role)
        if role is None or target is None or actor_id is None:
            return WorkflowOutcome.denied([f"Invalid or missing user role: {actor_role}"], product)

        request = StateTransitionRequest(
            product_id=product.id,
            from_state=current,
            to_state=target,
            user_id=actor_id,
            user_role=role,
            user_email=actor_email or "",
            reason=reason,
            comment=comment,
            assigned_reviewer_id=assigned_reviewer_id,
            field_changes=list(field_changes or []),
            metadata=dict(metadata or {}),
        )
        result = await self._state_manager.execute_state_transition(request, product)
        warnings = _unique([*validation.warnings, *result.warnings])
        if not result.success or result.event is None:
            return WorkflowOutcome.denied(result.errors, product, warnings)

        entry = await self._record_transition(result.event)
        return WorkflowOutcome(
            success=True,
            warnings=warnings,
            product=product,
            audit_entry=entry,
            transition=result,
        )

    async def run_bulk_operation(
        self,
        action: WorkflowAction,
        products: Sequence[ProductWorkflow],
        actor_id: str,
        actor_role: UserRole | str,
        actor_email: str = "",
        reason: str | None = None,
        comment: str | None = None,
        dry_run: bool = False,
    ) -> WorkflowOutcome:
        """Apply one action to many products and record one bulk_operation entry.

        Dry runs validate every product and record nothing.
        """
        role = UserRole.parse(actor_role)
        if role is None:
            return WorkflowOutcome.denied([f"Invalid or missing user role: {actor_role}"])
        if not dry_run and (errors := self._read_only_errors()):
            return WorkflowOutcome.denied(errors)

        try:
            result = await self._bulk_executor.execute(
                action,
                products,
                actor_id=actor_id,
                actor_role=role,
                actor_email=actor_email,
                reason=reason,
                comment=comment,
                dry_run=dry_run,
            )
        except BulkOperationError as e:
            return WorkflowOutcome.denied([str(e)])

        entry = None
        if not dry_run and result.successful:
            entry = await self._record(
                self._audit_service.build_bulk_operation_entry(
                    result, actor_id, role, actor_email, reason
                )
            )
        return WorkflowOutcome(
            success=result.failed == 0,
            errors=result.errors,
            audit_entry=entry,
            bulk=result,
        )

    async def archive_and_cleanup(self, archive_after_days: int | None = None) -> dict[str, int]:
        """Archive old audit entries and purge expired ones.

        Returns:
            Counts of archived and purged entries.
        """
        days = (
            self._config.audit_archive_after_days
            if archive_after_days is None
            else archive_after_days
        )
        archived = await self._audit_service.archive_old_entries(days)
        purged = await self._audit_service.cleanup_expired_entries()
        return {"archived": archived, "purged": purged}

    def get_available_transitions(
        self, product: ProductWorkflow, actor_role: UserRole | str
    ) -> list[AvailableTransition]:
        role = UserRole.parse(actor_role)
        if role is None:
            return []
        return self._state_manager.get_available_transitions(product.workflow_state, role)

    def get_workflow_progress(self, product: ProductWorkflow) -> WorkflowProgress:
        return self._state_manager.get_workflow_progress(product)

    async def get_product_audit_trail(self, product_id: str) -> list[AuditTrailEntry]:
        return await self._audit_service.get_product_audit_trail(product_id)
