"""WorkflowValidationMiddleware: the gate every transition request passes."""

import structlog

from pimflow.domain.components.permission_resolver import PermissionResolver
from pimflow.domain.components.quality_gate import QualityGate
from pimflow.domain.components.workflow_state_manager import WorkflowStateManager
from pimflow.domain.interfaces.observability_manager import ObservabilityManager
from pimflow.domain.models.transition import WorkflowValidationResult
from pimflow.domain.models.validation import ValidationResult, WorkflowValidationContext
from pimflow.domain.models.workflow import UserRole

logger = structlog.get_logger(__name__)


class WorkflowValidationMiddleware:
    """Runs the ordered validation pipeline for a workflow request.

    Pipeline:
        1. Authentication: user id and e-mail present (optional).
        2. Role: a known UserRole.
        3. Permission: the role may perform the requested action.
        4. Ownership: the actor submitted the product, admins exempt (optional).
        5. Transition legality from the current to the target state.
        6. Structural validation of the product record.
        7. Quality gate for the target state.

    Steps 1-4 stop the pipeline on the first failure. Steps 5-7 all run and
    their errors and warnings are accumulated. validate() never raises: an
    unexpected exception becomes a single error.
    """

    def __init__(
        self,
        state_manager: WorkflowStateManager,
        permission_resolver: PermissionResolver | None = None,
        quality_gate: QualityGate | None = None,
        observability_manager: ObservabilityManager | None = None,
        require_authentication: bool = True,
        require_product_ownership: bool = False,
        log_validation: bool = False,
    ) -> None:
        """Initialize WorkflowValidationMiddleware.

        Args:
            state_manager: Decides transition legality and product consistency.
            permission_resolver: Resolves action permissions.
            quality_gate: Evaluates required fields and quality thresholds.
            observability_manager: Receives validation logs when log_validation is set.
            require_authentication: Require user id and e-mail on the context.
            require_product_ownership: Require the actor to be the submitter.
            log_validation: Log every validation outcome.
        """
        self._state_manager = state_manager
        self._permissions = permission_resolver or PermissionResolver()
        self._quality_gate = quality_gate or QualityGate()
        self._observability = observability_manager
        self._require_authentication = require_authentication
        self._require_product_ownership = require_product_ownership
        self._log_validation = log_validation

    async def validate(self, context: WorkflowValidationContext) -> ValidationResult:
        """Validate a workflow request.

        Args:
            context: The request to validate.

        Returns:
            ValidationResult with the accumulated errors and warnings.
        """
        try:
            result = self._run_pipeline(context)
        except Exception as e:
            result = WorkflowValidationResult()
            result.add_error(f"Validation middleware error: {e}")

        outcome = ValidationResult(
            is_valid=result.is_valid,
            errors=result.errors,
            warnings=result.warnings,
            context=context,
        )

        if self._log_validation and self._observability is not None:
            try:
                await self._observability.log(
                    level="INFO" if outcome.is_valid else "WARNING",
                    message="Workflow validation completed",
                    context={
                        "user_id": context.user_id,
                        "user_role": context.user_role,
                        "product_id": context.product_id,
                        "action": context.action.value if context.action else None,
                        "is_valid": outcome.is_valid,
                        "errors": outcome.errors,
                        "warnings": outcome.warnings,
                    },
                )
            except Exception as e:
                logger.warning("validation_log_failed", error=str(e))

        return outcome

    def _run_pipeline(self, context: WorkflowValidationContext) -> WorkflowValidationResult:
        result = WorkflowValidationResult()

        if self._require_authentication and (not context.user_id or not context.user_email):
            result.add_error("Authentication required: user id and e-mail must be provided")
            return result

        role = UserRole.parse(context.user_role)
        if role is None:
            result.add_error(f"Invalid or missing user role: {context.user_role}")
            return result

        if context.action is not None and not self._permissions.has_permission(
            role, context.action
        ):
            result.add_error(
                f"Insufficient permissions: role {role.value} cannot perform {context.action.value}"
            )
            return result

        product = context.product
        if (
            self._require_product_ownership
            and product is not None
            and role != UserRole.Admin
            and product.submitted_by != context.user_id
        ):
            result.add_error("Only the product owner or an admin can perform this action")
            return result

        if context.current_state is not None and context.target_state is not None:
            action = self._state_manager.action_for_transition(
                context.current_state, context.target_state
            )
            if not self._state_manager.can_perform_action(action, context.current_state, role):
                result.add_error(
                    f"Transition from {context.current_state.value} to "
                    f"{context.target_state.value} is not allowed for role {role.value}"
                )

        if product is not None:
            result.merge(self._state_manager.validate_product_state(product))

        if product is not None and context.target_state is not None:
            result.merge(self._quality_gate.evaluate(product, context.target_state))

        return result
