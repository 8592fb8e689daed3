"""BulkOperationExecutor: one workflow action applied to many products."""

import uuid
from collections.abc import Sequence
from typing import Any

from pimflow.domain.components.permission_resolver import PermissionResolver
from pimflow.domain.components.workflow_state_manager import WorkflowStateManager
from pimflow.domain.models.bulk import BulkItemResult, BulkOperationResult
from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.transition import StateTransitionRequest
from pimflow.domain.models.workflow import BULK_ACTIONS, UserRole, WorkflowAction

DEFAULT_MAX_PRODUCTS = 1000


class BulkOperationError(Exception):
    """Raised when a bulk operation is rejected as a whole."""

    pass


class BulkOperationExecutor:
    """Runs a workflow action over a batch of products.

    The actor must hold the permissions of the requested action (for bulk
    actions that includes ``workflow:bulk``). Each product is then moved
    independently through the state manager, so one failing product never
    stops the others. In dry-run mode every product is validated but none
    is changed.
    """

    def __init__(
        self,
        state_manager: WorkflowStateManager,
        permission_resolver: PermissionResolver | None = None,
        max_products: int = DEFAULT_MAX_PRODUCTS,
    ) -> None:
        self._state_manager = state_manager
        self._permissions = permission_resolver or PermissionResolver()
        self._max_products = max_products

    @property
    def max_products(self) -> int:
        return self._max_products

    async def execute(
        self,
        action: WorkflowAction,
        products: Sequence[ProductWorkflow],
        actor_id: str,
        actor_role: UserRole,
        actor_email: str = "",
        reason: str | None = None,
        comment: str | None = None,
        dry_run: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> BulkOperationResult:
        """Apply ``action`` to every product.

        Args:
            action: A bulk action or a single-product transition action.
            products: Products to transition; mutated unless ``dry_run``.
            actor_id: User performing the operation.
            actor_role: Role of the user.
            actor_email: E-mail of the user.
            reason: Reason recorded on every transition.
            comment: Comment recorded on every transition.
            dry_run: Validate only.
            metadata: Extra context copied onto every transition event.

        Returns:
            BulkOperationResult with one item per product.

        Raises:
            BulkOperationError: If the batch is empty or exceeds max_products.
        """
        if not products:
            raise BulkOperationError("Bulk operation requires at least one product")
        if len(products) > self._max_products:
            raise BulkOperationError(
                f"Bulk operation limited to {self._max_products} products, got {len(products)}"
            )

        single_action = BULK_ACTIONS.get(action, action)
        operation = BulkOperationResult(
            operation_id=f"bulk_{uuid.uuid4().hex}",
            action=action,
            dry_run=dry_run,
            total=len(products),
        )

        if not self._permissions.has_permission(actor_role, action):
            message = (
                f"Insufficient permissions: role {actor_role.value} cannot perform {action.value}"
            )
            operation.errors.append(message)
            for product in products:
                operation.results.append(
                    BulkItemResult(
                        product_id=product.id,
                        success=False,
                        previous_state=product.workflow_state,
                        new_state=product.workflow_state,
                        errors=[message],
                    )
                )
            operation.failed = len(products)
            operation.completed_at = self._state_manager.now()
            return operation

        seen: set[str] = set()
        for product in products:
            if product.id in seen:
                item = BulkItemResult(
                    product_id=product.id,
                    success=False,
                    errors=["Duplicate product in bulk operation"],
                )
            else:
                seen.add(product.id)
                item = await self._apply_one(
                    operation,
                    single_action,
                    product,
                    actor_id,
                    actor_role,
                    actor_email,
                    reason,
                    comment,
                    dry_run,
                    metadata or {},
                )

            operation.results.append(item)
            if item.success:
                operation.successful += 1
            else:
                operation.failed += 1
                operation.errors.extend(f"{item.product_id}: {error}" for error in item.errors)

        operation.completed_at = self._state_manager.now()
        return operation

    async def _apply_one(
        self,
        operation: BulkOperationResult,
        action: WorkflowAction,
        product: ProductWorkflow,
        actor_id: str,
        actor_role: UserRole,
        actor_email: str,
        reason: str | None,
        comment: str | None,
        dry_run: bool,
        metadata: dict[str, Any],
    ) -> BulkItemResult:
        current = product.workflow_state
        target = self._state_manager.target_state_for(action, current)
        if target is None:
            return BulkItemResult(
                product_id=product.id,
                success=False,
                previous_state=current,
                new_state=current,
                errors=[
                    f"Action {action.value} does not apply to a product in state {current.value}"
                ],
            )

        request = StateTransitionRequest(
            product_id=product.id,
            from_state=current,
            to_state=target,
            user_id=actor_id,
            user_role=actor_role,
            user_email=actor_email,
            reason=reason,
            comment=comment,
            metadata={**metadata, "bulk_operation_id": operation.operation_id},
        )

        if dry_run:
            validation = self._state_manager.validate_state_transition(request, product)
            return BulkItemResult(
                product_id=product.id,
                success=validation.is_valid,
                previous_state=current,
                new_state=target if validation.is_valid else current,
                errors=validation.errors,
            )

        result = await self._state_manager.execute_state_transition(request, product)
        if result.event is not None:
            operation.events.append(result.event)
        return BulkItemResult(
            product_id=product.id,
            success=result.success,
            previous_state=result.previous_state,
            new_state=result.new_state,
            errors=result.errors,
        )
