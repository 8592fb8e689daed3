"""Validation context and result for the workflow validation pipeline."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.workflow import WorkflowAction, WorkflowState

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"
USER_EMAIL_HEADER = "x-user-email"


class WorkflowValidationContext(BaseModel):
    """Everything the validation pipeline needs to judge one request.

    ``user_role`` is kept as the raw string received from the caller so the
    pipeline can report an invalid role instead of failing to build the
    context.
    """

    user_id: str | None = Field(default=None)
    user_role: str | None = Field(default=None)
    user_email: str | None = Field(default=None)
    product_id: str | None = Field(default=None)
    action: WorkflowAction | None = Field(default=None)
    current_state: WorkflowState | None = Field(default=None)
    target_state: WorkflowState | None = Field(default=None)
    product: ProductWorkflow | None = Field(default=None)

    @classmethod
    def from_request_parts(
        cls,
        headers: Mapping[str, str],
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, str] | None = None,
        product: ProductWorkflow | None = None,
    ) -> "WorkflowValidationContext":
        """Build a context from request headers, JSON body and query string.

        Header lookup is case-insensitive. ``productId`` is read from the
        body first and then from the query string. Unknown actions and states
        are dropped rather than raising, leaving the pipeline to reject them.

        Args:
            headers: Request headers.
            body: Parsed JSON body, if any.
            query: Query string parameters, if any.
            product: Product the request refers to, if already loaded.

        Returns:
            WorkflowValidationContext populated from the request.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        body = body or {}
        query = query or {}

        product_id = body.get("productId") or body.get("product_id") or query.get("productId")
        action = WorkflowAction.parse(body.get("action"))
        current_state = _parse_state(body.get("currentState") or body.get("current_state"))
        target_state = _parse_state(body.get("targetState") or body.get("target_state"))

        if product is not None:
            product_id = product_id or product.id
            current_state = current_state or product.workflow_state

        return cls(
            user_id=lowered.get(USER_ID_HEADER) or None,
            user_role=lowered.get(USER_ROLE_HEADER) or None,
            user_email=lowered.get(USER_EMAIL_HEADER) or None,
            product_id=product_id,
            action=action,
            current_state=current_state,
            target_state=target_state,
            product=product,
        )


class ValidationResult(BaseModel):
    """Outcome of WorkflowValidationMiddleware.validate."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    context: WorkflowValidationContext | None = Field(default=None)


def _parse_state(value: Any) -> WorkflowState | None:
    if isinstance(value, WorkflowState):
        return value
    if not isinstance(value, str):
        return None
    try:
        return WorkflowState(value.strip().lower())
    except ValueError:
        return None
