"""
API endpoints for workflow transitions and the audit trail.
"""
import math
from datetime import datetime, timezone
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Body, HTTPException, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.components.audit_exporter import (
    AuditExportOptions,
    ExportFormat,
    UnsupportedExportFormatError,
)
from pimflow.domain.interfaces.audit_store import AuditQuery, SortField, SortOrder
from pimflow.domain.models.audit_entry import AuditAction, AuditPriority
from pimflow.domain.models.workflow import WorkflowAction
from pimflow_api.dependencies import (
    ActorDep,
    EngineDep,
    MetadataDep,
    RegistryDep,
    get_product_or_404,
    require_permission,
    workflow_denied,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

EXPORT_CONTENT_TYPES = {
    ExportFormat.Json: "application/json",
    ExportFormat.Csv: "text/csv",
    ExportFormat.Xml: "application/xml",
    ExportFormat.Text: "text/plain",
}

# Reasons are mandatory for these actions, surfaced to clients building forms.
REASON_REQUIRED_ACTIONS = {WorkflowAction.Reject, WorkflowAction.Unpublish, WorkflowAction.Reopen}


class StateTransitionRequest(BaseModel):
    product_id: str = Field(..., alias="productId", min_length=1, description="Product ID.")
    action: WorkflowAction = Field(..., description="Workflow action to perform.")
    reason: str | None = Field(None, description="Reason for the action.")
    comment: str | None = Field(None)
    assigned_reviewer_id: str | None = Field(None, alias="assignedReviewerId")
    metadata: dict[str, Any] | None = Field(None)

    model_config = ConfigDict(populate_by_name=True)


class BulkOperationRequest(BaseModel):
    action: WorkflowAction = Field(..., description="Bulk or single-product workflow action.")
    product_ids: list[str] = Field(..., alias="productIds", min_length=1)
    reason: str | None = Field(None)
    comment: str | None = Field(None)
    dry_run: bool = Field(False, alias="dryRun")

    model_config = ConfigDict(populate_by_name=True)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.post("/state-transition")
async def state_transition(
    request: Annotated[StateTransitionRequest, Body(...)],
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
    metadata: MetadataDep,
) -> dict[str, Any]:
    """
    Perform a workflow action on a product.
    """
    product = get_product_or_404(registry, request.product_id)
    require_permission(engine, actor, request.action)

    async with registry.lock(product.id):
        previous_state = product.workflow_state
        outcome = await engine.request_transition(
            actor_id=actor.user_id,
            actor_role=actor.user_role,
            actor_email=actor.user_email,
            product=product,
            action=request.action,
            reason=request.reason,
            comment=request.comment,
            assigned_reviewer_id=request.assigned_reviewer_id,
            metadata={**(request.metadata or {}), **metadata},
        )

    if not outcome.success:
        logger.info(
            "state_transition_denied",
            product_id=product.id,
            action=request.action.value,
            errors=outcome.errors,
        )
        raise workflow_denied(outcome.errors)

    return {
        "success": True,
        "message": (
            f"Product state successfully changed from {previous_state.value} "
            f"to {product.workflow_state.value}"
        ),
        "data": {
            "productId": product.id,
            "previousState": previous_state.value,
            "newState": product.workflow_state.value,
            "timestamp": product.updated_at.isoformat(),
            "auditTrailId": outcome.audit_entry.id if outcome.audit_entry else None,
            "warnings": outcome.warnings,
        },
    }


@router.get("/state-transition")
async def available_transitions(
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
    product_id: Annotated[str | None, Query(alias="productId")] = None,
) -> dict[str, Any]:
    """
    List the actions the caller can perform on a product.
    """
    if not product_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product ID is required")
    product = get_product_or_404(registry, product_id)

    transitions = [
        {
            "action": transition.action.value,
            "targetState": transition.to_state.value,
            "requiredPermissions": transition.required_permissions,
            "conditions": transition.conditions,
            "requiresReason": transition.action in REASON_REQUIRED_ACTIONS,
        }
        for transition in engine.get_available_transitions(product, actor.user_role)
        if engine.permission_resolver.has_permission(actor.user_role, transition.action)
    ]
    return {
        "success": True,
        "data": {
            "currentState": product.workflow_state.value,
            "availableTransitions": transitions,
            "progress": engine.get_workflow_progress(product).model_dump(mode="json"),
        },
    }


@router.post("/bulk-operations", status_code=status.HTTP_202_ACCEPTED)
async def bulk_operation(
    request: Annotated[BulkOperationRequest, Body(...)],
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
) -> dict[str, Any]:
    """
    Apply one workflow action to many products.
    """
    require_permission(engine, actor, request.action)
    missing = [product_id for product_id in request.product_ids if registry.get(product_id) is None]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Products not found: {', '.join(missing)}",
        )
    products = [registry.get(product_id) for product_id in request.product_ids]

    outcome = await engine.run_bulk_operation(
        request.action,
        [product for product in products if product is not None],
        actor_id=actor.user_id,
        actor_role=actor.user_role,
        actor_email=actor.user_email,
        reason=request.reason,
        comment=request.comment,
        dry_run=request.dry_run,
    )
    if outcome.bulk is None:
        raise workflow_denied(outcome.errors)

    return {
        "success": outcome.success,
        "data": outcome.bulk.model_dump(mode="json", exclude={"events"}),
        "auditTrailId": outcome.audit_entry.id if outcome.audit_entry else None,
    }


@router.get("/audit-trail")
async def audit_trail(
    engine: EngineDep,
    actor: ActorDep,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
    action: Annotated[AuditAction | None, Query()] = None,
    product_id: Annotated[str | None, Query(alias="productId")] = None,
    priority: Annotated[AuditPriority | None, Query()] = None,
    search: Annotated[str | None, Query()] = None,
    date_start: Annotated[datetime | None, Query(alias="dateStart")] = None,
    date_end: Annotated[datetime | None, Query(alias="dateEnd")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
    sort_field: Annotated[SortField, Query(alias="sortField")] = "timestamp",
    sort_direction: Annotated[SortOrder, Query(alias="sortDirection")] = "desc",
    include_field_changes: Annotated[bool, Query(alias="includeFieldChanges")] = True,
    include_metadata: Annotated[bool, Query(alias="includeMetadata")] = True,
) -> dict[str, Any]:
    """
    Query the audit trail with filters and pagination.
    """
    require_permission(engine, actor, WorkflowAction.ViewAuditTrail)

    filters = AuditQuery(
        actor_id=user_id,
        action=action,
        subject_id=product_id,
        priority=priority,
        reason_contains=search,
        start_date=_aware(date_start),
        end_date=_aware(date_end),
        sort_by=sort_field,
        sort_order=sort_direction,
    )
    total = len(await engine.audit_service.get_audit_entries(filters))
    entries = await engine.audit_service.get_audit_entries(
        filters.model_copy(update={"offset": (page - 1) * limit, "limit": limit}),
        include_field_changes=include_field_changes,
        include_metadata=include_metadata,
    )
    return {
        "success": True,
        "data": {
            "entries": [entry.model_dump(mode="json") for entry in entries],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
        },
    }


@router.get("/audit-trail/export")
async def export_audit_trail(
    engine: EngineDep,
    actor: ActorDep,
    export_format: Annotated[str, Query(alias="format")] = "json",
    product_id: Annotated[str | None, Query(alias="productId")] = None,
) -> Response:
    """
    Export the audit trail as JSON, CSV, XML or plain text.
    """
    require_permission(engine, actor, WorkflowAction.ViewAuditTrail)
    try:
        fmt = ExportFormat(export_format.lower())
        body = await engine.audit_service.export_audit_trail(
            AuditExportOptions(
                format=fmt,
                query=AuditQuery(subject_id=product_id, sort_by="timestamp", sort_order="asc"),
            )
        )
    except (ValueError, UnsupportedExportFormatError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported export format: {export_format}",
        ) from e

    stamp = engine.audit_service.now().strftime("%Y%m%d%H%M%S")
    return Response(
        content=body,
        media_type=EXPORT_CONTENT_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="audit-trail-{stamp}.{fmt.value}"'},
    )


@router.post("/audit-trail/verify")
async def verify_audit_trail(
    engine: EngineDep,
    actor: ActorDep,
) -> dict[str, Any]:
    """
    Verify the integrity of every audit entry.
    """
    require_permission(engine, actor, WorkflowAction.ViewAuditTrail)

    immutable = engine.immutable_service
    if immutable is not None:
        report = await immutable.export_immutability_report()
        return {"success": True, "data": report.model_dump(mode="json")}

    results = await engine.audit_service.verify_integrity()
    invalid = [result for result in results if not result.valid]
    return {
        "success": True,
        "data": {
            "status": "valid" if not invalid else "invalid",
            "total": len(results),
            "invalid": [result.model_dump(mode="json") for result in invalid],
        },
    }
