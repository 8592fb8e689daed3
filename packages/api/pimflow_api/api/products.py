"""
API endpoints for products.
"""
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Path, status
from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.models.product import (
    AttributesAndSpecs,
    BasicInfo,
    MarketingSEO,
    Media,
    Pricing,
    ProductWorkflow,
)
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
from pimflow_api.registry import ProductAlreadyExistsError

router = APIRouter()


class ProductCreateRequest(BaseModel):
    id: str | None = Field(None, description="Product id; generated when omitted.")
    basic_info: BasicInfo = Field(default_factory=BasicInfo)
    attributes_and_specs: AttributesAndSpecs = Field(default_factory=AttributesAndSpecs)
    media: Media = Field(default_factory=Media)
    marketing_seo: MarketingSEO = Field(default_factory=MarketingSEO)
    pricing: Pricing = Field(default_factory=Pricing)


class ProductUpdateRequest(BaseModel):
    updates: dict[str, Any] = Field(..., description="New values keyed by dotted field path.")
    reason: str | None = Field(None, description="Optional reason for the edit.")


class ReviewerAssignmentRequest(BaseModel):
    reviewer_id: str | None = Field(None, alias="reviewerId", description="Reviewer to assign.")
    reason: str | None = Field(None)

    model_config = ConfigDict(populate_by_name=True)


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_product(
    request: Annotated[ProductCreateRequest, Body(...)],
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
    metadata: MetadataDep,
) -> dict[str, Any]:
    """
    Create a product in draft.
    """
    require_permission(engine, actor, WorkflowAction.Create)
    product = ProductWorkflow(
        id=request.id or f"prod_{uuid.uuid4().hex[:12]}",
        basic_info=request.basic_info,
        attributes_and_specs=request.attributes_and_specs,
        media=request.media,
        marketing_seo=request.marketing_seo,
        pricing=request.pricing,
    )
    if registry.get(product.id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=f"Product {product.id} already exists"
        )

    outcome = await engine.create_product(
        product, actor.user_id, actor.user_role, actor.user_email, metadata
    )
    if not outcome.success:
        raise workflow_denied(outcome.errors)
    try:
        registry.add(product)
    except ProductAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return {
        "success": True,
        "product": product.model_dump(mode="json"),
        "auditTrailId": outcome.audit_entry.id if outcome.audit_entry else None,
    }


@router.get("/products/{product_id}")
async def get_product(
    product_id: Annotated[str, Path(..., description="The ID of the product.")],
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
) -> dict[str, Any]:
    """
    Get a product with its workflow progress.
    """
    require_permission(engine, actor, WorkflowAction.ViewAllProducts)
    product = get_product_or_404(registry, product_id)
    return {
        "success": True,
        "product": product.model_dump(mode="json"),
        "progress": engine.get_workflow_progress(product).model_dump(mode="json"),
    }


@router.patch("/products/{product_id}")
async def update_product(
    product_id: Annotated[str, Path(..., description="The ID of the product to edit.")],
    request: Annotated[ProductUpdateRequest, Body(...)],
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
    metadata: MetadataDep,
) -> dict[str, Any]:
    """
    Edit a draft or rejected product.
    """
    require_permission(engine, actor, WorkflowAction.Edit)
    product = get_product_or_404(registry, product_id)
    async with registry.lock(product_id):
        outcome = await engine.update_product(
            product,
            request.updates,
            actor.user_id,
            actor.user_role,
            actor.user_email,
            reason=request.reason,
            metadata=metadata,
        )
    if not outcome.success:
        raise workflow_denied(outcome.errors)
    return {
        "success": True,
        "product": product.model_dump(mode="json"),
        "warnings": outcome.warnings,
        "auditTrailId": outcome.audit_entry.id if outcome.audit_entry else None,
    }


@router.put("/products/{product_id}/reviewer")
async def assign_reviewer(
    product_id: Annotated[str, Path(..., description="The ID of the product.")],
    request: Annotated[ReviewerAssignmentRequest, Body(...)],
    engine: EngineDep,
    registry: RegistryDep,
    actor: ActorDep,
) -> dict[str, Any]:
    """
    Assign or clear the reviewer of a product.
    """
    product = get_product_or_404(registry, product_id)
    async with registry.lock(product_id):
        outcome = await engine.assign_reviewer(
            product,
            request.reviewer_id,
            actor.user_id,
            actor.user_role,
            actor.user_email,
            reason=request.reason,
        )
    if not outcome.success:
        raise workflow_denied(outcome.errors)
    return {
        "success": True,
        "assignedReviewerId": product.assigned_reviewer_id,
        "auditTrailId": outcome.audit_entry.id if outcome.audit_entry else None,
    }
