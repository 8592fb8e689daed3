"""
Dependency injection setup for the pimflow API.
"""

from functools import cache
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.validation import (
    USER_EMAIL_HEADER,
    USER_ID_HEADER,
    USER_ROLE_HEADER,
)
from pimflow.domain.models.workflow import UserRole, WorkflowAction
from pimflow.engine import WorkflowEngine
from pimflow.infrastructure.config.settings import PimflowSettings
from pimflow_api.registry import ProductRegistry


@cache
def get_settings() -> PimflowSettings:
    """Get a singleton instance of the settings, read from the environment."""
    return PimflowSettings()


@cache
def get_engine() -> WorkflowEngine:
    """Get a singleton instance of the WorkflowEngine."""
    return WorkflowEngine(config=get_settings())


@cache
def get_registry() -> ProductRegistry:
    """Get a singleton instance of the ProductRegistry."""
    return ProductRegistry()


class RequestActor(BaseModel):
    """User identity taken from the request headers."""

    user_id: str
    user_role: UserRole
    user_email: str = ""


def _get_client_ip(request: Request) -> str:
    """Get client IP address from request.

    Args:
        request: FastAPI request object.

    Returns:
        Client IP address as string.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_request_actor(request: Request) -> RequestActor:
    """FastAPI dependency returning the authenticated actor.

    Raises:
        HTTPException: 401 if the user id or role header is missing or the
                      role is unknown.
    """
    user_id = request.headers.get(USER_ID_HEADER)
    raw_role = request.headers.get(USER_ROLE_HEADER)
    if not user_id or not raw_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User authentication required",
        )
    role = UserRole.parse(raw_role)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid user role: {raw_role}",
        )
    return RequestActor(
        user_id=user_id,
        user_role=role,
        user_email=request.headers.get(USER_EMAIL_HEADER, ""),
    )


def get_request_metadata(request: Request) -> dict[str, Any]:
    """Request details recorded on audit entries."""
    metadata: dict[str, Any] = {"ip_address": _get_client_ip(request)}
    if request_id := request.headers.get("x-request-id"):
        metadata["request_id"] = request_id
    if session_id := request.headers.get("x-session-id"):
        metadata["session_id"] = session_id
    if user_agent := request.headers.get("user-agent"):
        metadata["user_agent"] = user_agent
    return metadata


def require_permission(
    engine: WorkflowEngine, actor: RequestActor, action: WorkflowAction
) -> None:
    """Raise 403 unless the actor's role may perform ``action``."""
    if not engine.permission_resolver.has_permission(actor.user_role, action):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Insufficient permissions: role {actor.user_role.value} "
                f"cannot perform {action.value}"
            ),
        )


EngineDep = Annotated[WorkflowEngine, Depends(get_engine)]
RegistryDep = Annotated[ProductRegistry, Depends(get_registry)]
ActorDep = Annotated[RequestActor, Depends(get_request_actor)]
MetadataDep = Annotated[dict[str, Any], Depends(get_request_metadata)]


def get_product_or_404(registry: ProductRegistry, product_id: str) -> ProductWorkflow:
    """Return the registered product or raise 404."""
    product = registry.get(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


def workflow_denied(errors: list[str]) -> HTTPException:
    """400 response carrying the errors of a denied workflow operation."""
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"success": False, "error": "; ".join(errors), "errors": errors},
    )
