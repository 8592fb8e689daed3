"""Built-in workflow configuration.

These tables are used whenever no workflow configuration file is supplied.
Each table is keyed by enum members so a missing state, role or action shows
up as a KeyError in tests rather than a silent default.
"""

from pimflow.domain.models.quality import QualityThresholds
from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.domain.models.workflow_config import WorkflowConfiguration

DEFAULT_TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(
        from_state=WorkflowState.Draft,
        to_state=WorkflowState.Review,
        required_role=UserRole.Editor,
        required_permissions=["products:write", "workflow:submit"],
        conditions={"assignedReviewer": True, "minFieldsCompleted": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Review,
        to_state=WorkflowState.Approved,
        required_role=UserRole.Reviewer,
        required_permissions=["workflow:approve"],
        conditions={"qualityCheckPassed": True, "allRequiredFields": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Review,
        to_state=WorkflowState.Rejected,
        required_role=UserRole.Reviewer,
        required_permissions=["workflow:reject"],
        conditions={"rejectionReason": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Approved,
        to_state=WorkflowState.Published,
        required_role=UserRole.Admin,
        required_permissions=["workflow:publish"],
        conditions={"publishReady": True, "allAssetsReady": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Rejected,
        to_state=WorkflowState.Draft,
        required_role=UserRole.Editor,
        required_permissions=["products:write"],
        is_automatic=True,
        conditions={"editorAction": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Draft,
        to_state=WorkflowState.Draft,
        required_role=UserRole.Editor,
        required_permissions=["products:write"],
        conditions={"contentChanged": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Published,
        to_state=WorkflowState.Draft,
        required_role=UserRole.Admin,
        required_permissions=["workflow:unpublish"],
        conditions={"unpublishReason": True, "majorChanges": True},
    ),
    TransitionRule(
        from_state=WorkflowState.Approved,
        to_state=WorkflowState.Review,
        required_role=UserRole.Admin,
        required_permissions=["workflow:reopen"],
        conditions={"additionalReviewNeeded": True, "newReviewer": True},
    ),
]

DEFAULT_ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.Admin: [
        "workflow:*",
        "products:*",
        "users:*",
        "audit:*",
        "notifications:*",
        "workflow:publish",
        "workflow:unpublish",
        "workflow:reopen",
        "workflow:configure",
        "products:create",
        "products:read",
        "products:write",
        "products:delete",
        "users:create",
        "users:read",
        "users:write",
        "users:delete",
        "audit:read",
        "notifications:manage",
    ],
    UserRole.Editor: [
        "products:create",
        "products:read",
        "products:write",
        "workflow:submit",
        "workflow:edit",
        "audit:read",
        "notifications:read",
    ],
    UserRole.Reviewer: [
        "products:read",
        "workflow:approve",
        "workflow:reject",
        "workflow:review",
        "audit:read",
        "notifications:read",
    ],
    UserRole.Viewer: [
        "products:read",
        "audit:read",
        "notifications:read",
    ],
}

DEFAULT_ACTION_PERMISSIONS: dict[WorkflowAction, list[str]] = {
    WorkflowAction.Create: ["products:create"],
    WorkflowAction.Edit: ["products:write"],
    WorkflowAction.Submit: ["workflow:submit"],
    WorkflowAction.Approve: ["workflow:approve"],
    WorkflowAction.Reject: ["workflow:reject"],
    WorkflowAction.Publish: ["workflow:publish"],
    WorkflowAction.Unpublish: ["workflow:unpublish"],
    WorkflowAction.Reopen: ["workflow:reopen"],
    WorkflowAction.BulkApprove: ["workflow:approve", "workflow:bulk"],
    WorkflowAction.BulkReject: ["workflow:reject", "workflow:bulk"],
    WorkflowAction.BulkPublish: ["workflow:publish", "workflow:bulk"],
    WorkflowAction.AssignReviewer: ["workflow:assign"],
    WorkflowAction.ViewAuditTrail: ["audit:read"],
    WorkflowAction.ManageUsers: ["users:write"],
    WorkflowAction.ConfigureWorkflow: ["workflow:configure"],
    WorkflowAction.ViewAllProducts: ["products:read"],
    WorkflowAction.ViewProductHistory: ["audit:read"],
    WorkflowAction.ManageNotifications: ["notifications:manage"],
    WorkflowAction.PerformBulkOperations: ["workflow:bulk"],
    WorkflowAction.ExportProducts: ["products:read", "products:export"],
    WorkflowAction.Delete: ["products:delete"],
}

MIN_REQUIRED_FIELDS = [
    "basic_info.name",
    "basic_info.sku",
    "basic_info.description_short",
    "basic_info.brand",
    "attributes_and_specs.categories",
]

APPROVAL_REQUIRED_FIELDS = [
    *MIN_REQUIRED_FIELDS,
    "basic_info.description_long",
    "media.images",
    "marketing_seo.seo_title",
    "marketing_seo.seo_description",
]

PUBLICATION_REQUIRED_FIELDS = [
    *APPROVAL_REQUIRED_FIELDS,
    "attributes_and_specs.properties",
    "marketing_seo.keywords",
]

DEFAULT_REQUIRED_FIELDS: dict[WorkflowState, list[str]] = {
    WorkflowState.Review: MIN_REQUIRED_FIELDS,
    WorkflowState.Approved: APPROVAL_REQUIRED_FIELDS,
    WorkflowState.Published: PUBLICATION_REQUIRED_FIELDS,
}


def default_workflow_configuration() -> WorkflowConfiguration:
    """Return a fresh copy of the built-in workflow configuration."""
    return WorkflowConfiguration(
        transition_rules=list(DEFAULT_TRANSITION_RULES),
        role_permissions={role: list(grants) for role, grants in DEFAULT_ROLE_PERMISSIONS.items()},
        action_permissions={
            action: list(required) for action, required in DEFAULT_ACTION_PERMISSIONS.items()
        },
        quality_thresholds=QualityThresholds(),
        required_fields={state: list(fields) for state, fields in DEFAULT_REQUIRED_FIELDS.items()},
        quality_gate_states=[WorkflowState.Approved, WorkflowState.Published],
    )
