"""Workflow enums: states, roles and actions."""

from enum import Enum


class WorkflowState(str, Enum):
    """Editorial state of a product record.

    Every product is created in Draft. Rejected is a side branch that
    returns to Draft once the editor reworks the product.
    """

    Draft = "draft"
    """Product is being authored and can be edited freely."""

    Review = "review"
    """Product was submitted and waits for a reviewer decision."""

    Approved = "approved"
    """Reviewer accepted the product; it can be published by an admin."""

    Published = "published"
    """Product is live in the storefront."""

    Rejected = "rejected"
    """Reviewer sent the product back with a rejection reason."""


class UserRole(str, Enum):
    """Role of the actor performing a workflow operation."""

    Admin = "admin"
    """Full access, publishes and reopens products."""

    Editor = "editor"
    """Creates and edits products, submits them for review."""

    Reviewer = "reviewer"
    """Approves or rejects submitted products."""

    Viewer = "viewer"
    """Read-only access."""

    @classmethod
    def parse(cls, value: "str | UserRole | None") -> "UserRole | None":
        """Return the matching role or None when the value is not a known role."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class WorkflowAction(str, Enum):
    """Operations an actor can request against the workflow."""

    Create = "create"
    Edit = "edit"
    Submit = "submit"
    Approve = "approve"
    Reject = "reject"
    Publish = "publish"
    Unpublish = "unpublish"
    Reopen = "reopen"
    BulkApprove = "bulk_approve"
    BulkReject = "bulk_reject"
    BulkPublish = "bulk_publish"
    AssignReviewer = "assign_reviewer"
    ViewAuditTrail = "view_audit_trail"
    ManageUsers = "manage_users"
    ConfigureWorkflow = "configure_workflow"
    ViewAllProducts = "view_all_products"
    ViewProductHistory = "view_product_history"
    ManageNotifications = "manage_notifications"
    PerformBulkOperations = "perform_bulk_operations"
    ExportProducts = "export_products"
    Delete = "delete"

    @classmethod
    def parse(cls, value: "str | WorkflowAction | None") -> "WorkflowAction | None":
        """Return the matching action or None when the value is not a known action."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


BULK_ACTIONS: dict[WorkflowAction, WorkflowAction] = {
    WorkflowAction.BulkApprove: WorkflowAction.Approve,
    WorkflowAction.BulkReject: WorkflowAction.Reject,
    WorkflowAction.BulkPublish: WorkflowAction.Publish,
}
"""Bulk actions mapped to the single-product action they repeat."""
