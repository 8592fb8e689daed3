"""PermissionResolver: role grants checked against action requirements."""

from collections.abc import Mapping

from pimflow.domain.models.workflow import UserRole, WorkflowAction
from pimflow.infrastructure.config.defaults import (
    DEFAULT_ACTION_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
)

WILDCARD = "*"


class PermissionResolver:
    """Decides whether a role may perform an action.

    A required permission ``resource:verb`` is satisfied by the exact grant,
    by ``resource:*`` or by ``*``. An action is permitted only when every
    permission it requires is satisfied. Unknown roles and actions are
    denied; the resolver never raises.

    Example:
        ```python
        resolver = PermissionResolver()
        resolver.has_permission(UserRole.Editor, WorkflowAction.Submit)  # True
        resolver.has_permission("viewer", "publish")  # False
        ```
    """

    def __init__(
        self,
        role_permissions: Mapping[UserRole, list[str]] | None = None,
        action_permissions: Mapping[WorkflowAction, list[str]] | None = None,
    ) -> None:
        """Initialize PermissionResolver.

        Args:
            role_permissions: Grants per role. Defaults to the built-in table.
            action_permissions: Required permissions per action. Defaults to
                              the built-in table.
        """
        source_roles = role_permissions if role_permissions is not None else DEFAULT_ROLE_PERMISSIONS
        source_actions = (
            action_permissions if action_permissions is not None else DEFAULT_ACTION_PERMISSIONS
        )
        self._role_permissions: dict[UserRole, frozenset[str]] = {
            role: frozenset(grants) for role, grants in source_roles.items()
        }
        self._action_permissions: dict[WorkflowAction, tuple[str, ...]] = {
            action: tuple(required) for action, required in source_actions.items()
        }

    def has_permission(self, role: UserRole | str | None, action: WorkflowAction | str | None) -> bool:
        """Return True when ``role`` holds every permission ``action`` requires."""
        parsed_role = UserRole.parse(role)
        parsed_action = WorkflowAction.parse(action)
        if parsed_role is None or parsed_action is None:
            return False

        required = self._action_permissions.get(parsed_action)
        if required is None:
            return False

        grants = self._role_permissions.get(parsed_role, frozenset())
        return all(self._is_granted(grants, permission) for permission in required)

    def has_permission_string(self, role: UserRole | str | None, permission: str) -> bool:
        """Return True when ``role`` is granted a single permission string."""
        parsed_role = UserRole.parse(role)
        if parsed_role is None or not permission:
            return False
        return self._is_granted(self._role_permissions.get(parsed_role, frozenset()), permission)

    def has_all_permissions(self, role: UserRole | str | None, permissions: list[str]) -> bool:
        """Return True when ``role`` is granted every permission string listed."""
        return all(self.has_permission_string(role, permission) for permission in permissions)

    def permissions_for(self, role: UserRole | str | None) -> list[str]:
        """Return the permissions granted to ``role`` (empty for unknown roles)."""
        parsed_role = UserRole.parse(role)
        if parsed_role is None:
            return []
        return sorted(self._role_permissions.get(parsed_role, frozenset()))

    def required_permissions(self, action: WorkflowAction | str | None) -> list[str]:
        """Return the permissions ``action`` requires (empty for unknown actions)."""
        parsed_action = WorkflowAction.parse(action)
        if parsed_action is None:
            return []
        return list(self._action_permissions.get(parsed_action, ()))

    def allowed_actions(self, role: UserRole | str | None) -> list[WorkflowAction]:
        """Return every action ``role`` may perform."""
        return [action for action in self._action_permissions if self.has_permission(role, action)]

    @staticmethod
    def _is_granted(grants: frozenset[str], permission: str) -> bool:
        if permission in grants or WILDCARD in grants:
            return True
        resource, _, _ = permission.partition(":")
        return f"{resource}:{WILDCARD}" in grants
