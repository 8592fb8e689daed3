"""TransitionRuleTable: validated lookup over the static transition rules."""

from collections.abc import Iterable, Iterator

from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.workflow import UserRole, WorkflowState


class TransitionRuleConflictError(Exception):
    """Raised when two non-automatic rules share (from_state, to_state, role)."""

    pass


class TransitionRuleTable:
    """Indexed, validated set of TransitionRules.

    At most one non-automatic rule may exist per (from_state, to_state,
    required_role). An automatic rule may share its triple with a manual one;
    lookups then prefer the manual rule.
    """

    def __init__(self, rules: Iterable[TransitionRule]) -> None:
        """Initialize TransitionRuleTable.

        Args:
            rules: Transition rules to index.

        Raises:
            TransitionRuleConflictError: If two non-automatic rules share a triple.
        """
        self._rules: list[TransitionRule] = list(rules)
        self._index: dict[tuple[WorkflowState, WorkflowState, UserRole], TransitionRule] = {}

        for rule in self._rules:
            key = (rule.from_state, rule.to_state, rule.required_role)
            existing = self._index.get(key)
            if existing is None:
                self._index[key] = rule
            elif not rule.is_automatic and not existing.is_automatic:
                raise TransitionRuleConflictError(
                    f"Duplicate transition rule {rule.describe()}"
                )
            elif existing.is_automatic and not rule.is_automatic:
                self._index[key] = rule

    def __iter__(self) -> Iterator[TransitionRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def find(
        self,
        from_state: WorkflowState,
        to_state: WorkflowState,
        role: UserRole,
    ) -> TransitionRule | None:
        """Return the rule for the triple, or None if no rule exists."""
        return self._index.get((from_state, to_state, role))

    def find_any(self, from_state: WorkflowState, to_state: WorkflowState) -> list[TransitionRule]:
        """Return every rule between two states regardless of role."""
        return [
            rule
            for rule in self._rules
            if rule.from_state == from_state and rule.to_state == to_state
        ]

    def rules_from(
        self,
        state: WorkflowState,
        role: UserRole | None = None,
        include_automatic: bool = False,
    ) -> list[TransitionRule]:
        """Return the rules leaving ``state``.

        Args:
            state: Source state.
            role: Restrict to rules requiring this role; None for any role.
            include_automatic: Include rules triggered implicitly.
        """
        return [
            rule
            for rule in self._rules
            if rule.from_state == state
            and (role is None or rule.required_role == role)
            and (include_automatic or not rule.is_automatic)
        ]

    def rules_to(
        self,
        state: WorkflowState,
        role: UserRole | None = None,
        include_automatic: bool = False,
    ) -> list[TransitionRule]:
        """Return the rules entering ``state``."""
        return [
            rule
            for rule in self._rules
            if rule.to_state == state
            and (role is None or rule.required_role == role)
            and (include_automatic or not rule.is_automatic)
        ]

    def automatic_rules(self, state: WorkflowState) -> list[TransitionRule]:
        """Return the automatic rules leaving ``state``."""
        return [rule for rule in self._rules if rule.from_state == state and rule.is_automatic]
