"""Tests for TransitionRule and TransitionRuleTable."""

import pytest
from pydantic import ValidationError

from pimflow.domain.components.transition_rules import (
    TransitionRuleConflictError,
    TransitionRuleTable,
)
from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.workflow import UserRole, WorkflowState
from pimflow.infrastructure.config.defaults import DEFAULT_TRANSITION_RULES


def _rule(
    from_state: WorkflowState,
    to_state: WorkflowState,
    role: UserRole,
    automatic: bool = False,
) -> TransitionRule:
    return TransitionRule(
        from_state=from_state,
        to_state=to_state,
        required_role=role,
        is_automatic=automatic,
    )


class TestTransitionRule:
    """Tests for the TransitionRule model."""

    def test_enforced_conditions_only_true_flags(self) -> None:
        """Test that conditions set to False are not enforced."""
        rule = TransitionRule(
            from_state=WorkflowState.Draft,
            to_state=WorkflowState.Review,
            required_role=UserRole.Editor,
            conditions={"assignedReviewer": True, "minFieldsCompleted": False},
        )
        assert rule.enforced_conditions == ["assignedReviewer"]

    def test_rule_is_frozen(self) -> None:
        """Test that rules cannot be modified after creation."""
        rule = _rule(WorkflowState.Draft, WorkflowState.Review, UserRole.Editor)
        with pytest.raises(ValidationError):
            rule.required_role = UserRole.Admin

    def test_describe(self) -> None:
        """Test the short description used in messages."""
        rule = _rule(WorkflowState.Review, WorkflowState.Approved, UserRole.Reviewer)
        assert rule.describe() == "review -> approved (reviewer)"


class TestTransitionRuleTable:
    """Tests for TransitionRuleTable."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.table = TransitionRuleTable(DEFAULT_TRANSITION_RULES)

    def test_default_rules_loaded(self) -> None:
        """Test that all eight built-in rules are indexed."""
        assert len(self.table) == 8
        assert list(self.table) == DEFAULT_TRANSITION_RULES

    def test_find_exact_role(self) -> None:
        """Test lookup requires the exact role."""
        rule = self.table.find(WorkflowState.Review, WorkflowState.Approved, UserRole.Reviewer)
        assert rule is not None
        assert rule.required_permissions == ["workflow:approve"]
        assert self.table.find(WorkflowState.Review, WorkflowState.Approved, UserRole.Admin) is None

    def test_find_missing_transition(self) -> None:
        """Test that a transition with no rule returns None."""
        assert self.table.find(WorkflowState.Draft, WorkflowState.Published, UserRole.Admin) is None

    def test_find_any(self) -> None:
        """Test listing rules between two states regardless of role."""
        rules = self.table.find_any(WorkflowState.Rejected, WorkflowState.Draft)
        assert len(rules) == 1
        assert rules[0].is_automatic is True

    def test_rules_from_excludes_automatic_by_default(self) -> None:
        """Test that automatic rules are hidden unless requested."""
        assert self.table.rules_from(WorkflowState.Rejected) == []
        automatic = self.table.rules_from(WorkflowState.Rejected, include_automatic=True)
        assert [rule.to_state for rule in automatic] == [WorkflowState.Draft]

    def test_rules_from_filters_role(self) -> None:
        """Test that rules_from restricts to the given role."""
        editor_rules = self.table.rules_from(WorkflowState.Draft, UserRole.Editor)
        assert {rule.to_state for rule in editor_rules} == {WorkflowState.Review, WorkflowState.Draft}
        assert self.table.rules_from(WorkflowState.Draft, UserRole.Viewer) == []

    def test_rules_to(self) -> None:
        """Test listing rules entering a state."""
        rules = self.table.rules_to(WorkflowState.Review)
        assert {rule.from_state for rule in rules} == {WorkflowState.Draft, WorkflowState.Approved}

    def test_automatic_rules(self) -> None:
        """Test listing automatic rules leaving a state."""
        assert len(self.table.automatic_rules(WorkflowState.Rejected)) == 1
        assert self.table.automatic_rules(WorkflowState.Draft) == []

    def test_duplicate_manual_rules_conflict(self) -> None:
        """Test that two manual rules with the same triple are rejected."""
        with pytest.raises(TransitionRuleConflictError, match="Duplicate transition rule"):
            TransitionRuleTable(
                [
                    _rule(WorkflowState.Draft, WorkflowState.Review, UserRole.Editor),
                    _rule(WorkflowState.Draft, WorkflowState.Review, UserRole.Editor),
                ]
            )

    def test_automatic_and_manual_rule_share_triple(self) -> None:
        """Test that a manual rule is preferred over an automatic one with the same triple."""
        automatic = _rule(WorkflowState.Rejected, WorkflowState.Draft, UserRole.Editor, automatic=True)
        manual = _rule(WorkflowState.Rejected, WorkflowState.Draft, UserRole.Editor)

        table = TransitionRuleTable([automatic, manual])

        assert table.find(WorkflowState.Rejected, WorkflowState.Draft, UserRole.Editor) is manual
        assert len(table) == 2
