"""Named preconditions referenced by transition rules."""

from collections.abc import Callable

from pimflow.domain.components.quality_gate import QualityGate
from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.transition import StateTransitionRequest
from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.workflow import UserRole, WorkflowState

ConditionEvaluator = Callable[[StateTransitionRequest, ProductWorkflow], str | None]
"""Returns an error message when the condition does not hold, None otherwise."""


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


class TransitionConditions:
    """Registry of condition evaluators keyed by condition name.

    Unknown condition names evaluate to an error so a misspelt rule can never
    silently let a transition through.
    """

    def __init__(self, quality_gate: QualityGate | None = None) -> None:
        """Initialize TransitionConditions with the built-in evaluators.

        Args:
            quality_gate: Gate used by the field and quality conditions.
        """
        self._quality_gate = quality_gate or QualityGate()
        self._evaluators: dict[str, ConditionEvaluator] = {
            "assignedReviewer": self._assigned_reviewer,
            "newReviewer": self._assigned_reviewer,
            "minFieldsCompleted": self._required_fields(WorkflowState.Review),
            "allRequiredFields": self._required_fields(WorkflowState.Approved),
            "publishReady": self._required_fields(WorkflowState.Published),
            "qualityCheckPassed": self._quality_check,
            "allAssetsReady": self._assets_ready,
            "rejectionReason": self._reason("Rejection reason is required"),
            "unpublishReason": self._reason("Unpublish reason is required"),
            "additionalReviewNeeded": self._reason("Reason for additional review is required"),
            "editorAction": self._editor_action,
            "contentChanged": self._content_changed,
            "majorChanges": self._major_changes,
        }

    def register(self, name: str, evaluator: ConditionEvaluator) -> None:
        """Register or replace the evaluator for ``name``."""
        self._evaluators[name] = evaluator

    def names(self) -> list[str]:
        return sorted(self._evaluators)

    def evaluate(
        self,
        rule: TransitionRule,
        request: StateTransitionRequest,
        product: ProductWorkflow,
    ) -> list[str]:
        """Return one error per enforced condition of ``rule`` that does not hold."""
        errors = []
        for name in rule.enforced_conditions:
            evaluator = self._evaluators.get(name)
            if evaluator is None:
                errors.append(f"Unknown transition condition: {name}")
                continue
            error = evaluator(request, product)
            if error:
                errors.append(error)
        return errors

    @staticmethod
    def _assigned_reviewer(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
        if request.assigned_reviewer_id or product.assigned_reviewer_id:
            return None
        return "A reviewer must be assigned"

    def _required_fields(self, target_state: WorkflowState) -> ConditionEvaluator:
        def check(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
            missing = [
                path
                for path in self._quality_gate.required_fields_for(target_state)
                if not product.has_field(path)
            ]
            if missing:
                return f"Required fields missing for {target_state.value}: {', '.join(missing)}"
            return None

        return check

    def _quality_check(self, request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
        result = self._quality_gate.check_thresholds(product)
        if result.errors:
            return f"Quality check failed: {'; '.join(result.errors)}"
        return None

    @staticmethod
    def _assets_ready(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
        images = product.media.images
        if not images:
            return "At least one image is required before publishing"
        if any(not image.url.strip() for image in images):
            return "Every image must have a URL before publishing"
        return None

    @staticmethod
    def _reason(message: str) -> ConditionEvaluator:
        def check(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
            return None if _has_text(request.reason) else message

        return check

    @staticmethod
    def _editor_action(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
        if request.user_role in (UserRole.Editor, UserRole.Admin):
            return None
        return "Only an editor action can return a product to draft"

    @staticmethod
    def _content_changed(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
        return None if request.field_changes else "No content changes supplied"

    @staticmethod
    def _major_changes(request: StateTransitionRequest, product: ProductWorkflow) -> str | None:
        if request.metadata.get("major_changes"):
            return None
        return "Unpublishing requires major_changes to be confirmed"
