"""QualityGate: content checks a product must pass before advancing."""

import re
from collections.abc import Iterable, Mapping

from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.quality import QualityMetrics, QualityThresholds
from pimflow.domain.models.transition import WorkflowValidationResult
from pimflow.domain.models.workflow import WorkflowState
from pimflow.infrastructure.config.defaults import DEFAULT_REQUIRED_FIELDS

_GTIN = re.compile(r"^\d{8}$|^\d{12,14}$")

# Weights of the completeness score; they sum to 100.
COMPLETENESS_WEIGHTS: dict[str, int] = {
    "basic_info.name": 15,
    "basic_info.sku": 10,
    "basic_info.brand": 10,
    "basic_info.description_short": 10,
    "basic_info.description_long": 10,
    "attributes_and_specs.categories": 10,
    "attributes_and_specs.properties": 5,
    "media.images": 10,
    "marketing_seo.seo_title": 5,
    "marketing_seo.seo_description": 5,
    "marketing_seo.keywords": 5,
    "pricing.standard_price": 5,
}


class QualityGate:
    """Evaluates products against required fields and numeric thresholds.

    Required fields depend on the target state. Thresholds are enforced only
    for the gated target states (by default approved and published); below a
    minimum is an error, above a maximum a warning.
    """

    def __init__(
        self,
        thresholds: QualityThresholds | None = None,
        required_fields: Mapping[WorkflowState, list[str]] | None = None,
        gated_states: Iterable[WorkflowState] | None = None,
    ) -> None:
        """Initialize QualityGate.

        Args:
            thresholds: Numeric bounds. Defaults to QualityThresholds().
            required_fields: Dotted field paths per target state.
            gated_states: Target states for which thresholds apply.
        """
        self._thresholds = thresholds or QualityThresholds()
        self._required_fields = dict(
            required_fields if required_fields is not None else DEFAULT_REQUIRED_FIELDS
        )
        self._gated_states = frozenset(
            gated_states
            if gated_states is not None
            else (WorkflowState.Approved, WorkflowState.Published)
        )

    @property
    def thresholds(self) -> QualityThresholds:
        return self._thresholds

    def required_fields_for(self, target_state: WorkflowState) -> list[str]:
        """Return the dotted field paths required to enter ``target_state``."""
        return list(self._required_fields.get(target_state, []))

    def is_gated(self, target_state: WorkflowState) -> bool:
        return target_state in self._gated_states

    def check_required_fields(
        self, product: ProductWorkflow, target_state: WorkflowState
    ) -> WorkflowValidationResult:
        result = WorkflowValidationResult()
        for path in self.required_fields_for(target_state):
            if not product.has_field(path):
                result.add_error(f"Required field {path} is missing or empty")
        return result

    def check_thresholds(self, product: ProductWorkflow) -> WorkflowValidationResult:
        """Check image, description, category and keyword bounds."""
        t = self._thresholds
        result = WorkflowValidationResult()

        image_count = len(product.media.images)
        if image_count < t.min_image_count:
            result.add_error(f"Minimum {t.min_image_count} images required")
        if image_count > t.max_image_count:
            result.add_warning(f"Maximum {t.max_image_count} images recommended")

        description = product.basic_info.description_long.get(t.description_language) or ""
        if len(description) < t.min_description_length:
            result.add_error(
                f"Description must be at least {t.min_description_length} characters"
            )
        if len(description) > t.max_description_length:
            result.add_warning(
                f"Description should not exceed {t.max_description_length} characters"
            )

        category_count = len(product.attributes_and_specs.categories)
        if category_count < t.required_categories:
            result.add_error(f"At least {t.required_categories} category is required")
        if category_count > t.max_categories:
            result.add_warning(f"Maximum {t.max_categories} categories recommended")

        keyword_count = len(product.marketing_seo.keywords)
        if keyword_count < t.min_keywords:
            result.add_error(f"At least {t.min_keywords} keywords required")
        if keyword_count > t.max_keywords:
            result.add_warning(f"Maximum {t.max_keywords} keywords recommended")

        return result

    def evaluate(
        self, product: ProductWorkflow, target_state: WorkflowState
    ) -> WorkflowValidationResult:
        """Run every check that applies to moving ``product`` into ``target_state``."""
        result = self.check_required_fields(product, target_state)
        if self.is_gated(target_state):
            result.merge(self.check_thresholds(product))
        return result

    def completeness(self, product: ProductWorkflow) -> QualityMetrics:
        """Score how completely the product's content is filled in."""
        score = 0
        missing = []
        for path, weight in COMPLETENESS_WEIGHTS.items():
            if product.has_field(path):
                score += weight
            else:
                missing.append(path)

        errors = []
        gtin = product.basic_info.gtin
        if gtin and not _GTIN.match(gtin):
            errors.append("GTIN must be 8, 12, 13 or 14 digits")
        for price in product.pricing.standard_price:
            if price.amount <= 0:
                errors.append(f"Price in {price.currency} must be greater than zero")

        return QualityMetrics(
            completeness_score=min(score, 100),
            missing_fields=missing,
            validation_errors=errors,
        )
