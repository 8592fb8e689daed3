"""ProductWorkflow data model.

The product record carries only the fields the workflow core reads: the
content sections inspected by the quality gate and the workflow bookkeeping
written by state transitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pimflow.domain.models.clock import utc_now
from pimflow.domain.models.workflow import WorkflowState


class MediaImage(BaseModel):
    """Image attached to a product."""

    id: str = Field(..., min_length=1)
    url: str = Field(default="")
    alt_text: dict[str, str] = Field(default_factory=dict)


class KeyValueEntry(BaseModel):
    """Free-form product property such as material or weight."""

    key: str
    value: str


class PriceEntry(BaseModel):
    """Price in a single currency."""

    currency: str = Field(..., min_length=3, max_length=3)
    amount: float = Field(..., ge=0)


class BasicInfo(BaseModel):
    """Identity and descriptive text of a product."""

    name: dict[str, str] = Field(
        default_factory=dict,
        description="Product name keyed by language code",
    )
    sku: str = Field(default="", description="Stock keeping unit")
    gtin: str | None = Field(default=None, description="Global trade item number")
    description_short: dict[str, str] = Field(default_factory=dict)
    description_long: dict[str, str] = Field(default_factory=dict)
    brand: str = Field(default="")
    status: str = Field(default="development")


class AttributesAndSpecs(BaseModel):
    """Categorisation and properties."""

    categories: list[str] = Field(default_factory=list)
    properties: list[KeyValueEntry] = Field(default_factory=list)


class Media(BaseModel):
    """Media assets."""

    images: list[MediaImage] = Field(default_factory=list)


class MarketingSEO(BaseModel):
    """Search and marketing metadata."""

    seo_title: dict[str, str] = Field(default_factory=dict)
    seo_description: dict[str, str] = Field(default_factory=dict)
    keywords: list[str] = Field(default_factory=list)


class Pricing(BaseModel):
    """Pricing information."""

    standard_price: list[PriceEntry] = Field(default_factory=list)


class WorkflowHistoryRecord(BaseModel):
    """One entry of a product's workflow history."""

    state: WorkflowState
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: str
    reason: str | None = None
    comment: str | None = None

    model_config = ConfigDict(frozen=True)


class ProductWorkflow(BaseModel):
    """A product record together with its workflow bookkeeping.

    ProductWorkflow is mutated only by WorkflowStateManager when a transition
    succeeds and by content edits. Its workflow_history is append-only.
    """

    id: str = Field(..., min_length=1, description="Product identifier")
    basic_info: BasicInfo = Field(default_factory=BasicInfo)
    attributes_and_specs: AttributesAndSpecs = Field(default_factory=AttributesAndSpecs)
    media: Media = Field(default_factory=Media)
    marketing_seo: MarketingSEO = Field(default_factory=MarketingSEO)
    pricing: Pricing = Field(default_factory=Pricing)

    workflow_state: WorkflowState = Field(
        default=WorkflowState.Draft,
        description="Current workflow state",
    )
    assigned_reviewer_id: str | None = Field(default=None)
    submitted_by: str | None = Field(default=None)
    submitted_at: datetime | None = Field(default=None)
    reviewed_by: str | None = Field(default=None)
    reviewed_at: datetime | None = Field(default=None)
    published_by: str | None = Field(default=None)
    published_at: datetime | None = Field(default=None)
    rejection_reason: str | None = Field(default=None)
    workflow_history: list[WorkflowHistoryRecord] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(validate_assignment=True)

    def get_field(self, path: str) -> Any:
        """Resolve a dotted field path such as ``basic_info.name``.

        Returns None when any segment of the path does not exist.
        """
        value: Any = self
        for segment in path.split("."):
            if isinstance(value, BaseModel):
                value = getattr(value, segment, None)
            elif isinstance(value, dict):
                value = value.get(segment)
            else:
                return None
            if value is None:
                return None
        return value

    def has_field(self, path: str) -> bool:
        """Return True when the field at ``path`` holds a non-empty value.

        Multilingual text counts as present when at least one language has
        non-blank content.
        """
        value = self.get_field(path)
        if value is None:
            return False
        if isinstance(value, str):
            return bool(value.strip())
        if isinstance(value, dict):
            return any(isinstance(v, str) and v.strip() for v in value.values())
        if isinstance(value, list):
            return len(value) > 0
        return True

    def display_name(self, language: str = "en") -> str:
        """Name in ``language`` falling back to the first non-empty translation."""
        name = self.basic_info.name.get(language)
        if name:
            return name
        return next((v for v in self.basic_info.name.values() if v), self.id)
