"""Quality gate models."""

from pydantic import BaseModel, Field


class QualityThresholds(BaseModel):
    """Numeric bounds a product must satisfy before advancing past review.

    Falling below a minimum is an error; exceeding a maximum is a warning.
    """

    min_image_count: int = Field(default=1, ge=0)
    max_image_count: int = Field(default=10, ge=0)
    min_description_length: int = Field(default=50, ge=0)
    max_description_length: int = Field(default=2000, ge=0)
    required_categories: int = Field(default=1, ge=0)
    max_categories: int = Field(default=5, ge=0)
    min_keywords: int = Field(default=3, ge=0)
    max_keywords: int = Field(default=20, ge=0)
    description_language: str = Field(
        default="en",
        description="Language of the long description measured for length",
    )


class QualityMetrics(BaseModel):
    """Completeness score of a product's content."""

    completeness_score: int = Field(..., ge=0, le=100)
    missing_fields: list[str] = Field(default_factory=list)
    validation_errors: list[str] = Field(default_factory=list)
