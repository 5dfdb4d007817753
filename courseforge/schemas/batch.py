"""Batch request and summary schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.content_variation import VariationType
from .jobs import VariationOptions


class BatchItem(BaseModel):
    """One content variation to produce for one lesson."""
    lesson_id: str
    variation_type: VariationType
    options: VariationOptions = Field(default_factory=VariationOptions)


class BatchRequest(BaseModel):
    """Either explicit items, or a course expanded across variation types."""
    items: List[BatchItem] = Field(default_factory=list)
    course_id: Optional[str] = None
    variation_types: List[VariationType] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_shape(self) -> "BatchRequest":
        if self.items and self.course_id:
            raise ValueError("Provide either items or course_id, not both")
        if not self.items and not self.course_id:
            raise ValueError("Provide items or course_id")
        if self.course_id and not self.variation_types:
            raise ValueError("variation_types is required with course_id")
        return self


class BatchPlan(BaseModel):
    """Admitted, prepaid batch whose member jobs exist in pending state."""
    batch_id: str
    owner: str
    job_ids: List[str]
    estimated_credits: int
    credits_remaining: int


class BatchSummary(BaseModel):
    batch_id: str
    total: int
    succeeded: int
    failed: int


class BatchStatusResponse(BaseModel):
    batch_id: str
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    percent_complete: int
