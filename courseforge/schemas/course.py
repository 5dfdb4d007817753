"""Course and lesson schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CourseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    topic: Optional[str] = None
    target_audience: Optional[str] = None
    difficulty: Optional[str] = None


class LessonCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    order_index: Optional[int] = None
    objectives: List[str] = Field(default_factory=list)


class LessonResponse(BaseModel):
    id: str
    course_id: str
    title: str
    order_index: int
    objectives: Optional[List[str]] = None
    lesson_plan: Optional[Dict[str, Any]] = None
    script: Optional[str] = None
    activities: Optional[List[Dict[str, Any]]] = None
    status: str

    class Config:
        from_attributes = True


class CourseResponse(BaseModel):
    id: str
    owner: str
    title: str
    description: Optional[str] = None
    topic: Optional[str] = None
    outline: Optional[Dict[str, Any]] = None
    status: str
    created_at: datetime
    lessons: List[LessonResponse] = []

    class Config:
        from_attributes = True


class CreditBalanceResponse(BaseModel):
    owner: str
    credits_remaining: int


class VariationResponse(BaseModel):
    id: str
    lesson_id: str
    variation_type: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    version_count: int = 0
    created_at: datetime
