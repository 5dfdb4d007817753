"""Typed job configs and job API schemas.

Job configs are stored as JSON on ``GenerationJob.config`` and decoded back
into the model registered for the job type by ``decode_config`` before any
service touches them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.content_variation import VariationType
from ..models.generation_job import JobType


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    MATCHING = "matching"
    FILL_BLANK = "fill_blank"


class EnhancementMode(str, Enum):
    HUMANIZE = "humanize"
    RESEARCH = "research"
    SIMPLIFY = "simplify"
    EXPAND = "expand"


class HumanizeLevel(str, Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


class ContentKind(str, Enum):
    SCRIPT = "script"
    BLOG = "blog"
    EBOOK = "ebook"


class FactCheckDepth(str, Enum):
    BASIC = "basic"
    THOROUGH = "thorough"
    COMPREHENSIVE = "comprehensive"


class ResearchMode(str, Enum):
    PRE_GENERATION = "pre_generation"
    POST_GENERATION = "post_generation"
    FACT_CHECK = "fact_check"


class OptimizedKind(str, Enum):
    LESSON = "lesson"
    SCRIPT = "script"
    BLOG = "blog"
    YOUTUBE = "youtube"
    EBOOK = "ebook"


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    ACADEMIC = "academic"
    FRIENDLY = "friendly"
    AUTHORITATIVE = "authoritative"


class ReadingLevel(str, Enum):
    ELEMENTARY = "elementary"
    MIDDLE = "middle"
    HIGH = "high"
    COLLEGE = "college"
    GRADUATE = "graduate"


# ---------------------------------------------------------------------------
# Per-type job configs
# ---------------------------------------------------------------------------

class OutlineConfig(BaseModel):
    """Falls back to the course's own title/description when omitted."""
    title: Optional[str] = None
    description: Optional[str] = None
    topic: Optional[str] = None
    target_audience: str = "General learners"
    difficulty: str = "Intermediate"
    duration: Optional[str] = None


class LessonPlanConfig(BaseModel):
    objectives: List[str] = Field(
        default_factory=lambda: ["Understand key concepts", "Apply learning practically"]
    )
    duration: int = Field(default=30, ge=5, le=240)
    context: Optional[str] = None


class ScriptConfig(BaseModel):
    duration: int = Field(default=15, ge=1, le=120, description="Target length in minutes")
    style: str = "conversational"


class QuizConfig(BaseModel):
    question_count: int = Field(default=10, ge=1, le=50)
    question_types: List[QuestionType] = Field(default_factory=lambda: list(QuestionType))
    difficulty: str = "medium"

    @field_validator("question_types")
    @classmethod
    def require_types(cls, v: List[QuestionType]) -> List[QuestionType]:
        if not v:
            raise ValueError("At least one question type is required")
        return v


class VariationOptions(BaseModel):
    target_audience: Optional[str] = None
    tone: Optional[str] = None
    duration: int = Field(default=10, ge=1, le=120, description="Video length in minutes")
    seo_keywords: List[str] = Field(default_factory=list)
    previous_context: Optional[str] = None


class ContentVariationConfig(BaseModel):
    variation_type: VariationType
    options: VariationOptions = Field(default_factory=VariationOptions)


class EnhancementConfig(BaseModel):
    mode: EnhancementMode
    content: str = Field(min_length=1)
    content_type: ContentKind = ContentKind.SCRIPT
    level: HumanizeLevel = HumanizeLevel.MODERATE
    topic: Optional[str] = None
    target_level: str = "intermediate"
    expansion_factor: float = Field(default=1.5, gt=1.0, le=5.0)
    lesson_id: Optional[str] = None


class ImageConfig(BaseModel):
    prompt: str = Field(min_length=1)
    style: str = "realistic"


class FactCheckConfig(BaseModel):
    content: str = Field(min_length=1)
    depth: FactCheckDepth = FactCheckDepth.BASIC
    include_context: bool = False
    topic: Optional[str] = None
    auto_correct: bool = False


class ResearchConfig(BaseModel):
    topic: str = Field(min_length=1)
    context: Optional[str] = None
    mode: ResearchMode = ResearchMode.PRE_GENERATION


class OptimizationOptions(BaseModel):
    """What to improve. With nothing selected the model improves overall quality."""
    clarity: bool = False
    engagement: bool = False
    seo: bool = False
    accessibility: bool = False
    conciseness: bool = False
    depth: bool = False

    tone: Optional[Tone] = None
    reading_level: Optional[ReadingLevel] = None

    add_examples: bool = False
    add_statistics: bool = False
    add_quotes: bool = False
    add_visuals: bool = False
    add_call_to_action: bool = False

    restructure: bool = False
    add_headings: bool = False
    add_summary: bool = False
    add_key_points: bool = False


class OptimizationConfig(BaseModel):
    """Inline content wins; otherwise the lesson's script is optimized."""
    content: Optional[str] = None
    lesson_id: Optional[str] = None
    content_type: OptimizedKind = OptimizedKind.LESSON
    options: OptimizationOptions = Field(default_factory=OptimizationOptions)

    @model_validator(mode="after")
    def require_source(self) -> "OptimizationConfig":
        if not self.lesson_id and not (self.content and self.content.strip()):
            raise ValueError("Either lesson_id or content is required")
        return self


class BatchMemberConfig(BaseModel):
    batch_id: str
    lesson_id: str
    lesson_title: str
    variation_type: VariationType
    options: VariationOptions = Field(default_factory=VariationOptions)


CONFIG_MODELS: Dict[JobType, Type[BaseModel]] = {
    JobType.OUTLINE: OutlineConfig,
    JobType.LESSON_PLAN: LessonPlanConfig,
    JobType.SCRIPT: ScriptConfig,
    JobType.QUIZ: QuizConfig,
    JobType.CONTENT_VARIATION: ContentVariationConfig,
    JobType.ENHANCEMENT: EnhancementConfig,
    JobType.IMAGE: ImageConfig,
    JobType.FACT_CHECK: FactCheckConfig,
    JobType.RESEARCH: ResearchConfig,
    JobType.OPTIMIZATION: OptimizationConfig,
    JobType.BATCH_MEMBER: BatchMemberConfig,
}


def decode_config(job_type: JobType, config: Any) -> BaseModel:
    """Decode a stored (or caller-supplied) config into its typed model.

    Raises pydantic.ValidationError when the payload does not fit the type,
    and TypeError when an already-typed config belongs to another job type.
    """
    model = CONFIG_MODELS[JobType(job_type)]
    if isinstance(config, BaseModel):
        if not isinstance(config, model):
            raise TypeError(f"{type(config).__name__} is not a config for {job_type}")
        return config
    return model.model_validate(config or {})


# ---------------------------------------------------------------------------
# API request/response schemas
# ---------------------------------------------------------------------------

class OutlineRequest(BaseModel):
    course_id: str
    config: OutlineConfig = Field(default_factory=OutlineConfig)


class LessonPlanRequest(BaseModel):
    lesson_id: str
    config: LessonPlanConfig = Field(default_factory=LessonPlanConfig)


class ScriptRequest(BaseModel):
    lesson_id: str
    config: ScriptConfig = Field(default_factory=ScriptConfig)


class QuizRequest(BaseModel):
    lesson_id: str
    config: QuizConfig = Field(default_factory=QuizConfig)


class ContentVariationRequest(BaseModel):
    lesson_id: str
    config: ContentVariationConfig


class EnhancementRequest(BaseModel):
    config: EnhancementConfig


class ImageRequest(BaseModel):
    config: ImageConfig


class FactCheckRequest(BaseModel):
    config: FactCheckConfig


class ResearchRequest(BaseModel):
    config: ResearchConfig


class OptimizationRequest(BaseModel):
    config: OptimizationConfig


class OptimizationSuggestion(BaseModel):
    type: str
    priority: str
    suggestion: str


class OptimizationAnalysis(BaseModel):
    """Free, model-less review of a lesson script."""
    lesson_id: str
    metrics: Dict[str, int]
    suggestions: List[OptimizationSuggestion]
    recommended_actions: List[str]


class JobOutcomeResponse(BaseModel):
    """Synchronous response of a single-job generation request."""
    job_id: str
    job_type: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    credits_used: int
    credits_remaining: int


class GenerationJobResponse(BaseModel):
    """Schema for generation job status."""
    id: str
    owner: str
    job_type: str
    status: str
    course_id: Optional[str] = None
    lesson_id: Optional[str] = None
    batch_id: Optional[str] = None
    config: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    cost: int
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
