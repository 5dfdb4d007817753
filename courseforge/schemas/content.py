"""Shapes of structured model output.

Each generator asks the model for JSON with these keys; the parsed dict is
validated here before anything touches a domain entity. Fields default
generously so a response that omits an optional part still validates.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class OutlineLecture(BaseModel):
    title: str
    description: str = ""
    duration: Optional[Union[int, str]] = None


class OutlineModule(BaseModel):
    title: str
    description: str = ""
    lectures: List[OutlineLecture] = Field(default_factory=list)


class GeneratedOutline(BaseModel):
    title: str = ""
    description: str = ""
    modules: List[OutlineModule] = Field(min_length=1)
    total_duration: Optional[Union[int, str]] = None
    learning_objectives: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)


class LessonSection(BaseModel):
    title: str
    content: str = ""
    key_points: List[str] = Field(default_factory=list)


class LessonActivity(BaseModel):
    type: str = "exercise"
    title: str
    description: str = ""
    instructions: str = ""
    duration_minutes: Optional[int] = None


class GeneratedLessonPlan(BaseModel):
    introduction: str
    sections: List[LessonSection] = Field(default_factory=list)
    activity: Optional[LessonActivity] = None
    summary: str = ""
    objectives: List[str] = Field(default_factory=list)
    materials_needed: List[str] = Field(default_factory=list)


class QuizQuestion(BaseModel):
    type: str
    question: str
    options: Optional[List[str]] = None
    correct_answer: Any = None
    explanation: str = ""


class GeneratedQuiz(BaseModel):
    title: str = "Lesson Quiz"
    overview: str = ""
    questions: List[QuizQuestion] = Field(min_length=1)


class GeneratedVideoScript(BaseModel):
    title: str
    hook: str = ""
    main_content: str
    call_to_action: str = ""
    tags: List[str] = Field(default_factory=list)
    thumbnail_prompt: str = ""


class GeneratedBlogPost(BaseModel):
    title: str
    meta_description: str = ""
    content: str
    tags: List[str] = Field(default_factory=list)
    image_prompts: List[str] = Field(default_factory=list)


class GeneratedEbookChapter(BaseModel):
    title: str
    content: str
    key_takeaways: List[str] = Field(default_factory=list)
    exercises: List[str] = Field(default_factory=list)


def dump(model: BaseModel) -> Dict[str, Any]:
    """JSON-safe dict for storage on a JSON column."""
    return model.model_dump(mode="json")
