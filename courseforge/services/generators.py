"""Generation steps: gateway calls plus deterministic post-processing.

Nothing here touches the database. Each ``generate_*`` function performs
the external calls for one job type and returns validated, typed output;
the orchestrator writes that output to domain entities only after every
step has succeeded.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..exceptions import FailureKind, GenerationFailure, ResearchFailure
from ..models import Course, Lesson
from ..models.content_variation import VariationType
from ..schemas.content import (
    GeneratedBlogPost,
    GeneratedEbookChapter,
    GeneratedLessonPlan,
    GeneratedOutline,
    GeneratedQuiz,
    GeneratedVideoScript,
)
from ..schemas.jobs import (
    EnhancementConfig,
    EnhancementMode,
    LessonPlanConfig,
    OptimizationConfig,
    OptimizationOptions,
    OutlineConfig,
    QuizConfig,
    ResearchMode,
    ScriptConfig,
    VariationOptions,
)
from ..schemas.research import Enrichment
from . import prompts
from .model_gateway import ModelGateway
from .research_gateway import ResearchGateway

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

SCRIPT_OPTIONS = {"temperature": 0.8, "max_tokens": 6000}
CREATIVE_OPTIONS = {"temperature": 0.8}
HUMANIZE_OPTIONS = {"temperature": 0.9}

QUIZ_INSTRUCTIONS = "Answer all questions. Refer to course materials as needed."


def validated(schema: Type[SchemaT], data: Dict[str, Any]) -> SchemaT:
    """Validate parsed model output; a mismatch is a malformed response."""
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise GenerationFailure(
            f"Model response did not match {schema.__name__}: {e.error_count()} validation error(s)",
            kind=FailureKind.MALFORMED_RESPONSE,
        ) from e


# ---------------------------------------------------------------------------
# Text metrics
# ---------------------------------------------------------------------------

def word_count(text: str) -> int:
    return len(text.split())


def speaking_minutes(text: str) -> int:
    """Estimated speaking time at 150 words per minute, rounded."""
    return round(word_count(text) / prompts.WORDS_PER_MINUTE)


def analyze_complexity(text: str) -> Dict[str, float]:
    """Average sentence and word length, and a 0-100 complexity score."""
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    words = text.split()
    avg_sentence = len(words) / len(sentences) if sentences else 0.0
    avg_word = sum(len(w) for w in words) / len(words) if words else 0.0
    score = min(100.0, avg_sentence * 2 + avg_word * 10)
    return {
        "avg_sentence_length": round(avg_sentence, 2),
        "avg_word_length": round(avg_word, 2),
        "complexity_score": round(score, 2),
    }


# ---------------------------------------------------------------------------
# Per job type
# ---------------------------------------------------------------------------

def generate_outline(gateway: ModelGateway, config: OutlineConfig, course: Course) -> GeneratedOutline:
    payload = prompts.outline(
        config,
        title=config.title or course.title,
        description=config.description or course.description or "",
    )
    return validated(GeneratedOutline, gateway.generate_structured(payload))


def outline_duration(outline: GeneratedOutline) -> str:
    """Total duration as stored on the course; summed from lectures if absent."""
    if outline.total_duration not in (None, ""):
        return str(outline.total_duration)
    minutes = 0
    for module in outline.modules:
        for lecture in module.lectures:
            if isinstance(lecture.duration, int):
                minutes += lecture.duration
            elif isinstance(lecture.duration, str) and lecture.duration.strip().isdigit():
                minutes += int(lecture.duration.strip())
    return str(minutes)


def generate_lesson_plan(
    gateway: ModelGateway,
    config: LessonPlanConfig,
    lesson: Lesson,
    course: Optional[Course],
) -> GeneratedLessonPlan:
    context = config.context or prompts.default_lesson_context(course.title if course else None)
    payload = prompts.lesson_plan(config, lesson.title, context)
    return validated(GeneratedLessonPlan, gateway.generate_structured(payload))


def lesson_plan_record(plan: GeneratedLessonPlan, config: LessonPlanConfig) -> Dict[str, Any]:
    """The shape stored on ``Lesson.lesson_plan``."""
    return {
        "introduction": plan.introduction,
        "main_content": [section.model_dump(mode="json") for section in plan.sections],
        "conclusion": plan.summary,
        "duration_minutes": config.duration,
        "materials_needed": plan.materials_needed,
        "key_concepts": [point for section in plan.sections for point in section.key_points],
    }


def generate_script(gateway: ModelGateway, config: ScriptConfig, lesson: Lesson) -> str:
    payload = prompts.script(config, lesson.title, lesson.lesson_plan or {}, lesson.objectives or [])
    return gateway.generate(payload, options=SCRIPT_OPTIONS).strip()


def generate_quiz(gateway: ModelGateway, config: QuizConfig, lesson: Lesson) -> GeneratedQuiz:
    material = lesson.script or ""
    if not material and lesson.lesson_plan:
        material = str(lesson.lesson_plan)
    payload = prompts.quiz(config, lesson.title, material)
    return validated(GeneratedQuiz, gateway.generate_structured(payload))


def quiz_activity(quiz: GeneratedQuiz) -> Dict[str, Any]:
    """Activity appended to ``Lesson.activities`` for a generated quiz."""
    questions = [q.model_dump(mode="json") for q in quiz.questions]
    return {
        "type": "quiz",
        "title": quiz.title,
        "description": quiz.overview,
        "instructions": QUIZ_INSTRUCTIONS,
        "duration_minutes": max(10, round(len(questions) * 2)),
        "assessment_criteria": ["Accuracy", "Completeness"],
        "questions": questions,
        "question_types": question_types(quiz),
    }


def format_youtube_script(video: GeneratedVideoScript) -> str:
    return (
        f"# {video.title}\n\n"
        f"## Hook (0:00 - 0:15)\n{video.hook}\n\n"
        f"## Main Content\n{video.main_content}\n\n"
        f"## Call to Action\n{video.call_to_action}\n\n"
        f"## Tags\n{', '.join(video.tags)}\n"
    )


def generate_variation(
    gateway: ModelGateway,
    variation_type: VariationType,
    options: VariationOptions,
    lesson: Lesson,
) -> tuple[str, Dict[str, Any]]:
    """Return (content, metadata) for one content variation."""
    variation_type = VariationType(variation_type)
    payload = prompts.variation(variation_type, options, lesson.title, lesson.script or "")
    data = gateway.generate_structured(payload, options=CREATIVE_OPTIONS)

    if variation_type == VariationType.YOUTUBE_SCRIPT:
        video = validated(GeneratedVideoScript, data)
        return format_youtube_script(video), {
            "title": video.title,
            "tags": video.tags,
            "thumbnail_prompt": video.thumbnail_prompt,
            "duration": options.duration,
        }
    if variation_type == VariationType.BLOG_POST:
        post = validated(GeneratedBlogPost, data)
        return post.content, {
            "title": post.title,
            "meta_description": post.meta_description,
            "tags": post.tags,
            "image_prompts": post.image_prompts,
        }
    chapter = validated(GeneratedEbookChapter, data)
    return chapter.content, {
        "title": chapter.title,
        "key_takeaways": chapter.key_takeaways,
        "exercises": chapter.exercises,
    }


def generate_enhancement(
    gateway: ModelGateway,
    research: ResearchGateway,
    config: EnhancementConfig,
) -> Dict[str, Any]:
    """Run one enhancement mode. Returns {original_content, enhanced_content, metadata}.

    Research mode treats research as optional: when it is skipped the
    content comes back unchanged and the result says why.
    """
    mode = EnhancementMode(config.mode)
    metadata: Dict[str, Any] = {"mode": mode.value}

    if mode == EnhancementMode.HUMANIZE:
        enhanced = gateway.generate(prompts.humanize(config), options=HUMANIZE_OPTIONS).strip()
        metadata.update(level=config.level.value, content_type=config.content_type.value)

    elif mode == EnhancementMode.SIMPLIFY:
        enhanced = gateway.generate(prompts.simplify(config)).strip()
        metadata.update(
            target_level=config.target_level,
            complexity_before=analyze_complexity(config.content),
            complexity_after=analyze_complexity(enhanced),
        )

    elif mode == EnhancementMode.EXPAND:
        before = word_count(config.content)
        enhanced = gateway.generate(prompts.expand(config, before)).strip()
        metadata.update(
            expansion_factor=config.expansion_factor,
            original_words=before,
            expanded_words=word_count(enhanced),
        )

    else:
        enrichment = research.enrich(
            config.topic or config.content[:100],
            config.content[:500],
            ResearchMode.POST_GENERATION,
        )
        enhanced = config.content
        if enrichment.applied:
            enhanced, enrichment = _apply_research(research, config.content, enrichment)
        metadata["enrichment"] = {"status": enrichment.status, "reason": enrichment.reason}
        if enrichment.applied:
            metadata["sources"] = [s.model_dump(mode="json") for s in enrichment.result.sources]
            metadata["suggestions"] = enrichment.result.suggestions

    return {"original_content": config.content, "enhanced_content": enhanced, "metadata": metadata}


def _apply_research(
    research: ResearchGateway,
    content: str,
    enrichment: Enrichment,
) -> tuple[str, Enrichment]:
    try:
        return research.enhance_content(content, enrichment.result.findings), enrichment
    except ResearchFailure as e:
        logger.warning("Research enhancement skipped: %s", e.message)
        return content, Enrichment(status="skipped", reason=e.message)


def question_types(quiz: GeneratedQuiz) -> List[str]:
    return sorted({q.type for q in quiz.questions})


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------

OPTIMIZE_TEMPERATURE = 0.7
OPTIMIZE_MAX_TOKENS = 8000

_EXAMPLE_RE = re.compile(r"for example|such as|instance", re.I)
_LIST_ITEM_RE = re.compile(r"^\s*[-*•]", re.M)
_PARAGRAPH_RE = re.compile(r"\n\n+")


def generate_optimization(gateway: ModelGateway, config: OptimizationConfig, content: str) -> Dict[str, Any]:
    """Optimize *content* per the options. Returns {optimized_content, improvements, metrics}."""
    options = {
        "temperature": OPTIMIZE_TEMPERATURE,
        "max_tokens": min(len(content) * 2, OPTIMIZE_MAX_TOKENS),
    }
    optimized = gateway.generate(prompts.optimize(config.options, content), options=options).strip()
    if not optimized:
        raise GenerationFailure("Model returned no optimized content", kind=FailureKind.MALFORMED_RESPONSE)
    return {
        "content_type": config.content_type.value,
        "original_content": content,
        "optimized_content": optimized,
        "improvements": analyze_improvements(content, optimized, config.options),
        "metrics": {
            "original_length": len(content),
            "optimized_length": len(optimized),
            "change_percent": round(abs(len(optimized) - len(content)) / len(content) * 100, 1),
        },
    }


def analyze_improvements(original: str, optimized: str, options: OptimizationOptions) -> List[str]:
    """Human-readable list of what changed between *original* and *optimized*."""
    improvements = []
    if len(optimized) < len(original) * 0.8:
        improvements.append("Made content 20% more concise")
    elif len(optimized) > len(original) * 1.2:
        improvements.append("Added 20% more detail and depth")

    if len(_PARAGRAPH_RE.split(optimized)) > len(_PARAGRAPH_RE.split(original)):
        improvements.append("Improved content structure with better paragraphing")
    if "#" in optimized and "#" not in original:
        improvements.append("Added section headings for better navigation")
    if _EXAMPLE_RE.search(optimized) and not _EXAMPLE_RE.search(original):
        improvements.append("Added practical examples")
    if optimized.count("?") > original.count("?"):
        improvements.append("Added engaging questions")
    if len(_LIST_ITEM_RE.findall(optimized)) > len(_LIST_ITEM_RE.findall(original)):
        improvements.append("Organized information into lists")

    if options.clarity:
        improvements.append("Enhanced clarity and readability")
    if options.seo:
        improvements.append("Optimized for search engines")
    if options.accessibility:
        improvements.append("Improved accessibility")
    if options.tone:
        improvements.append(f"Adjusted tone to be {options.tone.value}")
    return improvements


def content_metrics(text: str) -> Dict[str, int]:
    words = word_count(text)
    sentences = len([s for s in re.split(r"[.!?]+", text) if s.strip()])
    return {
        "word_count": words,
        "reading_minutes": -(-words // 200),
        "sentence_count": sentences,
        "paragraph_count": len(_PARAGRAPH_RE.split(text.strip())) if text.strip() else 0,
        "avg_sentence_length": round(words / sentences) if sentences else 0,
    }


def optimization_suggestions(text: str, title: Optional[str] = None) -> List[Dict[str, str]]:
    """Rule-based suggestions for a script, cheapest checks first. No model call."""
    metrics = content_metrics(text)
    suggestions = []
    if metrics["avg_sentence_length"] > 20:
        suggestions.append({
            "type": "clarity",
            "priority": "high",
            "suggestion": "Consider breaking up long sentences for better readability",
        })
    if metrics["paragraph_count"] < 5 and metrics["word_count"] > 500:
        suggestions.append({
            "type": "structure",
            "priority": "medium",
            "suggestion": "Add more paragraph breaks to improve visual flow",
        })
    if "?" not in text:
        suggestions.append({
            "type": "engagement",
            "priority": "low",
            "suggestion": "Consider adding questions to engage readers",
        })
    if not _EXAMPLE_RE.search(text) and metrics["word_count"] > 300:
        suggestions.append({
            "type": "depth",
            "priority": "medium",
            "suggestion": "Add practical examples to illustrate concepts",
        })
    if title and title.lower() not in text.lower():
        suggestions.append({
            "type": "seo",
            "priority": "high",
            "suggestion": "Include the lesson title in the content for better SEO",
        })
    return suggestions
