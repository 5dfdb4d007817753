"""Prompt builders for every generation job.

Each builder returns a Model Gateway payload: ``{"system": ..., "prompt": ...}``.
Structured builders spell out the JSON keys that the matching schema in
``schemas.content`` validates.
"""

import json
from typing import List, Optional

from ..schemas.jobs import (
    ContentKind,
    EnhancementConfig,
    HumanizeLevel,
    LessonPlanConfig,
    OptimizationOptions,
    OutlineConfig,
    QuizConfig,
    ScriptConfig,
    VariationOptions,
)
from ..models.content_variation import VariationType

WORDS_PER_MINUTE = 150

_JSON_ONLY = "Respond with a single JSON object and nothing else."

COURSE_DESIGNER = (
    "You are an expert instructional designer who builds clear, well-sequenced "
    "online courses. " + _JSON_ONLY
)


def outline(config: OutlineConfig, title: str, description: str) -> dict:
    return {
        "system": COURSE_DESIGNER,
        "prompt": (
            f"Create a course outline.\n"
            f"Title: {title}\n"
            f"Description: {description}\n"
            f"Topic: {config.topic or title}\n"
            f"Target audience: {config.target_audience}\n"
            f"Difficulty: {config.difficulty}\n"
            f"Desired duration: {config.duration or 'flexible'}\n\n"
            "JSON keys: title, description, modules (list of {title, description, "
            "lectures: list of {title, description, duration}}), total_duration, "
            "learning_objectives (list), prerequisites (list)."
        ),
    }


def lesson_plan(config: LessonPlanConfig, lesson_title: str, context: str) -> dict:
    objectives = "\n".join(f"- {o}" for o in config.objectives)
    return {
        "system": COURSE_DESIGNER,
        "prompt": (
            f"Write a {config.duration}-minute lesson plan for \"{lesson_title}\".\n"
            f"Context: {context}\n"
            f"Learning objectives:\n{objectives}\n\n"
            "JSON keys: introduction, sections (list of {title, content, key_points}), "
            "activity ({type, title, description, instructions, duration_minutes}), "
            "summary, objectives (list), materials_needed (list)."
        ),
    }


def script(config: ScriptConfig, lesson_title: str, plan: dict, objectives: List[str]) -> dict:
    target_words = config.duration * WORDS_PER_MINUTE
    return {
        "system": (
            "You are an engaging educator writing video lecture scripts. "
            "Write only the words to be spoken."
        ),
        "prompt": (
            f"Write a {config.style} lecture script for \"{lesson_title}\".\n"
            f"Target length: about {target_words} words ({config.duration} minutes at "
            f"{WORDS_PER_MINUTE} words per minute).\n"
            f"Objectives: {', '.join(objectives) or 'n/a'}\n"
            f"Lesson plan:\n{json.dumps(plan, indent=2)}"
        ),
    }


def quiz(config: QuizConfig, lesson_title: str, material: str) -> dict:
    types = ", ".join(t.value for t in config.question_types)
    return {
        "system": "You are an assessment designer writing fair, unambiguous questions. " + _JSON_ONLY,
        "prompt": (
            f"Write a {config.difficulty} quiz of exactly {config.question_count} questions "
            f"for the lesson \"{lesson_title}\".\n"
            f"Use a mix of these question types: {types}.\n"
            f"Lesson material:\n{material[:6000]}\n\n"
            "JSON keys: title, overview, questions (list of {type, question, options, "
            "correct_answer, explanation})."
        ),
    }


def variation(
    variation_type: VariationType,
    options: VariationOptions,
    lesson_title: str,
    lesson_script: str,
) -> dict:
    audience = options.target_audience or "general audience"
    tone = options.tone or "engaging"
    if variation_type == VariationType.YOUTUBE_SCRIPT:
        shape = (
            f"Adapt it into a {options.duration}-minute YouTube video script.\n"
            "JSON keys: title, hook, main_content, call_to_action, tags (list), thumbnail_prompt."
        )
    elif variation_type == VariationType.BLOG_POST:
        keywords = ", ".join(options.seo_keywords) or "none"
        shape = (
            f"Adapt it into an SEO-friendly blog post. SEO keywords: {keywords}.\n"
            "JSON keys: title, meta_description, content (markdown), tags (list), image_prompts (list)."
        )
    else:
        previous = options.previous_context or "This is the first chapter."
        shape = (
            f"Adapt it into an ebook chapter. Previous chapter context: {previous}\n"
            "JSON keys: title, content (markdown), key_takeaways (list), exercises (list)."
        )
    return {
        "system": "You repurpose educational material across formats. " + _JSON_ONLY,
        "prompt": (
            f"Source lesson: \"{lesson_title}\". Audience: {audience}. Tone: {tone}.\n"
            f"{shape}\n\nLesson script:\n{lesson_script}"
        ),
    }


_HUMANIZE_FRAMING = {
    HumanizeLevel.LIGHT: (
        "Lightly polish the text so it reads naturally. Keep structure and wording "
        "mostly intact; smooth awkward phrasing only."
    ),
    HumanizeLevel.MODERATE: (
        "Rewrite the text in a natural, conversational human voice. Vary sentence "
        "length, add transitions, and remove robotic phrasing while keeping every fact."
    ),
    HumanizeLevel.HEAVY: (
        "Thoroughly rewrite the text as an experienced teacher would say it: personal "
        "asides, rhetorical questions, and concrete examples, keeping every fact."
    ),
}

_CONTENT_KIND_NAMES = {
    ContentKind.SCRIPT: "video script",
    ContentKind.BLOG: "blog post",
    ContentKind.EBOOK: "ebook chapter",
}


def humanize(config: EnhancementConfig) -> dict:
    return {
        "system": _HUMANIZE_FRAMING[config.level] + " Return only the rewritten text.",
        "prompt": f"Rewrite this {_CONTENT_KIND_NAMES[config.content_type]}:\n\n{config.content}",
    }


def simplify(config: EnhancementConfig) -> dict:
    return {
        "system": (
            f"You simplify educational content for a {config.target_level} reader: "
            "shorter sentences, plain words, and defined jargon. Return only the text."
        ),
        "prompt": f"Simplify this content:\n\n{config.content}",
    }


def expand(config: EnhancementConfig, current_words: int) -> dict:
    target = round(current_words * config.expansion_factor)
    return {
        "system": (
            "You expand educational content with examples, explanations and detail "
            "while keeping its voice. Return only the text."
        ),
        "prompt": (
            f"Expand this content from about {current_words} to about {target} words:\n\n"
            f"{config.content}"
        ),
    }


def default_lesson_context(course_title: Optional[str]) -> str:
    return f"Part of course: {course_title}" if course_title else "Standalone lesson"


# Requirement lines for optimization, in prompt order.
_OPTIMIZATION_GOALS = [
    ("clarity", "Improve clarity and readability"),
    ("engagement", "Enhance engagement and reader interest"),
    ("seo", "Optimize for search engines"),
    ("accessibility", "Improve accessibility for all readers"),
    ("conciseness", "Make more concise without losing key information"),
    ("depth", "Add more depth and detailed explanations"),
    ("add_examples", "Add practical examples"),
    ("add_statistics", "Include relevant statistics and data"),
    ("add_quotes", "Add expert quotes where appropriate"),
    ("add_visuals", "Suggest places for visual content"),
    ("add_call_to_action", "Add compelling calls to action"),
    ("restructure", "Reorganize for better flow"),
    ("add_headings", "Add or improve section headings"),
    ("add_summary", "Add an executive summary"),
    ("add_key_points", "Highlight key takeaways"),
]


def optimization_requirements(options: OptimizationOptions) -> List[str]:
    requirements = [text for field, text in _OPTIMIZATION_GOALS[:6] if getattr(options, field)]
    if options.tone:
        requirements.append(f"Adjust tone to be {options.tone.value}")
    if options.reading_level:
        requirements.append(f"Target {options.reading_level.value} reading level")
    requirements.extend(text for field, text in _OPTIMIZATION_GOALS[6:] if getattr(options, field))
    return requirements or ["Improve overall quality and effectiveness"]


def optimize(options: OptimizationOptions, content: str) -> dict:
    numbered = "\n".join(f"{i}. {r}" for i, r in enumerate(optimization_requirements(options), 1))
    return {
        "system": "You are an editor who optimizes educational content. Return only the optimized text.",
        "prompt": (
            f"Optimize the following content based on these requirements:\n\n{numbered}\n\n"
            f"Original Content:\n{content}\n\n"
            "Provide the optimized version that addresses all requirements while "
            "maintaining the core message and facts."
        ),
    }
