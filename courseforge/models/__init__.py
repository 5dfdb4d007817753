"""Database models."""

from .generation_job import GenerationJob, JobType, JobStatus, TERMINAL_STATUSES
from .credit_account import CreditAccount
from .course import Course, Lesson, ContentStatus
from .content_variation import ContentVariation, ContentVersion, VariationType
from .artifacts import GeneratedImage, FactCheckRecord

__all__ = [
    "GenerationJob", "JobType", "JobStatus", "TERMINAL_STATUSES",
    "CreditAccount",
    "Course", "Lesson", "ContentStatus",
    "ContentVariation", "ContentVersion", "VariationType",
    "GeneratedImage", "FactCheckRecord",
]
