"""Repository layer for database operations."""

from .base import BaseRepository
from .course_repository import CourseRepository, LessonRepository
from .content_repository import VariationRepository, ImageRepository, FactCheckRepository

__all__ = [
    "BaseRepository",
    "CourseRepository",
    "LessonRepository",
    "VariationRepository",
    "ImageRepository",
    "FactCheckRepository",
]
