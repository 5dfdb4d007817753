"""Course and lesson models: the artifacts generation jobs write into."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class ContentStatus(str, enum.Enum):
    """Mirrors the completion of the job that last wrote the entity."""
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class Course(Base):
    __tablename__ = "courses"

    id = Column(String(50), primary_key=True)
    owner = Column(String(255), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    topic = Column(String(500), nullable=True)
    target_audience = Column(String(255), nullable=True)
    difficulty = Column(String(50), nullable=True)

    # {modules, duration, target_audience, learning_objectives, prerequisites}
    outline = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=ContentStatus.DRAFT.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lessons = relationship(
        "Lesson",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Lesson.order_index",
    )


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(String(50), primary_key=True)
    course_id = Column(String(50), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)

    objectives = Column(JSON, nullable=True)
    # {introduction, main_content, conclusion, duration_minutes, materials_needed, key_concepts}
    lesson_plan = Column(JSON, nullable=True)
    script = Column(Text, nullable=True)
    activities = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=ContentStatus.DRAFT.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    course = relationship("Course", back_populates="lessons")
