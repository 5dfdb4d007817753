"""Course and lesson persistence, including the generation claim."""

import uuid
from typing import List, Optional, Type

from sqlalchemy import func, update
from sqlalchemy.orm import Query

from ..database import Base, utcnow
from ..models import ContentStatus, Course, Lesson
from ..schemas.course import CourseCreate, LessonCreate
from .base import BaseRepository


def claim_for_generation(db, model: Type[Base], entity_id: str) -> bool:
    """Atomically move an entity to ``generating``.

    Returns False when it is already generating, i.e. another job owns it.
    Commits so the claim is visible to concurrent requests immediately.
    """
    result = db.execute(
        update(model)
        .where(model.id == entity_id, model.status != ContentStatus.GENERATING.value)
        .values(status=ContentStatus.GENERATING.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def set_status(db, model: Type[Base], entity_id: str, status: ContentStatus) -> None:
    """Set an entity's status without committing."""
    db.execute(
        update(model)
        .where(model.id == entity_id)
        .values(status=status.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


class CourseRepository(BaseRepository[Course]):
    model_class = Course
    entity_kind = "course"

    def create(self, owner: str, data: CourseCreate) -> Course:
        course = Course(
            id=str(uuid.uuid4()),
            owner=owner,
            title=data.title,
            description=data.description,
            topic=data.topic or data.title,
            target_audience=data.target_audience,
            difficulty=data.difficulty,
            status=ContentStatus.DRAFT.value,
        )
        self.db.add(course)
        self.db.flush()
        return course

    def list_for_owner(self, owner: str, limit: int = 50) -> List[Course]:
        return (
            self.db.query(Course)
            .filter(Course.owner == owner)
            .order_by(Course.created_at.desc())
            .limit(limit)
            .all()
        )


class LessonRepository(BaseRepository[Lesson]):
    model_class = Lesson
    entity_kind = "lesson"

    def _owner_filter(self, query: Query, owner: str) -> Query:
        return query.join(Course, Course.id == Lesson.course_id).filter(Course.owner == owner)

    def create(self, course: Course, data: LessonCreate) -> Lesson:
        order_index = data.order_index
        if order_index is None:
            current = (
                self.db.query(func.max(Lesson.order_index))
                .filter(Lesson.course_id == course.id)
                .scalar()
            )
            order_index = 0 if current is None else current + 1
        lesson = Lesson(
            id=str(uuid.uuid4()),
            course_id=course.id,
            title=data.title,
            order_index=order_index,
            objectives=list(data.objectives),
            activities=[],
            status=ContentStatus.DRAFT.value,
        )
        self.db.add(lesson)
        self.db.flush()
        return lesson

    def list_for_course(self, course_id: str) -> List[Lesson]:
        return (
            self.db.query(Lesson)
            .filter(Lesson.course_id == course_id)
            .order_by(Lesson.order_index.asc())
            .all()
        )

    def scripted_for_course(self, course_id: str) -> List[Lesson]:
        """Lessons of a course that have a non-empty script, in course order."""
        return [lesson for lesson in self.list_for_course(course_id) if has_script(lesson)]


def has_script(lesson: Optional[Lesson]) -> bool:
    return bool(lesson is not None and lesson.script and lesson.script.strip())
