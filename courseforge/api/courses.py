"""Course and lesson endpoints: the domain entities generation jobs write into."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_owner
from ..database import get_db
from ..exceptions import NotFoundError
from ..repositories import CourseRepository, LessonRepository, VariationRepository
from ..schemas.course import (
    CourseCreate,
    CourseResponse,
    LessonCreate,
    LessonResponse,
    VariationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses", tags=["courses"])


@router.post("", response_model=CourseResponse, status_code=201)
def create_course(
    data: CourseCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    course = CourseRepository(db).create(auth.owner, data)
    db.commit()
    db.refresh(course)
    logger.info(f"Created course {course.id} for {auth.owner}")
    return course


@router.get("", response_model=List[CourseResponse])
def list_courses(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    return CourseRepository(db).list_for_owner(auth.owner, limit)


@router.get("/{course_id}", response_model=CourseResponse)
def get_course(
    course_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    return CourseRepository(db).get_owned(course_id, auth.owner)


@router.post("/{course_id}/lessons", response_model=LessonResponse, status_code=201)
def add_lesson(
    course_id: str,
    data: LessonCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    """Append a lesson; ``order_index`` defaults to the end of the course."""
    course = CourseRepository(db).get_owned(course_id, auth.owner)
    lesson = LessonRepository(db).create(course, data)
    db.commit()
    db.refresh(lesson)
    return lesson


@router.get("/{course_id}/lessons/{lesson_id}/variations", response_model=List[VariationResponse])
def list_variations(
    course_id: str,
    lesson_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    lesson = LessonRepository(db).get_owned(lesson_id, auth.owner)
    if lesson.course_id != course_id:
        raise NotFoundError("lesson", lesson_id)
    return [
        VariationResponse(
            id=v.id,
            lesson_id=v.lesson_id,
            variation_type=v.variation_type,
            content=v.content,
            metadata=v.variation_metadata,
            version_count=len(v.versions),
            created_at=v.created_at,
        )
        for v in VariationRepository(db).list_for_lesson(lesson.id)
    ]
