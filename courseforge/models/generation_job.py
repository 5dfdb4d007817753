"""Generation job model: the durable record of every generation request."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text

from ..database import Base, utcnow


class JobType(str, enum.Enum):
    """Closed set of job types. Each has a typed config in schemas.jobs."""
    OUTLINE = "outline"
    LESSON_PLAN = "lesson_plan"
    SCRIPT = "script"
    QUIZ = "quiz"
    CONTENT_VARIATION = "content_variation"
    ENHANCEMENT = "enhancement"
    IMAGE = "image"
    FACT_CHECK = "fact_check"
    RESEARCH = "research"
    OPTIMIZATION = "optimization"
    BATCH_MEMBER = "batch_member"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


class GenerationJob(Base):
    """
    Tracks one generation request from admission to a terminal state.

    Status transitions: pending -> processing -> completed | failed.
    A failed job may be reset to pending by an explicit retry. Rows are
    never deleted; ``deleted_at`` hides a job from listings.
    """

    __tablename__ = "generation_jobs"

    id = Column(String(50), primary_key=True)

    # Canonical ledger key of the requesting entity
    owner = Column(String(255), nullable=False, index=True)

    # Optional parent entities
    course_id = Column(String(50), nullable=True, index=True)
    lesson_id = Column(String(50), nullable=True, index=True)

    job_type = Column(String(30), nullable=False)

    # Allowed values: pending, processing, completed, failed
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)

    config = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    # BatchRun correlation: every member of one batch shares this id
    batch_id = Column(String(50), nullable=True, index=True)

    # Fixed price of the job; prepaid jobs were debited before they ran
    cost = Column(Integer, nullable=False, default=0)
    prepaid = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
