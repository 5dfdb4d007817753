"""Job store: durable lifecycle of generation jobs."""

import uuid
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..database import utcnow
from ..exceptions import InvalidTransitionError, NotFoundError
from ..models.generation_job import GenerationJob, JobStatus, JobType

logger = logging.getLogger(__name__)


class JobService:
    """
    Manages the lifecycle of generation jobs.

    Jobs are created in ``pending``, started by the orchestrator, and end
    in ``completed`` or ``failed``. ``started_at`` is written only by
    ``start`` and ``completed_at`` only on entry to a terminal state, so
    both are set exactly once per attempt. Moving out of a terminal state
    is only possible through the explicit ``reset_for_retry``.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner: str,
        job_type: JobType,
        config: Dict[str, Any],
        course_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        cost: int = 0,
        prepaid: bool = False,
        commit: bool = True,
    ) -> GenerationJob:
        """Persist a new job in ``pending``."""
        job = GenerationJob(
            id=str(uuid.uuid4()),
            owner=owner,
            job_type=JobType(job_type).value,
            status=JobStatus.PENDING.value,
            config=config,
            course_id=course_id,
            lesson_id=lesson_id,
            batch_id=batch_id,
            cost=cost,
            prepaid=prepaid,
        )
        self.db.add(job)
        if commit:
            self.db.commit()
            self.db.refresh(job)
        else:
            self.db.flush()

        logger.info(f"Created {job.job_type} job {job.id} for {owner}")
        return job

    def _load(self, job_id: str) -> GenerationJob:
        job = self.db.get(GenerationJob, job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def start(self, job_id: str) -> GenerationJob:
        """pending -> processing.

        Conditional UPDATE, so of two callers racing to start the same job
        exactly one wins and the other gets InvalidTransitionError.
        """
        result = self.db.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PENDING.value)
            .values(status=JobStatus.PROCESSING.value, started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        job = self._load(job_id)
        self.db.refresh(job)
        if result.rowcount != 1:
            raise InvalidTransitionError(job_id, job.status, JobStatus.PROCESSING.value)

        logger.info(f"Started job {job_id}")
        return job

    def complete(self, job_id: str, result: Dict[str, Any], commit: bool = True) -> GenerationJob:
        """processing -> completed, storing *result*.

        With ``commit=False`` the change is only flushed, letting the caller
        commit it together with the job's domain writes.
        """
        job = self._load(job_id)
        if job.status != JobStatus.PROCESSING.value:
            raise InvalidTransitionError(job_id, job.status, JobStatus.COMPLETED.value)
        if not result:
            raise ValueError("A completed job must carry a non-empty result")

        job.status = JobStatus.COMPLETED.value
        job.result = result
        job.error_message = None
        job.completed_at = utcnow()
        if commit:
            self.db.commit()
            self.db.refresh(job)
        else:
            self.db.flush()

        logger.info(f"Job {job_id} completed successfully")
        return job

    def fail(self, job_id: str, error_message: str) -> GenerationJob:
        """processing -> failed with a human-readable message."""
        job = self._load(job_id)
        if job.status != JobStatus.PROCESSING.value:
            raise InvalidTransitionError(job_id, job.status, JobStatus.FAILED.value)

        job.status = JobStatus.FAILED.value
        job.result = None
        job.error_message = error_message or "Unknown error"
        job.completed_at = utcnow()
        self.db.commit()
        self.db.refresh(job)

        logger.warning(f"Job {job_id} failed: {job.error_message}")
        return job

    def reset_for_retry(self, job_id: str, owner: str) -> GenerationJob:
        """failed -> pending, keeping the original config.

        Clears the previous attempt's timestamps and error so the next
        attempt records its own.
        """
        job = self.get(job_id, owner)
        if job.status != JobStatus.FAILED.value:
            raise InvalidTransitionError(job_id, job.status, JobStatus.PENDING.value)

        job.status = JobStatus.PENDING.value
        job.error_message = None
        job.result = None
        job.started_at = None
        job.completed_at = None
        self.db.commit()
        self.db.refresh(job)

        logger.info(f"Job {job_id} reset to pending for retry")
        return job

    def get(self, job_id: str, owner: Optional[str] = None) -> GenerationJob:
        """Get a job by id; another owner's job is reported as not found."""
        job = self.db.get(GenerationJob, job_id)
        if job is None or job.deleted_at is not None or (owner is not None and job.owner != owner):
            raise NotFoundError("job", job_id)
        return job

    def list_for_owner(
        self,
        owner: str,
        limit: int = 20,
        job_type: Optional[JobType] = None,
    ) -> List[GenerationJob]:
        """Get recent jobs for an owner, newest first."""
        query = self.db.query(GenerationJob).filter(
            GenerationJob.owner == owner,
            GenerationJob.deleted_at.is_(None),
        )
        if job_type is not None:
            query = query.filter(GenerationJob.job_type == JobType(job_type).value)
        return query.order_by(GenerationJob.created_at.desc()).limit(limit).all()

    def list_for_batch(self, batch_id: str, owner: Optional[str] = None) -> List[GenerationJob]:
        query = self.db.query(GenerationJob).filter(GenerationJob.batch_id == batch_id)
        if owner is not None:
            query = query.filter(GenerationJob.owner == owner)
        return query.order_by(GenerationJob.created_at.asc()).all()

    def batch_status(self, batch_id: str, owner: str) -> Dict[str, Any]:
        """Per-status member counts of a batch. NotFoundError if it has none."""
        rows = (
            self.db.query(GenerationJob.status, func.count(GenerationJob.id))
            .filter(GenerationJob.batch_id == batch_id, GenerationJob.owner == owner)
            .group_by(GenerationJob.status)
            .all()
        )
        if not rows:
            raise NotFoundError("batch", batch_id)
        counts = {status.value: 0 for status in JobStatus}
        counts.update({status: count for status, count in rows})
        total = sum(counts.values())
        settled = counts[JobStatus.COMPLETED.value] + counts[JobStatus.FAILED.value]
        return {
            "batch_id": batch_id,
            "total": total,
            **counts,
            "percent_complete": round(settled / total * 100),
        }

    def soft_delete(self, job_id: str, owner: str) -> GenerationJob:
        """Hide a job from listings. The row stays for the audit trail."""
        job = self.get(job_id, owner)
        job.deleted_at = utcnow()
        self.db.commit()
        logger.info(f"Job {job_id} marked deleted")
        return job

    def find_orphans(self, older_than_seconds: int, limit: int = 10) -> List[GenerationJob]:
        """Oldest non-batch pending jobs created more than N seconds ago.

        Such a job lost the request that created it (or was reset for retry
        without being re-run). The caller executes it through the
        orchestrator, whose conditional ``start`` settles any race.
        """
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        return (
            self.db.query(GenerationJob)
            .filter(
                GenerationJob.status == JobStatus.PENDING.value,
                GenerationJob.batch_id.is_(None),
                GenerationJob.deleted_at.is_(None),
                GenerationJob.created_at < cutoff,
            )
            .order_by(GenerationJob.created_at.asc())
            .limit(limit)
            .all()
        )

    def list_processing(
        self,
        course_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
    ) -> List[GenerationJob]:
        """Jobs currently processing against a course or a lesson."""
        query = self.db.query(GenerationJob).filter(GenerationJob.status == JobStatus.PROCESSING.value)
        if course_id is not None:
            query = query.filter(GenerationJob.course_id == course_id)
        if lesson_id is not None:
            query = query.filter(GenerationJob.lesson_id == lesson_id)
        return query.all()

    def find_stale(self, older_than_seconds: int) -> List[GenerationJob]:
        """Jobs stuck in ``processing`` longer than the timeout."""
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        return (
            self.db.query(GenerationJob)
            .filter(
                GenerationJob.status == JobStatus.PROCESSING.value,
                GenerationJob.started_at < cutoff,
            )
            .order_by(GenerationJob.started_at.asc())
            .all()
        )

    def fail_stale(self, older_than_seconds: int, message: Optional[str] = None) -> int:
        """Administratively fail every stale processing job. Returns the count."""
        stale = self.find_stale(older_than_seconds)
        for job in stale:
            self.fail(job.id, message or f"Timed out after {older_than_seconds}s in processing")
        if stale:
            logger.warning(f"Swept {len(stale)} stale processing job(s)")
        return len(stale)
