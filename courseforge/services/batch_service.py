"""Batch coordinator: many content variations under one prepaid batch.

A batch is admitted and paid for as a whole in the request session
(``prepare``), then its member jobs run in windows of parallel workers
(``run``), typically from a FastAPI background task. Each member runs in
its own session through the orchestrator's ``execute``; one member failing
never affects the others.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..exceptions import PreconditionFailedError, ValidationError
from ..models import JobStatus, JobType, VariationType
from ..repositories import CourseRepository, LessonRepository
from ..repositories.course_repository import has_script
from ..schemas.batch import BatchItem, BatchPlan, BatchSummary
from ..schemas.jobs import BatchMemberConfig
from .credit_service import BATCH_CREDITS_PER_ITEM, CreditLedger
from .job_service import JobService
from .notification_service import Notifier, notify_safely
from .orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Admits batches and runs their members in sequential windows.

    Args:
        db: Request session used by ``prepare`` and ``expand_course``.
        session_factory: Builds a fresh session; one per member and one for
            bookkeeping in ``run``.
        orchestrator_factory: ``(session) -> GenerationOrchestrator``.
        notifier: Receives one ``batch_generation_complete`` per run.
        window_size: Members running in parallel per window.
        window_delay: Seconds to pause between windows.
    """

    def __init__(
        self,
        db: Session,
        session_factory: Callable[[], Session],
        orchestrator_factory: Callable[[Session], GenerationOrchestrator],
        notifier: Notifier,
        window_size: int = 5,
        window_delay: float = 1.0,
        initial_credits: Optional[int] = None,
    ):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.db = db
        self.session_factory = session_factory
        self.orchestrator_factory = orchestrator_factory
        self.notifier = notifier
        self.window_size = window_size
        self.window_delay = window_delay
        self.ledger = CreditLedger(db, initial_credits)

    def expand_course(
        self,
        owner: str,
        course_id: str,
        variation_types: Sequence[VariationType],
    ) -> List[BatchItem]:
        """One item per scripted lesson of the course and variation type."""
        course = CourseRepository(self.db).get_owned(course_id, owner)
        lessons = LessonRepository(self.db).scripted_for_course(course.id)
        if not lessons:
            raise PreconditionFailedError(
                "Course has no lessons with a script",
                details={"course_id": course.id},
            )
        return [
            BatchItem(lesson_id=lesson.id, variation_type=variation_type)
            for lesson in lessons
            for variation_type in variation_types
        ]

    def prepare(self, owner: str, items: Sequence[BatchItem]) -> BatchPlan:
        """Validate every item, debit the whole batch and create its member jobs.

        Nothing is written unless every lesson is owned by *owner*, has a
        script, and the balance covers the total. The debit and the member
        jobs are committed together.
        """
        if not items:
            raise ValidationError("A batch needs at least one item", "items")

        lessons_repo = LessonRepository(self.db)
        lessons = {}
        for item in items:
            if item.lesson_id in lessons:
                continue
            lesson = lessons_repo.get_owned(item.lesson_id, owner)
            if not has_script(lesson):
                raise PreconditionFailedError(
                    "Lesson has no script to create a variation from",
                    details={"lesson_id": lesson.id},
                )
            lessons[lesson.id] = lesson

        total = BATCH_CREDITS_PER_ITEM * len(items)
        self.ledger.require_balance(owner, total)

        batch_id = str(uuid.uuid4())
        jobs = JobService(self.db)
        job_ids = []
        try:
            account = self.ledger.debit(owner, total, commit=False)
            for item in items:
                lesson = lessons[item.lesson_id]
                config = BatchMemberConfig(
                    batch_id=batch_id,
                    lesson_id=lesson.id,
                    lesson_title=lesson.title,
                    variation_type=item.variation_type,
                    options=item.options,
                )
                job = jobs.create(
                    owner,
                    JobType.BATCH_MEMBER,
                    config.model_dump(mode="json"),
                    course_id=lesson.course_id,
                    lesson_id=lesson.id,
                    batch_id=batch_id,
                    cost=BATCH_CREDITS_PER_ITEM,
                    prepaid=True,
                    commit=False,
                )
                job_ids.append(job.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Prepared batch {batch_id} for {owner}: {len(job_ids)} jobs, {total} credits")
        return BatchPlan(
            batch_id=batch_id,
            owner=owner,
            job_ids=job_ids,
            estimated_credits=total,
            credits_remaining=account.credits_remaining,
        )

    def run(self, plan: BatchPlan) -> BatchSummary:
        """Execute the plan's members window by window and report the totals."""
        succeeded = failed = 0
        total = len(plan.job_ids)

        for offset in range(0, total, self.window_size):
            if offset and self.window_delay > 0:
                time.sleep(self.window_delay)
            window = plan.job_ids[offset:offset + self.window_size]
            logger.info(f"Batch {plan.batch_id}: window of {len(window)} starting at {offset}")

            with ThreadPoolExecutor(max_workers=len(window)) as executor:
                futures = {executor.submit(self._run_member, job_id): job_id for job_id in window}
                for future in as_completed(futures):
                    try:
                        ok = future.result()
                    except Exception as e:
                        logger.error("Batch member %s failed: %s", futures[future], e)
                        ok = False
                    if ok:
                        succeeded += 1
                    else:
                        failed += 1

        summary = BatchSummary(batch_id=plan.batch_id, total=total, succeeded=succeeded, failed=failed)
        logger.info(f"Batch {plan.batch_id} finished: {succeeded} succeeded, {failed} failed")
        notify_safely(self.notifier.notify_batch_complete, plan.owner, summary.model_dump())
        return summary

    def submit_batch(self, owner: str, items: Sequence[BatchItem]) -> BatchSummary:
        return self.run(self.prepare(owner, items))

    def _run_member(self, job_id: str) -> bool:
        """Run one member in its own session. True when it completed."""
        db = self.session_factory()
        try:
            return self.orchestrator_factory(db).execute(job_id).succeeded
        except Exception as e:
            logger.error(f"Batch member {job_id} could not run: {e}")
            db.rollback()
            self._settle_unstarted(db, job_id, str(e))
            return False
        finally:
            db.close()

    @staticmethod
    def _settle_unstarted(db: Session, job_id: str, message: str) -> None:
        """Fail a member that never left pending so the batch can finish.

        A member already processing belongs to whoever started it.
        """
        jobs = JobService(db)
        job = jobs.get(job_id)
        if job.status == JobStatus.PENDING.value:
            jobs.start(job_id)
            jobs.fail(job_id, message)
