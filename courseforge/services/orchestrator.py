"""Generation orchestrator: drives one job from admission to a terminal state.

Flow for a synchronous request (``submit``):

    admission  ->  create + start  ->  generate  ->  write + complete + debit  ->  notify

Admission errors (credits, ownership, preconditions, claim conflicts) are
raised before any job row exists. Once a job is processing, every failure
ends it in ``failed`` with nothing debited and the error never reaches the
caller; the returned ``JobOutcome`` carries the failed job instead.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..core.logging_config import job_id_var
from ..database import Base
from ..exceptions import (
    ConflictError,
    CourseForgeException,
    GenerationFailure,
    InvalidTransitionError,
    PreconditionFailedError,
    ResearchFailure,
    ValidationError,
)
from ..models import ContentStatus, Course, GenerationJob, JobStatus, JobType, Lesson
from ..repositories import (
    CourseRepository,
    FactCheckRepository,
    ImageRepository,
    LessonRepository,
    VariationRepository,
)
from ..repositories.course_repository import claim_for_generation, has_script, set_status
from ..schemas.content import dump
from ..schemas.jobs import decode_config
from . import generators
from .credit_service import CreditLedger, cost_for
from .fact_checker import FactChecker
from .job_service import JobService
from .model_gateway import ModelGateway
from .notification_service import Notifier, notify_safely
from .research_gateway import ResearchGateway

logger = logging.getLogger(__name__)

# Job types that write into a course or lesson and therefore claim it.
_COURSE_CLAIMS = {JobType.OUTLINE}
_LESSON_CLAIMS = {JobType.LESSON_PLAN, JobType.SCRIPT, JobType.QUIZ}


@dataclass
class JobOutcome:
    job: GenerationJob
    credits_used: int
    credits_remaining: int

    @property
    def succeeded(self) -> bool:
        return self.job.status == JobStatus.COMPLETED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job.id,
            "job_type": self.job.job_type,
            "status": self.job.status,
            "result": self.job.result,
            "error_message": self.job.error_message,
            "credits_used": self.credits_used,
            "credits_remaining": self.credits_remaining,
        }


@dataclass
class _Target:
    """Domain context resolved at admission."""
    course: Optional[Course] = None
    lesson: Optional[Lesson] = None
    claimed: Optional[Base] = None
    previous_status: Optional[str] = None

    @property
    def course_id(self) -> Optional[str]:
        if self.course is not None:
            return self.course.id
        return self.lesson.course_id if self.lesson is not None else None

    @property
    def lesson_id(self) -> Optional[str]:
        return self.lesson.id if self.lesson is not None else None


def claimed_entity(job: GenerationJob) -> Optional[tuple[Type[Base], str]]:
    """Model and id of the entity a job of this type holds in ``generating``."""
    job_type = JobType(job.job_type)
    if job_type in _COURSE_CLAIMS and job.course_id:
        return Course, job.course_id
    if job_type in _LESSON_CLAIMS and job.lesson_id:
        return Lesson, job.lesson_id
    if job_type == JobType.ENHANCEMENT and job.lesson_id:
        return Lesson, job.lesson_id
    return None


class GenerationOrchestrator:
    """Runs generation jobs against one database session.

    Collaborators are injected so tests can substitute fake gateways and
    notifiers. One orchestrator per session; batch members each build their
    own through a factory.
    """

    def __init__(
        self,
        db: Session,
        model_gateway: ModelGateway,
        research_gateway: ResearchGateway,
        notifier: Notifier,
        fact_checker: Optional[FactChecker] = None,
        initial_credits: Optional[int] = None,
    ):
        self.db = db
        self.model = model_gateway
        self.research = research_gateway
        self.notifier = notifier
        self.fact_checker = fact_checker or FactChecker(research_gateway)

        self.jobs = JobService(db)
        self.ledger = CreditLedger(db, initial_credits)
        self.courses = CourseRepository(db)
        self.lessons = LessonRepository(db)
        self.variations = VariationRepository(db)
        self.images = ImageRepository(db)
        self.fact_checks = FactCheckRepository(db)

        self._handlers: Dict[JobType, Callable[[GenerationJob, Any, _Target], Dict[str, Any]]] = {
            JobType.OUTLINE: self._run_outline,
            JobType.LESSON_PLAN: self._run_lesson_plan,
            JobType.SCRIPT: self._run_script,
            JobType.QUIZ: self._run_quiz,
            JobType.CONTENT_VARIATION: self._run_variation,
            JobType.ENHANCEMENT: self._run_enhancement,
            JobType.IMAGE: self._run_image,
            JobType.FACT_CHECK: self._run_fact_check,
            JobType.RESEARCH: self._run_research,
            JobType.OPTIMIZATION: self._run_optimization,
            JobType.BATCH_MEMBER: self._run_batch_member,
        }

    @property
    def handlers(self) -> Dict[JobType, Callable]:
        return dict(self._handlers)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def submit(
        self,
        owner: str,
        job_type: JobType,
        config: Any,
        course_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
    ) -> JobOutcome:
        """Admit, create and run one job synchronously."""
        job_type = JobType(job_type)
        config = self._decode(job_type, config)
        cost = cost_for(job_type, config)

        self.ledger.require_balance(owner, cost)
        target = self._admit(owner, job_type, config, course_id, lesson_id)

        try:
            job = self.jobs.create(
                owner,
                job_type,
                config.model_dump(mode="json"),
                course_id=target.course_id or course_id,
                lesson_id=target.lesson_id,
                cost=cost,
            )
            job = self.jobs.start(job.id)
        except Exception:
            self.db.rollback()
            self._release(target)
            raise

        return self._run(job, config, target)

    def execute(self, job_id: str) -> JobOutcome:
        """Run an existing pending job (worker, retry and batch path).

        The balance is re-checked before ``start`` unless the job was paid
        for upfront; an owner who can no longer afford it gets
        InsufficientCreditsError and the job stays pending.
        """
        job = self.jobs.get(job_id)
        if job.status != JobStatus.PENDING.value:
            raise InvalidTransitionError(job_id, job.status, JobStatus.PROCESSING.value)
        if not job.prepaid:
            self.ledger.require_balance(job.owner, job.cost)

        job = self.jobs.start(job_id)
        try:
            job_type = JobType(job.job_type)
            config = self._decode(job_type, job.config)
            if job_type == JobType.BATCH_MEMBER:
                target = self._admit(job.owner, job_type, config, None, config.lesson_id, job_id=job_id)
            else:
                target = self._admit(
                    job.owner, job_type, config, job.course_id, job.lesson_id, job_id=job_id
                )
        except CourseForgeException as e:
            logger.warning(f"Job {job_id} failed admission on execute: {e.message}")
            self._drop_abandoned_claim(job)
            job = self.jobs.fail(job_id, e.message)
            return JobOutcome(job, 0, self.ledger.get_balance(job.owner))

        return self._run(job, config, target)

    def retry(self, job_id: str, owner: str) -> JobOutcome:
        """Reset a failed job to pending and run it again with its original config.

        The balance is checked before the reset, so a retry the owner cannot
        afford leaves the job failed instead of queueing it for the worker.
        """
        job = self.jobs.get(job_id, owner)
        if job.status == JobStatus.FAILED.value and not job.prepaid:
            self.ledger.require_balance(owner, job.cost)
        self.jobs.reset_for_retry(job_id, owner)
        return self.execute(job_id)

    def sweep_stale(self, older_than_seconds: int) -> int:
        """Fail jobs stuck in processing and release the entities they claimed."""
        for job in self.jobs.find_stale(older_than_seconds):
            entity = claimed_entity(job)
            if entity is not None:
                set_status(self.db, entity[0], entity[1], ContentStatus.ERROR)
        # The first fail() commits the status changes above.
        return self.jobs.fail_stale(older_than_seconds)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _decode(self, job_type: JobType, config: Any) -> BaseModel:
        try:
            return decode_config(job_type, config)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {job_type.value} config: {e.errors()[0]['msg']}", "config") from e
        except TypeError as e:
            raise ValidationError(str(e), "config") from e

    def _admit(
        self,
        owner: str,
        job_type: JobType,
        config: Any,
        course_id: Optional[str],
        lesson_id: Optional[str],
        job_id: Optional[str] = None,
    ) -> _Target:
        """Authorize the context, check preconditions and claim the entity.

        *job_id* is set when an existing job is being executed; its own
        earlier claim then does not count as a conflict.
        """
        if job_type in _COURSE_CLAIMS:
            if not course_id:
                raise ValidationError("course_id is required", "course_id")
            course = self.courses.get_owned(course_id, owner)
            return self._claim(_Target(course=course), course, "course", job_id)

        if job_type in _LESSON_CLAIMS:
            lesson = self._owned_lesson(lesson_id, owner)
            if job_type == JobType.SCRIPT and not lesson.lesson_plan:
                raise PreconditionFailedError(
                    "Generate a lesson plan before the script",
                    details={"lesson_id": lesson.id},
                )
            return self._claim(_Target(lesson=lesson), lesson, "lesson", job_id)

        if job_type in (JobType.CONTENT_VARIATION, JobType.BATCH_MEMBER):
            if job_type == JobType.BATCH_MEMBER:
                lesson_id = config.lesson_id
            lesson = self._owned_lesson(lesson_id, owner)
            if not has_script(lesson):
                raise PreconditionFailedError(
                    "Lesson has no script to create a variation from",
                    details={"lesson_id": lesson.id},
                )
            return _Target(lesson=lesson)

        if job_type == JobType.ENHANCEMENT and config.lesson_id:
            lesson = self._owned_lesson(config.lesson_id, owner)
            return self._claim(_Target(lesson=lesson), lesson, "lesson", job_id)

        if job_type == JobType.OPTIMIZATION and config.lesson_id:
            # Read-only: the optimized text is returned, the lesson is not rewritten.
            lesson = self._owned_lesson(config.lesson_id, owner)
            if not config.content and not has_script(lesson):
                raise PreconditionFailedError(
                    "Lesson has no script to optimize",
                    details={"lesson_id": lesson.id},
                )
            return _Target(lesson=lesson)

        return _Target()

    def _owned_lesson(self, lesson_id: Optional[str], owner: str) -> Lesson:
        if not lesson_id:
            raise ValidationError("lesson_id is required", "lesson_id")
        return self.lessons.get_owned(lesson_id, owner)

    def _claim(self, target: _Target, entity: Base, kind: str, job_id: Optional[str] = None) -> _Target:
        """Claim *entity* for generation.

        An executing job finds its entity already ``generating`` when the
        request that created it died after admission. With no other job
        processing against the entity, that claim is this job's own.
        """
        previous = entity.status
        if not claim_for_generation(self.db, type(entity), entity.id):
            if job_id is None or self._claimed_elsewhere(job_id, type(entity), entity.id):
                raise ConflictError(kind, entity.id)
            logger.info(f"Job {job_id} resumes its earlier claim on {kind} {entity.id}")
            previous = None
        target.claimed = entity
        target.previous_status = previous
        return target

    def _claimed_elsewhere(self, job_id: str, model: Type[Base], entity_id: str) -> bool:
        """Whether a processing job other than *job_id* holds the claim on the entity."""
        if model is Course:
            others = self.jobs.list_processing(course_id=entity_id)
        else:
            others = self.jobs.list_processing(lesson_id=entity_id)
        return any(
            other.id != job_id and claimed_entity(other) == (model, entity_id)
            for other in others
        )

    def _drop_abandoned_claim(self, job: GenerationJob) -> None:
        """Mark the job's entity ``error`` if it is still ``generating`` with no live claimant.

        Runs before ``fail`` commits, so an execute that fails admission does
        not leave behind a claim nobody will release.
        """
        entity = claimed_entity(job)
        if entity is None:
            return
        model, entity_id = entity
        current = self.db.get(model, entity_id)
        if current is None or current.status != ContentStatus.GENERATING.value:
            return
        if self._claimed_elsewhere(job.id, model, entity_id):
            return
        set_status(self.db, model, entity_id, ContentStatus.ERROR)

    def _release(self, target: _Target) -> None:
        """Give back a claim taken by a job that was never created."""
        if target.claimed is None:
            return
        set_status(
            self.db,
            type(target.claimed),
            target.claimed.id,
            ContentStatus(target.previous_status or ContentStatus.DRAFT.value),
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _run(self, job: GenerationJob, config: Any, target: _Target) -> JobOutcome:
        token = job_id_var.set(job.id)
        try:
            return self._run_started(job, config, target)
        finally:
            job_id_var.reset(token)

    def _run_started(self, job: GenerationJob, config: Any, target: _Target) -> JobOutcome:
        job_id, owner = job.id, job.owner
        try:
            result = self._handlers[JobType(job.job_type)](job, config, target)
            if target.claimed is not None:
                target.claimed.status = ContentStatus.COMPLETE.value
            self.jobs.complete(job_id, result, commit=False)
            credits_used = 0 if job.prepaid else job.cost
            if credits_used:
                self.ledger.debit(owner, credits_used, commit=False)
            self.db.commit()
        except (GenerationFailure, ResearchFailure) as e:
            return self._fail(job_id, owner, target, e.message)
        except Exception as e:
            logger.exception(f"Job {job_id} raised unexpectedly")
            return self._fail(job_id, owner, target, f"Unexpected error: {e}")

        job = self.jobs.get(job_id)
        outcome = JobOutcome(job, credits_used, self.ledger.get_balance(owner))
        logger.info(f"Job {job_id} completed; {credits_used} credits used")

        if job.batch_id is None:
            notify_safely(self.notifier.notify_job_complete, owner, {
                "job_id": job.id,
                "job_type": job.job_type,
                "status": job.status,
                "credits_used": credits_used,
            })
        return outcome

    def _fail(self, job_id: str, owner: str, target: _Target, message: str) -> JobOutcome:
        self.db.rollback()
        if target.claimed is not None:
            target.claimed.status = ContentStatus.ERROR.value
        job = self.jobs.fail(job_id, message)
        return JobOutcome(job, 0, self.ledger.get_balance(owner))

    # ------------------------------------------------------------------
    # Handlers: generate first, then write. Writes only flush.
    # ------------------------------------------------------------------

    def _run_outline(self, job, config, target: _Target) -> Dict[str, Any]:
        course = target.course
        outline = generators.generate_outline(self.model, config, course)
        duration = generators.outline_duration(outline)

        course.outline = {
            "modules": [dump(module) for module in outline.modules],
            "duration": duration,
            "target_audience": config.target_audience,
            "learning_objectives": outline.learning_objectives,
            "prerequisites": outline.prerequisites,
        }
        self.db.flush()
        return {
            "outline": course.outline,
            "metadata": {
                "module_count": len(outline.modules),
                "total_duration": duration,
                "objectives_count": len(outline.learning_objectives),
            },
        }

    def _run_lesson_plan(self, job, config, target: _Target) -> Dict[str, Any]:
        lesson = target.lesson
        plan = generators.generate_lesson_plan(self.model, config, lesson, lesson.course)
        record = generators.lesson_plan_record(plan, config)

        lesson.objectives = plan.objectives or list(config.objectives)
        lesson.lesson_plan = record
        lesson.activities = [dump(plan.activity)] if plan.activity else []
        self.db.flush()
        return {
            "lesson_plan": record,
            "objectives": lesson.objectives,
            "activities": lesson.activities,
            "metadata": {
                "objectives_count": len(lesson.objectives),
                "sections_count": len(plan.sections),
                "has_activity": plan.activity is not None,
                "estimated_minutes": config.duration,
            },
        }

    def _run_script(self, job, config, target: _Target) -> Dict[str, Any]:
        lesson = target.lesson
        text = generators.generate_script(self.model, config, lesson)

        lesson.script = text
        self.db.flush()
        return {
            "script": text,
            "metadata": {
                "word_count": generators.word_count(text),
                "estimated_speaking_time": generators.speaking_minutes(text),
                "target_duration": config.duration,
            },
        }

    def _run_quiz(self, job, config, target: _Target) -> Dict[str, Any]:
        lesson = target.lesson
        quiz = generators.generate_quiz(self.model, config, lesson)
        activity = generators.quiz_activity(quiz)

        # JSON columns are not mutation-tracked; assign a new list.
        lesson.activities = list(lesson.activities or []) + [activity]
        self.db.flush()
        return {
            "quiz": activity,
            "metadata": {
                "question_count": len(quiz.questions),
                "question_types": activity["question_types"],
            },
        }

    def _write_variation(self, job, lesson: Lesson, variation_type, options) -> Dict[str, Any]:
        content, metadata = generators.generate_variation(self.model, variation_type, options, lesson)
        variation = self.variations.create_with_initial_version(
            owner=job.owner,
            lesson_id=lesson.id,
            variation_type=variation_type.value,
            content=content,
            metadata=metadata,
        )
        return {
            "variation_id": variation.id,
            "variation_type": variation_type.value,
            "content": content,
            "metadata": metadata,
        }

    def _run_variation(self, job, config, target: _Target) -> Dict[str, Any]:
        return self._write_variation(job, target.lesson, config.variation_type, config.options)

    def _run_batch_member(self, job, config, target: _Target) -> Dict[str, Any]:
        result = self._write_variation(job, target.lesson, config.variation_type, config.options)
        result["batch_id"] = config.batch_id
        result["lesson_title"] = config.lesson_title
        return result

    def _run_enhancement(self, job, config, target: _Target) -> Dict[str, Any]:
        result = generators.generate_enhancement(self.model, self.research, config)
        if target.lesson is not None:
            target.lesson.script = result["enhanced_content"]
            self.db.flush()
            result["lesson_id"] = target.lesson.id
        return result

    def _run_image(self, job, config, target: _Target) -> Dict[str, Any]:
        image_url = self.model.generate_image(config.prompt, config.style)
        image = self.images.create(job.owner, config.prompt, config.style, image_url)
        return {"image_id": image.id, "image_url": image_url}

    def _run_fact_check(self, job, config, target: _Target) -> Dict[str, Any]:
        report = self.fact_checker.check(
            config.content,
            depth=config.depth,
            include_context=config.include_context,
            topic=config.topic,
            auto_correct=config.auto_correct,
        )
        data = dump(report)
        record = self.fact_checks.create(job.owner, job.id, config.content, config.depth.value, data)
        data["fact_check_id"] = record.id
        return data

    def _run_research(self, job, config, target: _Target) -> Dict[str, Any]:
        return dump(self.research.research(config.topic, config.context, config.mode))

    def _run_optimization(self, job, config, target: _Target) -> Dict[str, Any]:
        content = config.content if config.content and config.content.strip() else target.lesson.script
        result = generators.generate_optimization(self.model, config, content)
        if target.lesson is not None:
            result["lesson_id"] = target.lesson.id
            result["lesson_title"] = target.lesson.title
        return result
