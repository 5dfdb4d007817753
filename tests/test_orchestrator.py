"""Tests for the generation orchestrator: admission, execution, settlement."""

from datetime import timedelta

import pytest

from conftest import (
    LESSON_PLAN_RESPONSE,
    LESSON_SCRIPT,
    OUTLINE_RESPONSE,
    QUIZ_RESPONSE,
    VIDEO_RESPONSE,
    FakeModelGateway,
    RecordingNotifier,
    make_course,
    make_lesson,
    set_credits,
    source,
)
from courseforge.database import utcnow
from courseforge.exceptions import (
    ConflictError,
    GenerationFailure,
    InsufficientCreditsError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from courseforge.models import (
    ContentStatus,
    ContentVariation,
    Course,
    FactCheckRecord,
    GeneratedImage,
    GenerationJob,
    JobStatus,
    JobType,
    Lesson,
)
from courseforge.repositories.course_repository import claim_for_generation
from courseforge.services.credit_service import CreditLedger
from courseforge.services.job_service import JobService
from courseforge.services.orchestrator import GenerationOrchestrator, claimed_entity


def _job_count(db):
    return db.query(GenerationJob).count()


def _balance(db, owner="alice"):
    return CreditLedger(db).get_balance(owner)


class TestHandlerTable:

    def test_every_job_type_has_a_handler(self, orchestrator):
        assert set(orchestrator.handlers) == set(JobType)


class TestAdmission:
    """Admission failures raise before any job row exists."""

    def test_insufficient_credits_creates_no_job(self, db, orchestrator, model):
        course = make_course(db)
        set_credits(db, "alice", 2)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            orchestrator.submit("alice", JobType.OUTLINE, {}, course_id=course.id)

        assert exc_info.value.details == {"required": 5, "available": 2}
        assert _job_count(db) == 0
        assert _balance(db) == 2
        assert model.calls == []

    def test_variation_without_script_is_rejected(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=None)

        with pytest.raises(PreconditionFailedError):
            orchestrator.submit(
                "alice", JobType.CONTENT_VARIATION, {"variation_type": "blog_post"}, lesson_id=lesson.id
            )

        assert model.calls == []
        assert _job_count(db) == 0
        assert _balance(db) == 100

    def test_script_requires_lesson_plan(self, db, orchestrator):
        lesson = make_lesson(db, make_course(db))
        with pytest.raises(PreconditionFailedError):
            orchestrator.submit("alice", JobType.SCRIPT, {}, lesson_id=lesson.id)
        db.expire_all()
        assert db.get(Lesson, lesson.id).status == ContentStatus.DRAFT.value

    def test_other_owners_course_is_not_found(self, db, orchestrator):
        course = make_course(db, owner="bob")
        with pytest.raises(NotFoundError):
            orchestrator.submit("alice", JobType.OUTLINE, {}, course_id=course.id)
        assert _job_count(db) == 0

    def test_invalid_config_is_validation_error(self, db, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.submit("alice", JobType.QUIZ, {"question_count": 0}, lesson_id="x")

    def test_missing_lesson_id(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.submit("alice", JobType.QUIZ, {})

    def test_lesson_already_generating_conflicts(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db))
        assert claim_for_generation(db, Lesson, lesson.id)

        with pytest.raises(ConflictError):
            orchestrator.submit("alice", JobType.QUIZ, {}, lesson_id=lesson.id)
        assert model.calls == []
        assert _job_count(db) == 0


class TestSubmit:

    def test_script_completes_and_debits(self, db, orchestrator, model, notifier):
        lesson = make_lesson(db, make_course(db), lesson_plan={"introduction": "Why averages matter."})
        set_credits(db, "alice", 10)
        model.queue("  " + LESSON_SCRIPT + "  ")

        outcome = orchestrator.submit("alice", JobType.SCRIPT, {"duration": 10}, lesson_id=lesson.id)

        assert outcome.succeeded
        assert outcome.credits_used == 4
        assert outcome.credits_remaining == 6
        assert outcome.job.result["script"] == LESSON_SCRIPT
        assert outcome.job.result["metadata"]["target_duration"] == 10
        assert outcome.job.started_at is not None
        assert outcome.job.completed_at is not None

        db.expire_all()
        stored = db.get(Lesson, lesson.id)
        assert stored.script == LESSON_SCRIPT
        assert stored.status == ContentStatus.COMPLETE.value
        assert _balance(db) == 6
        assert notifier.job_events[0][0] == "alice"
        assert notifier.job_events[0][1]["job_id"] == outcome.job.id

    def test_outline_written_to_course(self, db, orchestrator, model):
        course = make_course(db)
        model.queue(OUTLINE_RESPONSE)

        outcome = orchestrator.submit(
            "alice", JobType.OUTLINE, {"target_audience": "Nurses"}, course_id=course.id
        )

        assert outcome.succeeded
        assert outcome.job.result["metadata"] == {
            "module_count": 2,
            "total_duration": "2 hours",
            "objectives_count": 3,
        }
        db.expire_all()
        stored = db.get(Course, course.id)
        assert stored.outline["target_audience"] == "Nurses"
        assert len(stored.outline["modules"]) == 2
        assert stored.status == ContentStatus.COMPLETE.value
        assert "Intro to Statistics" in model.calls[0]["payload"]["prompt"]

    def test_lesson_plan_replaces_objectives_and_activities(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), activities=[{"type": "old"}])
        model.queue(LESSON_PLAN_RESPONSE)

        outcome = orchestrator.submit("alice", JobType.LESSON_PLAN, {"duration": 45}, lesson_id=lesson.id)

        assert outcome.succeeded
        assert outcome.job.result["metadata"]["sections_count"] == 2
        db.expire_all()
        stored = db.get(Lesson, lesson.id)
        assert stored.objectives == ["Compute a mean", "Compute a median"]
        assert stored.lesson_plan["duration_minutes"] == 45
        assert stored.lesson_plan["key_concepts"] == ["Sum values", "Divide by n", "Sort first"]
        assert [a["title"] for a in stored.activities] == ["Compute averages"]

    def test_quiz_appends_activity(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT, activities=[{"type": "exercise"}])
        model.queue(QUIZ_RESPONSE)

        outcome = orchestrator.submit("alice", JobType.QUIZ, {"question_count": 3}, lesson_id=lesson.id)

        assert outcome.job.result["metadata"]["question_count"] == 3
        db.expire_all()
        activities = db.get(Lesson, lesson.id).activities
        assert [a["type"] for a in activities] == ["exercise", "quiz"]

    def test_variation_creates_first_version(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT)
        model.queue(VIDEO_RESPONSE)

        outcome = orchestrator.submit(
            "alice", JobType.CONTENT_VARIATION, {"variation_type": "youtube_script"}, lesson_id=lesson.id
        )

        assert outcome.succeeded
        assert outcome.credits_used == 4
        variation = db.get(ContentVariation, outcome.job.result["variation_id"])
        assert variation.variation_type == "youtube_script"
        assert [v.version_number for v in variation.versions] == [1]
        # Variations never claim the lesson.
        db.expire_all()
        assert db.get(Lesson, lesson.id).status == ContentStatus.DRAFT.value

    def test_image_stored(self, db, orchestrator, model):
        outcome = orchestrator.submit("alice", JobType.IMAGE, {"prompt": "a bar chart", "style": "flat"})
        assert outcome.credits_used == 2
        image = db.get(GeneratedImage, outcome.job.result["image_id"])
        assert image.image_data == model.image_url
        assert model.image_calls == [("a bar chart", "flat")]

    def test_fact_check_stored_in_history(self, db, orchestrator, research):
        research.sources = [source("True, per the census."), source("Confirmed.")]
        outcome = orchestrator.submit(
            "alice", JobType.FACT_CHECK, {"content": "In 2020 the enrollment was 40.", "depth": "thorough"}
        )
        assert outcome.succeeded
        assert outcome.credits_used == 2
        record = db.get(FactCheckRecord, outcome.job.result["fact_check_id"])
        assert record.overall_accuracy == 100
        assert record.job_id == outcome.job.id

    def test_research_result(self, orchestrator, research):
        research.findings = "Averages are sensitive to outliers."
        outcome = orchestrator.submit("alice", JobType.RESEARCH, {"topic": "averages"})
        assert outcome.job.result["findings"] == "Averages are sensitive to outliers."
        assert research.queries == ["averages"]

    def test_enhancement_with_skipped_research_still_completes(self, db, model, notifier):
        from conftest import FakeResearchGateway

        orchestrator = GenerationOrchestrator(db, model, FakeResearchGateway(fail=True), notifier)
        outcome = orchestrator.submit("alice", JobType.ENHANCEMENT, {"mode": "research", "content": "Text."})

        assert outcome.succeeded
        assert outcome.job.result["enhanced_content"] == "Text."
        assert outcome.job.result["metadata"]["enrichment"]["status"] == "skipped"
        assert outcome.credits_used == 3

    def test_enhancement_of_lesson_rewrites_script(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT)
        model.queue("A warmer script.")
        outcome = orchestrator.submit(
            "alice",
            JobType.ENHANCEMENT,
            {"mode": "humanize", "content": LESSON_SCRIPT, "lesson_id": lesson.id},
        )
        assert outcome.credits_used == 2
        assert outcome.job.result["lesson_id"] == lesson.id
        db.expire_all()
        assert db.get(Lesson, lesson.id).script == "A warmer script."

    def test_notifier_errors_are_ignored(self, db, model, research):
        class BrokenNotifier(RecordingNotifier):
            def notify_job_complete(self, owner, summary):
                raise RuntimeError("webhook down")

        orchestrator = GenerationOrchestrator(db, model, research, BrokenNotifier())
        outcome = orchestrator.submit("alice", JobType.RESEARCH, {"topic": "averages"})
        assert outcome.succeeded


class TestFailure:
    """A job that fails while processing debits nothing."""

    def test_provider_failure_fails_job_and_marks_lesson(self, db, orchestrator, model, notifier):
        lesson = make_lesson(db, make_course(db), lesson_plan={"introduction": "x"})
        model.queue(GenerationFailure("Model provider error: 503"))

        outcome = orchestrator.submit("alice", JobType.SCRIPT, {}, lesson_id=lesson.id)

        assert not outcome.succeeded
        assert outcome.job.status == JobStatus.FAILED.value
        assert outcome.job.error_message == "Model provider error: 503"
        assert outcome.credits_used == 0
        assert outcome.credits_remaining == 100
        db.expire_all()
        stored = db.get(Lesson, lesson.id)
        assert stored.status == ContentStatus.ERROR.value
        assert stored.script is None
        assert notifier.job_events == []

    def test_malformed_outline_leaves_course_untouched(self, db, orchestrator, model):
        course = make_course(db)
        model.queue("This is not JSON at all")

        outcome = orchestrator.submit("alice", JobType.OUTLINE, {}, course_id=course.id)

        assert outcome.job.status == JobStatus.FAILED.value
        db.expire_all()
        stored = db.get(Course, course.id)
        assert stored.outline is None
        assert stored.status == ContentStatus.ERROR.value
        assert _balance(db) == 100

    def test_unexpected_error_is_contained(self, db, orchestrator, model):
        model.image_url = KeyError("data")
        outcome = orchestrator.submit("alice", JobType.IMAGE, {"prompt": "chart"})
        assert outcome.job.status == JobStatus.FAILED.value
        assert outcome.job.error_message.startswith("Unexpected error")
        assert db.query(GeneratedImage).count() == 0

    def test_fact_check_research_failure_fails_job(self, db, model, notifier):
        from conftest import FakeResearchGateway

        orchestrator = GenerationOrchestrator(db, model, FakeResearchGateway(fail=True), notifier)
        outcome = orchestrator.submit("alice", JobType.FACT_CHECK, {"content": "In 2020 it was 40."})
        assert outcome.job.status == JobStatus.FAILED.value
        assert db.query(FactCheckRecord).count() == 0

    def test_failed_lesson_can_be_generated_again(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT)
        model.queue(GenerationFailure("down"), QUIZ_RESPONSE)

        assert not orchestrator.submit("alice", JobType.QUIZ, {}, lesson_id=lesson.id).succeeded
        assert orchestrator.submit("alice", JobType.QUIZ, {}, lesson_id=lesson.id).succeeded


class TestRetry:

    def test_retry_reruns_original_config(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), lesson_plan={"introduction": "x"})
        model.queue(GenerationFailure("down"), LESSON_SCRIPT)

        failed = orchestrator.submit("alice", JobType.SCRIPT, {"duration": 20}, lesson_id=lesson.id)
        outcome = orchestrator.retry(failed.job.id, "alice")

        assert outcome.job.id == failed.job.id
        assert outcome.succeeded
        assert outcome.job.result["metadata"]["target_duration"] == 20
        assert outcome.credits_used == 4
        assert _balance(db) == 96

    def test_retry_of_completed_job_is_rejected(self, orchestrator):
        done = orchestrator.submit("alice", JobType.RESEARCH, {"topic": "averages"})
        with pytest.raises(InvalidTransitionError):
            orchestrator.retry(done.job.id, "alice")

    def test_retry_of_other_owners_job(self, db, orchestrator, model):
        model.image_url = GenerationFailure("down")
        failed = orchestrator.submit("alice", JobType.IMAGE, {"prompt": "chart"})
        with pytest.raises(NotFoundError):
            orchestrator.retry(failed.job.id, "mallory")

    def test_unaffordable_retry_leaves_job_failed(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), lesson_plan={"introduction": "x"})
        model.queue(GenerationFailure("down"))
        failed = orchestrator.submit("alice", JobType.SCRIPT, {}, lesson_id=lesson.id)
        set_credits(db, "alice", 1)

        with pytest.raises(InsufficientCreditsError):
            orchestrator.retry(failed.job.id, "alice")

        db.expire_all()
        job = db.get(GenerationJob, failed.job.id)
        assert job.status == JobStatus.FAILED.value
        assert job.error_message == "down"
        assert len(model.calls) == 1
        assert _balance(db) == 1


class TestExecute:

    def test_runs_pending_job(self, db, orchestrator):
        job = JobService(db).create("alice", JobType.RESEARCH, {"topic": "averages"}, cost=2)
        outcome = orchestrator.execute(job.id)
        assert outcome.succeeded
        assert _balance(db) == 98

    def test_insufficient_credits_leaves_job_pending(self, db, orchestrator):
        job = JobService(db).create("alice", JobType.RESEARCH, {"topic": "averages"}, cost=2)
        set_credits(db, "alice", 1)
        with pytest.raises(InsufficientCreditsError):
            orchestrator.execute(job.id)
        db.expire_all()
        assert db.get(GenerationJob, job.id).status == JobStatus.PENDING.value

    def test_non_pending_job_is_rejected(self, db, orchestrator):
        done = orchestrator.submit("alice", JobType.RESEARCH, {"topic": "averages"})
        with pytest.raises(InvalidTransitionError):
            orchestrator.execute(done.job.id)

    def test_admission_failure_after_start_fails_job(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=None)
        job = JobService(db).create(
            "alice",
            JobType.CONTENT_VARIATION,
            {"variation_type": "blog_post"},
            lesson_id=lesson.id,
            cost=4,
        )
        outcome = orchestrator.execute(job.id)
        assert outcome.job.status == JobStatus.FAILED.value
        assert "no script" in outcome.job.error_message
        assert model.calls == []
        assert _balance(db) == 100

    def test_resumes_claim_left_by_dead_request(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), lesson_plan={"introduction": "x"})
        assert claim_for_generation(db, Lesson, lesson.id)
        job = JobService(db).create("alice", JobType.SCRIPT, {}, lesson_id=lesson.id, cost=4)
        model.queue(LESSON_SCRIPT)

        outcome = orchestrator.execute(job.id)

        assert outcome.succeeded
        db.expire_all()
        assert db.get(Lesson, lesson.id).status == ContentStatus.COMPLETE.value
        assert _balance(db) == 96

    def test_claim_held_by_live_job_conflicts(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT)
        assert claim_for_generation(db, Lesson, lesson.id)
        svc = JobService(db)
        live = svc.start(svc.create("alice", JobType.QUIZ, {}, lesson_id=lesson.id, cost=3).id)
        queued = svc.create("alice", JobType.QUIZ, {}, lesson_id=lesson.id, cost=3)

        outcome = orchestrator.execute(queued.id)

        assert outcome.job.status == JobStatus.FAILED.value
        assert "already being generated" in outcome.job.error_message
        assert model.calls == []
        db.expire_all()
        assert db.get(GenerationJob, live.id).status == JobStatus.PROCESSING.value
        assert db.get(Lesson, lesson.id).status == ContentStatus.GENERATING.value

    def test_admission_failure_drops_abandoned_claim(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db))
        assert claim_for_generation(db, Lesson, lesson.id)
        job = JobService(db).create("alice", JobType.SCRIPT, {}, lesson_id=lesson.id, cost=4)

        outcome = orchestrator.execute(job.id)

        assert outcome.job.status == JobStatus.FAILED.value
        assert "lesson plan" in outcome.job.error_message
        db.expire_all()
        assert db.get(Lesson, lesson.id).status == ContentStatus.ERROR.value
        assert _balance(db) == 100

    def test_prepaid_job_is_not_debited_again(self, db, orchestrator, model, notifier):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT)
        model.queue(VIDEO_RESPONSE)
        job = JobService(db).create(
            "alice",
            JobType.BATCH_MEMBER,
            {
                "batch_id": "batch-1",
                "lesson_id": lesson.id,
                "lesson_title": lesson.title,
                "variation_type": "youtube_script",
            },
            lesson_id=lesson.id,
            batch_id="batch-1",
            cost=3,
            prepaid=True,
        )
        set_credits(db, "alice", 0)

        outcome = orchestrator.execute(job.id)

        assert outcome.succeeded
        assert outcome.credits_used == 0
        assert outcome.job.result["batch_id"] == "batch-1"
        assert outcome.job.result["lesson_title"] == "Mean and Median"
        # Batch members are reported by their batch, not individually.
        assert notifier.job_events == []


class TestSweepStale:

    def test_releases_claimed_lesson(self, db, orchestrator):
        lesson = make_lesson(db, make_course(db))
        assert claim_for_generation(db, Lesson, lesson.id)
        svc = JobService(db)
        job = svc.create("alice", JobType.QUIZ, {}, lesson_id=lesson.id, cost=3)
        job = svc.start(job.id)
        job.started_at = utcnow() - timedelta(hours=2)
        db.commit()

        assert orchestrator.sweep_stale(1800) == 1
        db.expire_all()
        assert db.get(GenerationJob, job.id).status == JobStatus.FAILED.value
        assert db.get(Lesson, lesson.id).status == ContentStatus.ERROR.value

    def test_claimed_entity_mapping(self):
        assert claimed_entity(GenerationJob(job_type="outline", course_id="c1")) == (Course, "c1")
        assert claimed_entity(GenerationJob(job_type="quiz", lesson_id="l1")) == (Lesson, "l1")
        assert claimed_entity(GenerationJob(job_type="content_variation", lesson_id="l1")) is None
        assert claimed_entity(GenerationJob(job_type="enhancement", lesson_id="l1")) == (Lesson, "l1")
        assert claimed_entity(GenerationJob(job_type="research")) is None


class TestOptimization:
    """Optimization returns rewritten text and leaves the lesson untouched."""

    def test_inline_content(self, db, orchestrator, model):
        model.queue("Averages summarize data. For example, test scores.")

        outcome = orchestrator.submit(
            "alice", JobType.OPTIMIZATION, {"content": "Averages summarize data.", "options": {"seo": True}}
        )

        assert outcome.succeeded
        assert outcome.credits_used == 2
        assert outcome.job.lesson_id is None
        assert outcome.job.result["original_content"] == "Averages summarize data."
        assert "Added practical examples" in outcome.job.result["improvements"]
        assert "Optimized for search engines" in outcome.job.result["improvements"]
        assert outcome.job.result["metrics"]["original_length"] == 24
        assert "Optimize for search engines" in model.calls[0]["payload"]["prompt"]
        assert _balance(db) == 98

    def test_lesson_script_is_read_not_rewritten(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=LESSON_SCRIPT)
        model.queue("A tighter script.")

        outcome = orchestrator.submit("alice", JobType.OPTIMIZATION, {"lesson_id": lesson.id})

        assert outcome.succeeded
        assert outcome.job.lesson_id == lesson.id
        assert outcome.job.result["original_content"] == LESSON_SCRIPT
        assert outcome.job.result["lesson_title"] == "Mean and Median"
        assert LESSON_SCRIPT in model.calls[0]["payload"]["prompt"]
        db.expire_all()
        stored = db.get(Lesson, lesson.id)
        assert stored.script == LESSON_SCRIPT
        assert stored.status == ContentStatus.DRAFT.value

    def test_inline_content_wins_over_lesson_script(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=None)
        model.queue("Better draft.")

        outcome = orchestrator.submit(
            "alice", JobType.OPTIMIZATION, {"lesson_id": lesson.id, "content": "Draft text."}
        )

        assert outcome.job.result["original_content"] == "Draft text."

    def test_lesson_without_script_is_rejected(self, db, orchestrator, model):
        lesson = make_lesson(db, make_course(db), script=None)
        with pytest.raises(PreconditionFailedError):
            orchestrator.submit("alice", JobType.OPTIMIZATION, {"lesson_id": lesson.id})
        assert model.calls == []
        assert _job_count(db) == 0

    def test_requires_lesson_or_content(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.submit("alice", JobType.OPTIMIZATION, {"content": "   "})

    def test_optimization_claims_nothing(self):
        assert claimed_entity(GenerationJob(job_type="optimization", lesson_id="l1")) is None
