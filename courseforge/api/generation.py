"""Generation endpoints: one synchronous job per request, plus batches.

A single-job request returns once the job is terminal. A failed job is
still a well-formed answer, returned with status 502 and the same body.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_owner
from ..database import get_db
from ..models import JobType
from ..repositories import LessonRepository
from ..schemas.batch import BatchPlan, BatchRequest, BatchStatusResponse
from ..schemas.jobs import (
    ContentVariationRequest,
    EnhancementRequest,
    FactCheckRequest,
    ImageRequest,
    JobOutcomeResponse,
    LessonPlanRequest,
    OptimizationAnalysis,
    OptimizationRequest,
    OutlineRequest,
    QuizRequest,
    ResearchRequest,
    ScriptRequest,
)
from ..services import generators
from ..services.batch_service import BatchCoordinator
from ..services.job_service import JobService
from ..services.orchestrator import GenerationOrchestrator, JobOutcome
from .deps import get_batch_coordinator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generation", tags=["generation"])

_FAILED_JOB = {502: {"model": JobOutcomeResponse, "description": "The job ran and failed"}}


def outcome_response(outcome: JobOutcome):
    body = JobOutcomeResponse(**outcome.to_dict())
    if outcome.succeeded:
        return body
    return JSONResponse(status_code=502, content=body.model_dump(mode="json"))


@router.post("/outline", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def generate_outline(
    request: OutlineRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    """Generate a course outline and store it on the course."""
    return outcome_response(
        orchestrator.submit(auth.owner, JobType.OUTLINE, request.config, course_id=request.course_id)
    )


@router.post("/lesson-plan", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def generate_lesson_plan(
    request: LessonPlanRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    return outcome_response(
        orchestrator.submit(auth.owner, JobType.LESSON_PLAN, request.config, lesson_id=request.lesson_id)
    )


@router.post("/script", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def generate_script(
    request: ScriptRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    """Generate a lecture script. The lesson must already have a lesson plan."""
    return outcome_response(
        orchestrator.submit(auth.owner, JobType.SCRIPT, request.config, lesson_id=request.lesson_id)
    )


@router.post("/quiz", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def generate_quiz(
    request: QuizRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    return outcome_response(
        orchestrator.submit(auth.owner, JobType.QUIZ, request.config, lesson_id=request.lesson_id)
    )


@router.post("/content-variation", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def generate_content_variation(
    request: ContentVariationRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    """Repurpose a lesson script as a video script, blog post or ebook chapter."""
    return outcome_response(
        orchestrator.submit(
            auth.owner, JobType.CONTENT_VARIATION, request.config, lesson_id=request.lesson_id
        )
    )


@router.post("/enhance", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def enhance_content(
    request: EnhancementRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    return outcome_response(orchestrator.submit(auth.owner, JobType.ENHANCEMENT, request.config))


@router.post("/image", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def generate_image(
    request: ImageRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    return outcome_response(orchestrator.submit(auth.owner, JobType.IMAGE, request.config))


@router.post("/fact-check", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def fact_check(
    request: FactCheckRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    return outcome_response(orchestrator.submit(auth.owner, JobType.FACT_CHECK, request.config))


@router.post("/research", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def research(
    request: ResearchRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    return outcome_response(orchestrator.submit(auth.owner, JobType.RESEARCH, request.config))


@router.post("/optimize", response_model=JobOutcomeResponse, responses=_FAILED_JOB)
def optimize_content(
    request: OptimizationRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    """Rewrite inline content, or a lesson's script, toward the selected goals.

    The lesson itself is left unchanged; the optimized text is in the result.
    """
    return outcome_response(orchestrator.submit(auth.owner, JobType.OPTIMIZATION, request.config))


@router.get("/optimize/{lesson_id}/suggestions", response_model=OptimizationAnalysis)
def optimization_suggestions(
    lesson_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    """Rule-based review of a lesson script. Free: no model call, no job."""
    lesson = LessonRepository(db).get_owned(lesson_id, auth.owner)
    script = lesson.script or ""
    suggestions = generators.optimization_suggestions(script, lesson.title) if script.strip() else []
    return OptimizationAnalysis(
        lesson_id=lesson.id,
        metrics=generators.content_metrics(script),
        suggestions=suggestions,
        recommended_actions=(
            [f"Optimize for {suggestions[0]['type']}"] if suggestions else ["Content is well-optimized"]
        ),
    )


@router.post("/batch", response_model=BatchPlan, status_code=202)
def submit_batch(
    request: BatchRequest,
    background_tasks: BackgroundTasks,
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
    auth: AuthContext = Depends(require_owner),
):
    """Admit and prepay a batch, then run its members in the background.

    Poll ``GET /api/generation/batch/{batch_id}`` for progress.
    """
    items = request.items or coordinator.expand_course(
        auth.owner, request.course_id, request.variation_types
    )
    plan = coordinator.prepare(auth.owner, items)
    background_tasks.add_task(coordinator.run, plan)
    logger.info(f"Batch {plan.batch_id} accepted for {auth.owner}")
    return plan


@router.get("/batch/{batch_id}", response_model=BatchStatusResponse)
def get_batch_status(
    batch_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    return JobService(db).batch_status(batch_id, auth.owner)
