"""Generation job status, retry and deletion endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_owner
from ..database import get_db
from ..models import JobType
from ..schemas.jobs import GenerationJobResponse, JobOutcomeResponse
from ..services.job_service import JobService
from ..services.orchestrator import GenerationOrchestrator
from .deps import get_orchestrator
from .generation import outcome_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("", response_model=List[GenerationJobResponse])
def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    job_type: Optional[JobType] = Query(None),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    """The caller's recent jobs, newest first."""
    return JobService(db).list_for_owner(auth.owner, limit, job_type)


@router.get("/{job_id}", response_model=GenerationJobResponse)
def get_job(
    job_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    return JobService(db).get(job_id, auth.owner)


@router.post(
    "/{job_id}/retry",
    response_model=JobOutcomeResponse,
    responses={502: {"model": JobOutcomeResponse}},
)
def retry_job(
    job_id: str,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    auth: AuthContext = Depends(require_owner),
):
    """Reset a failed job to pending and run it again with its original config."""
    logger.info(f"Retry of job {job_id} requested by {auth.owner}")
    return outcome_response(orchestrator.retry(job_id, auth.owner))


@router.delete("/{job_id}", status_code=204)
def delete_job(
    job_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    """Hide a job from listings. The record is kept."""
    JobService(db).soft_delete(job_id, auth.owner)
