"""
Polling worker for generation job housekeeping.

Every ``WORKER_POLL_INTERVAL`` seconds it:
  1. fails jobs stuck in ``processing`` longer than ``STALE_JOB_TIMEOUT_SECONDS``
     and releases the course or lesson they were writing;
  2. runs orphaned pending jobs: single jobs whose request died between
     create and start, or failed jobs reset for retry but never re-run.

Batch members are run by their batch and are never picked up here.

Usage:
    courseforge-worker
"""

import logging
import time
from typing import Callable

from sqlalchemy.orm import Session

from .api.deps import get_model_gateway, get_notifier, get_research_gateway
from .core.config import settings
from .core.logging_config import setup_logging
from .database import SessionLocal, init_db
from .exceptions import CourseForgeException, InsufficientCreditsError
from .services.job_service import JobService
from .services.orchestrator import GenerationOrchestrator

logger = logging.getLogger("courseforge.worker")


def _default_orchestrator(db: Session) -> GenerationOrchestrator:
    return GenerationOrchestrator(db, get_model_gateway(), get_research_gateway(), get_notifier())


def run_cycle(
    session_factory: Callable[[], Session] = SessionLocal,
    orchestrator_factory: Callable[[Session], GenerationOrchestrator] = _default_orchestrator,
    grace_seconds: int = settings.worker_pending_grace_seconds,
    stale_seconds: int = settings.stale_job_timeout_seconds,
) -> dict:
    """One housekeeping pass. Returns counts for logging and tests."""
    counts = {"swept": 0, "completed": 0, "failed": 0, "deferred": 0}

    db = session_factory()
    try:
        counts["swept"] = orchestrator_factory(db).sweep_stale(stale_seconds)
        orphan_ids = [job.id for job in JobService(db).find_orphans(grace_seconds)]
    finally:
        db.close()

    for job_id in orphan_ids:
        db = session_factory()
        try:
            outcome = orchestrator_factory(db).execute(job_id)
            counts["completed" if outcome.succeeded else "failed"] += 1
        except InsufficientCreditsError as e:
            # Stays pending; re-checked next cycle.
            logger.info(f"Orphaned job {job_id} deferred: {e.message}")
            counts["deferred"] += 1
        except CourseForgeException as e:
            # Usually another runner started it first.
            logger.info(f"Orphaned job {job_id} skipped: {e.message}")
        finally:
            db.close()

    return counts


def main() -> None:
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    init_db()
    logger.info(
        f"Worker started, polling every {settings.worker_poll_interval}s "
        f"(grace {settings.worker_pending_grace_seconds}s, stale after {settings.stale_job_timeout_seconds}s)"
    )

    while True:
        try:
            counts = run_cycle()
            if any(counts.values()):
                logger.info("Worker cycle", extra=counts)
            time.sleep(settings.worker_poll_interval)
        except KeyboardInterrupt:
            logger.info("Worker shutting down")
            break
        except Exception as e:
            logger.error(f"Worker error: {e}", exc_info=True)
            time.sleep(settings.worker_poll_interval)


if __name__ == "__main__":
    main()
