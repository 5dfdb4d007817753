"""Business logic services."""

from .batch_service import BatchCoordinator
from .credit_service import CreditLedger
from .job_service import JobService
from .orchestrator import GenerationOrchestrator, JobOutcome

__all__ = ["BatchCoordinator", "CreditLedger", "JobService", "GenerationOrchestrator", "JobOutcome"]
