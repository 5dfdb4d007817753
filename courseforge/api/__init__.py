"""API routes."""

from .courses import router as courses_router
from .credits import router as credits_router
from .fact_checks import router as fact_checks_router
from .generation import router as generation_router
from .jobs import router as jobs_router

__all__ = [
    "courses_router",
    "credits_router",
    "fact_checks_router",
    "generation_router",
    "jobs_router",
]
