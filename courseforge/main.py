"""Main FastAPI application."""

import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from .api import courses_router, credits_router, fact_checks_router, generation_router, jobs_router
from .api.deps import get_model_gateway, get_research_gateway
from .core.config import ConfigurationError, Environment, settings
from .core.logging_config import setup_logging
from .database import DATABASE_URL, engine, get_db, init_db
from .exceptions import CourseForgeException
from .middleware.exception_handler import courseforge_exception_handler
from .middleware.request_context import RequestContextMiddleware

setup_logging(log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger(__name__)


def _mask_url(url: str) -> str:
    """Mask the password in a database URL for logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def _validate_database_connection() -> None:
    """Exit with an actionable message when the database is unreachable."""
    masked = _mask_url(DATABASE_URL)
    logger.info(f"Connecting to database: {masked}")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        if DATABASE_URL.startswith("sqlite"):
            hint = "Check that the directory exists and is writable."
        else:
            hint = "Verify the server is running and DATABASE_URL is correct."
        logger.critical(f"Database connection failed.\n  DATABASE_URL: {masked}\n  {hint}\n  Error: {e}")
        raise SystemExit(1) from e
    logger.info("Database connection verified")


_validate_database_connection()
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup checks; closes gateway HTTP clients on shutdown."""
    logger.info(f"Environment: {settings.environment.value}")
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    if settings.environment == Environment.DEVELOPMENT:
        if not settings.auth_enabled:
            logger.warning(
                "SECURITY: Authentication is disabled (AUTH_ENABLED=false). "
                "Owners are taken from the X-Owner-Id header."
            )
        elif settings.jwt_secret_key == "dev-insecure-key-change-me":
            logger.critical(
                "SECURITY: AUTH_ENABLED=true but JWT_SECRET_KEY is the default. "
                "Anyone can forge tokens. Generate a secure key: openssl rand -hex 32"
            )

    if not get_model_gateway().is_configured():
        logger.warning("MODEL_NAME/MODEL_API_KEY not set; generation jobs will fail")
    if not get_research_gateway().is_configured():
        logger.warning("RESEARCH_API_KEY not set; research is skipped and fact checks will fail")

    yield

    get_research_gateway().close()


app = FastAPI(
    title="CourseForge API",
    description=(
        "Asynchronous generation pipeline for course content: outlines, lesson plans, "
        "scripts, quizzes, content variations, enhancements, images and fact checks.\n\n"
        "Every request is metered against the caller's credit balance.\n\n"
        "**Authentication:** When `AUTH_ENABLED=true`, every endpoint requires a "
        "`Bearer` token whose subject is the owner. When `AUTH_ENABLED=false` (default), "
        "the owner is read from the `X-Owner-Id` header."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware stack (outermost first: CORS wraps request context).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Owner-Id", "X-Request-ID"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(CourseForgeException, courseforge_exception_handler)

logger.info(
    "CourseForge API started | env=%s | db=%s | auth=%s | model=%s",
    settings.environment.value,
    "PostgreSQL" if DATABASE_URL.startswith("postgresql") else "SQLite",
    "enabled" if settings.auth_enabled else "disabled",
    settings.model_name,
)

app.include_router(generation_router)
app.include_router(jobs_router)
app.include_router(credits_router)
app.include_router(fact_checks_router)
app.include_router(courses_router)


@app.get("/")
def root():
    return {"name": "CourseForge API", "version": "1.0.0", "status": "running"}


_startup_time = time.monotonic()


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Database status, uptime and job counts.

    Never raises; returns degraded status on DB failure so load balancers
    can still poll without receiving 5xx.
    """
    db_status = "ok"
    pending_jobs = 0
    try:
        pending_jobs = db.execute(
            text("SELECT COUNT(*) FROM generation_jobs WHERE status = 'pending'")
        ).scalar() or 0
    except Exception as e:
        logger.warning(f"Health check query failed: {e}")
        db_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "db": db_status,
        "uptime_seconds": round(time.monotonic() - _startup_time),
        "version": "1.0.0",
        "pending_jobs": pending_jobs,
    }
