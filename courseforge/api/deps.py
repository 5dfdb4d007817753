"""Service wiring for the routers.

Gateways and the notifier are process-wide singletons (the response cache
lives inside the model gateway). Orchestrators are per request because
they hold the request's session. Tests replace any of these through
``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import SessionLocal, get_db
from ..services.batch_service import BatchCoordinator
from ..services.model_gateway import ModelGateway
from ..services.notification_service import Notifier, build_notifier
from ..services.orchestrator import GenerationOrchestrator
from ..services.research_gateway import ResearchGateway


@lru_cache
def get_model_gateway() -> ModelGateway:
    return ModelGateway.from_settings(settings)


@lru_cache
def get_research_gateway() -> ResearchGateway:
    return ResearchGateway.from_settings(settings)


@lru_cache
def get_notifier() -> Notifier:
    return build_notifier(settings)


def get_orchestrator(
    db: Session = Depends(get_db),
    model_gateway: ModelGateway = Depends(get_model_gateway),
    research_gateway: ResearchGateway = Depends(get_research_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(db, model_gateway, research_gateway, notifier)


def get_batch_coordinator(
    db: Session = Depends(get_db),
    model_gateway: ModelGateway = Depends(get_model_gateway),
    research_gateway: ResearchGateway = Depends(get_research_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> BatchCoordinator:
    def orchestrator_factory(session: Session) -> GenerationOrchestrator:
        return GenerationOrchestrator(session, model_gateway, research_gateway, notifier)

    return BatchCoordinator(
        db,
        session_factory=SessionLocal,
        orchestrator_factory=orchestrator_factory,
        notifier=notifier,
        window_size=settings.batch_window_size,
        window_delay=settings.batch_window_delay,
    )
