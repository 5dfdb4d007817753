"""Shared test fixtures for the CourseForge test suite.

Tests run against a throwaway SQLite file (WAL mode, so batch worker
threads can share it). Tables are created on app import and emptied
before each test.

Gateways are replaced with scripted fakes: no test talks to a model or
research provider.
"""

import json
import os
import tempfile
import uuid

_TMP_DIR = tempfile.mkdtemp(prefix="courseforge-tests-")

# Configure the app before any courseforge import reads settings.
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["AUTH_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["INITIAL_CREDITS"] = "100"
os.environ["BATCH_WINDOW_DELAY"] = "0"
os.environ["MODEL_NAME"] = "test/model"
os.environ["RESEARCH_API_KEY"] = ""
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

import pytest
from fastapi.testclient import TestClient

from courseforge.api.deps import get_model_gateway, get_notifier, get_research_gateway
from courseforge.database import Base, SessionLocal, get_db
from courseforge.exceptions import ResearchFailure
from courseforge.main import app
from courseforge.middleware.request_context import _rate_buckets
from courseforge.models import ContentStatus, Course, Lesson
from courseforge.schemas.jobs import ResearchMode
from courseforge.schemas.research import Enrichment, ResearchResult, Source
from courseforge.services.credit_service import CreditLedger
from courseforge.services.model_gateway import parse_structured
from courseforge.services.orchestrator import GenerationOrchestrator


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty every table before each test, children first."""
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()
    yield


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeModelGateway:
    """Scripted ModelGateway. Queue one response per expected call.

    A queued exception is raised instead of returned. Running out of
    responses raises, so an unexpected call fails the job under test.
    """

    def __init__(self, *responses, image_url="data:image/png;base64,iVBORw0KGgo="):
        self.responses = list(responses)
        self.image_url = image_url
        self.calls = []
        self.image_calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def _next(self):
        if not self.responses:
            raise RuntimeError("FakeModelGateway: no response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def is_configured(self):
        return True

    def generate(self, payload, model_id=None, options=None):
        self.calls.append({"payload": payload, "options": options})
        response = self._next()
        return response if isinstance(response, str) else json.dumps(response)

    def generate_structured(self, payload, model_id=None, options=None):
        self.calls.append({"payload": payload, "options": options})
        response = self._next()
        return response if isinstance(response, dict) else parse_structured(response)

    def generate_image(self, prompt, style="realistic"):
        self.image_calls.append((prompt, style))
        if isinstance(self.image_url, Exception):
            raise self.image_url
        return self.image_url


class FakeResearchGateway:
    """ResearchGateway double with canned findings and search sources."""

    def __init__(self, findings="", sources=None, fail=False, enhanced=None):
        self.findings = findings
        self.sources = sources or []
        self.fail = fail
        self.enhanced = enhanced
        self.queries = []

    def is_configured(self):
        return not self.fail

    def close(self):
        pass

    def research(self, topic, context=None, mode=ResearchMode.PRE_GENERATION):
        self.queries.append(topic)
        if self.fail:
            raise ResearchFailure("Research provider returned 503")
        return ResearchResult(query=topic, findings=self.findings, sources=list(self.sources))

    def search(self, query, max_results=5):
        self.queries.append(query)
        if self.fail:
            raise ResearchFailure("Research provider returned 503")
        return list(self.sources[:max_results])

    def enrich(self, topic, context=None, mode=ResearchMode.PRE_GENERATION):
        try:
            return Enrichment(status="applied", result=self.research(topic, context, mode))
        except ResearchFailure as e:
            return Enrichment(status="skipped", reason=e.message)

    def enhance_content(self, content, findings):
        return self.enhanced if self.enhanced is not None else f"{content}\n\n{findings}"


class RecordingNotifier:
    def __init__(self):
        self.job_events = []
        self.batch_events = []

    def notify_job_complete(self, owner, summary):
        self.job_events.append((owner, summary))

    def notify_batch_complete(self, owner, summary):
        self.batch_events.append((owner, summary))


def source(snippet, url="https://example.org/article"):
    return Source(title="article", url=url, snippet=snippet, credibility=0.9)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def model():
    return FakeModelGateway()


@pytest.fixture()
def research():
    return FakeResearchGateway()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def orchestrator(db, model, research, notifier):
    return GenerationOrchestrator(db, model, research, notifier)


@pytest.fixture()
def client(db, model, research, notifier):
    """TestClient with the session and every gateway replaced by the test doubles."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_model_gateway] = lambda: model
    app.dependency_overrides[get_research_gateway] = lambda: research
    app.dependency_overrides[get_notifier] = lambda: notifier
    _rate_buckets.clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_course(db, owner="alice", title="Intro to Statistics", **overrides) -> Course:
    course = Course(
        id=overrides.pop("id", str(uuid.uuid4())),
        owner=owner,
        title=title,
        description=overrides.pop("description", "Descriptive and inferential statistics"),
        status=overrides.pop("status", ContentStatus.DRAFT.value),
        **overrides,
    )
    db.add(course)
    db.commit()
    return course


def make_lesson(db, course, title="Mean and Median", lesson_plan=None, script=None, **overrides) -> Lesson:
    lesson = Lesson(
        id=overrides.pop("id", str(uuid.uuid4())),
        course_id=course.id,
        title=title,
        order_index=overrides.pop("order_index", 0),
        objectives=overrides.pop("objectives", ["Compute a mean"]),
        lesson_plan=lesson_plan,
        script=script,
        activities=overrides.pop("activities", []),
        status=overrides.pop("status", ContentStatus.DRAFT.value),
    )
    db.add(lesson)
    db.commit()
    return lesson


def set_credits(db, owner, amount) -> None:
    CreditLedger(db).set_balance(owner, amount)


# Canned structured responses matching schemas.content

OUTLINE_RESPONSE = {
    "title": "Intro to Statistics",
    "description": "A first course",
    "modules": [
        {"title": "Describing data", "lectures": [{"title": "Mean", "duration": 10}, {"title": "Median", "duration": 12}]},
        {"title": "Inference", "lectures": [{"title": "Sampling", "duration": 15}]},
    ],
    "total_duration": "2 hours",
    "learning_objectives": ["Summarize data", "Reason about samples", "Read a chart"],
    "prerequisites": ["Arithmetic"],
}

LESSON_PLAN_RESPONSE = {
    "introduction": "Why averages matter.",
    "sections": [
        {"title": "The mean", "content": "Sum over count.", "key_points": ["Sum values", "Divide by n"]},
        {"title": "The median", "content": "Middle value.", "key_points": ["Sort first"]},
    ],
    "activity": {"type": "exercise", "title": "Compute averages", "description": "Work a data set"},
    "summary": "Mean and median describe the center.",
    "objectives": ["Compute a mean", "Compute a median"],
    "materials_needed": ["Calculator"],
}

QUIZ_RESPONSE = {
    "title": "Averages quiz",
    "overview": "Check your understanding",
    "questions": [
        {"type": "multiple_choice", "question": "Mean of 1,2,3?", "options": ["1", "2", "3"], "correct_answer": "2"},
        {"type": "true_false", "question": "The median needs sorting.", "correct_answer": True},
        {"type": "short_answer", "question": "Define the mean.", "correct_answer": "Sum over count"},
    ],
}

VIDEO_RESPONSE = {
    "title": "Averages in 10 minutes",
    "hook": "Ever wondered what 'average' really means?",
    "main_content": "Let's compute a mean together.",
    "call_to_action": "Subscribe for part two.",
    "tags": ["statistics", "mean"],
    "thumbnail_prompt": "A chalkboard with numbers",
}

BLOG_RESPONSE = {
    "title": "Understanding averages",
    "meta_description": "Mean and median explained",
    "content": "# Understanding averages\n\nThe mean is the sum divided by the count.",
    "tags": ["statistics"],
    "image_prompts": [],
}

LESSON_SCRIPT = "Welcome back. Today we compute the mean of a small data set, step by step."
