from __future__ import annotations

import datetime
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import progress_engine` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from progress_engine.api.dependencies import get_engine  # noqa: E402
from progress_engine.core.config import Settings  # noqa: E402
from progress_engine.main import app  # noqa: E402
from progress_engine.repos.achievement_repo import (  # noqa: E402
    SAMPLE_ACHIEVEMENTS,
    AchievementCatalog,
)
from progress_engine.repos.catalog_repo import (  # noqa: E402
    InMemoryCourseCatalog,
    seed_sample_catalog,
)
from progress_engine.repos.document_store import InMemoryDocumentStore  # noqa: E402
from progress_engine.services.cache import cache_service  # noqa: E402
from progress_engine.services.engine import LearningEngine  # noqa: E402
from progress_engine.services.ingest import EventCandidate  # noqa: E402
from progress_engine.services.notifications import QueueNotificationEmitter  # noqa: E402
from progress_engine.services.task_queue import task_queue  # noqa: E402

# Monday 2 March 2026, 09:00 UTC
START = datetime.datetime(2026, 3, 2, 9, 0, tzinfo=datetime.UTC)


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


class Clock:
    """Settable clock injected into the engine."""

    def __init__(self, now: datetime.datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime.datetime:
        self.now += datetime.timedelta(**kwargs)
        return self.now


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "app_env": "test",
        "log_level": "info",
        "log_json": False,
        "port": 8000,
        "database_url": None,
        "redis_url": None,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def make_event(
    topic_id: str,
    *,
    user_id: str = "learner-1",
    course_id: str = "python-basics",
    completed: bool = True,
    time_spent_seconds: int = 60,
    occurred_at: datetime.datetime | None = None,
    event_id: str | None = None,
    details: dict | None = None,
) -> EventCandidate:
    """Build a candidate from a sample topic id such as ``variables-video-1``."""
    concept_id, kind, _ = topic_id.rsplit("-", 2)
    return EventCandidate(
        user_id=user_id,
        course_id=course_id,
        concept_id=concept_id,
        topic_id=topic_id,
        type=kind,
        completed=completed,
        time_spent_seconds=time_spent_seconds,
        occurred_at=occurred_at,
        event_id=event_id,
        details=details,
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def catalog() -> InMemoryCourseCatalog:
    c = InMemoryCourseCatalog()
    seed_sample_catalog(c)
    return c


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def engine(
    store: InMemoryDocumentStore,
    catalog: InMemoryCourseCatalog,
    clock: Clock,
) -> LearningEngine:
    return LearningEngine(
        store=store,
        catalog=catalog,
        achievements=AchievementCatalog(SAMPLE_ACHIEVEMENTS),
        emitter=QueueNotificationEmitter(task_queue),
        cache=cache_service,
        settings=make_settings(),
        clock=clock,
    )


@pytest.fixture
def client(engine: LearningEngine) -> Iterator[TestClient]:
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
